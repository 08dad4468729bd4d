import logging
import os
from functools import lru_cache

import yaml

MODULE_DIR = os.path.dirname(os.path.abspath(__file__))
CONSENT_KEYWORDS_FILE = f"{MODULE_DIR}/assets/consent_keywords.yml"

CLICKABLE_SELECTOR = 'button, a, [role="button"], input[type="submit"], input[type="button"]'

# Runs inside the frame. Returns true after clicking the first clickable element
# whose text (or aria-label / input value) contains the keyword.
FIND_AND_CLICK_JS = """
([selector, keyword]) => {
    const elements = Array.from(document.querySelectorAll(selector));
    const target = elements.find(el => {
        const text = (el.textContent || el.getAttribute('aria-label') || el.value || '')
            .trim().toLowerCase();
        return text.includes(keyword);
    });
    if (target) {
        target.click();
        return true;
    }
    return false;
}
"""

ACTIONS = ("accept", "reject")


@lru_cache(maxsize=1)
def get_consent_keywords():
    with open(CONSENT_KEYWORDS_FILE, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return {
        "accept": tuple(k.lower() for k in data.get("accept", [])),
        "reject": tuple(k.lower() for k in data.get("reject", [])),
        "policy_links": tuple(k.lower() for k in data.get("policy_links", [])),
    }


def _frame_url(frame) -> str:
    try:
        return frame.url
    except Exception:
        return "<unknown frame>"


def _is_detached(frame) -> bool:
    try:
        return frame.is_detached()
    except Exception:
        return True


async def _click_in_frame(frame, keyword: str) -> bool:
    return bool(await frame.evaluate(FIND_AND_CLICK_JS, [CLICKABLE_SELECTOR, keyword]))


async def attempt_consent_action(page, action: str = "accept", settle_ms: int = 1500) -> bool:
    """
    action: 'accept' | 'reject'
    Look for a clickable element whose text contains one of the action's
    keywords, main frame first and then every attached child frame, keyword by
    keyword. Clicks the first match, waits settle_ms and returns True.
    Returns False when nothing matched. Never raises.
    """
    if action not in ACTIONS:
        logging.warning(f"[CONSENT] Unsupported consent action: {action}")
        return False

    logging.info(f"[CONSENT] Attempting to {action} consent on {page.url}")
    try:
        keywords = get_consent_keywords()[action]
        main = page.main_frame
        frames = [main] + [f for f in page.frames if f is not main]
        skipped = set()

        for keyword in keywords:
            for frame in frames:
                if id(frame) in skipped:
                    continue
                if frame is not main and _is_detached(frame):
                    skipped.add(id(frame))
                    continue
                try:
                    clicked = await _click_in_frame(frame, keyword)
                except Exception as e:
                    skipped.add(id(frame))
                    if _is_detached(frame):
                        logging.debug(f"[CONSENT] Frame detached during search: {_frame_url(frame)}")
                    else:
                        logging.warning(f"[CONSENT] Skipping frame {_frame_url(frame)}: {e}")
                    continue
                if clicked:
                    logging.info(f'[CONSENT] Clicked element containing "{keyword}" in {_frame_url(frame)}')
                    try:
                        await page.wait_for_timeout(settle_ms)
                    except Exception as e:
                        logging.debug(f"[CONSENT] Settle wait interrupted: {e}")
                    return True
    except Exception as e:
        logging.warning(f"[CONSENT] Unable to {action} consent on {page.url}: {e}")
        return False

    logging.info(f'[CONSENT] No actionable element found for "{action}".')
    return False
