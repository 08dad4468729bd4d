import logging
from contextlib import contextmanager
from typing import List
from urllib.parse import urlparse

from consentscan.domain_utils import host_from_url
from consentscan.models import Observation, PageObservations

STORAGE_JS = """
() => {
    const items = [];
    for (const [area, name] of [["local", "localStorage"], ["session", "sessionStorage"]]) {
        try {
            const store = window[name];
            for (let i = 0; i < store.length; i++) {
                const key = store.key(i);
                items.push({area, key, value: store.getItem(key)});
            }
        } catch (e) { /* storage disabled or opaque origin */ }
    }
    return {origin: location.origin, url: location.href, items};
}
"""

CONSENT_SIGNALS_JS = """
() => ({
    tcf: typeof window.__tcfapi === 'function',
    gpp: typeof window.__gpp === 'function',
    usp: typeof window.__uspapi === 'function',
    gpc: navigator.globalPrivacyControl === true,
})
"""


@contextmanager
def capture_offsite_requests(page, root_hostname: str, into: List[Observation]):
    """
    Append an Observation to ``into`` for every http(s) request whose hostname
    differs from ``root_hostname`` while the block runs. The listener is
    removed on every exit path.
    """
    root = (root_hostname or "").lower()
    seen = set()

    def request_handler(req):
        try:
            url = req.url
            if urlparse(url).scheme not in ("http", "https"):
                return
            host = host_from_url(url)
            if not host or host == root or url in seen:
                return
            seen.add(url)
            into.append(Observation.request(
                url=url,
                hostname=host,
                resource_type=getattr(req, "resource_type", None),
            ))
        except Exception as e:
            logging.debug(f"[COLLECT] Ignoring request event: {e}")

    page.on("request", request_handler)
    try:
        yield into
    finally:
        page.remove_listener("request", request_handler)


def _cookie_observation(c: dict) -> Observation:
    return Observation.cookie(
        name=c["name"],
        domain=c.get("domain") or "",
        path=c.get("path") or "/",
        expires=float(c.get("expires") if c.get("expires") is not None else -1),
        secure=bool(c.get("secure")),
        http_only=bool(c.get("httpOnly")),
        same_site=c.get("sameSite"),
    )


def _storage_observations(snapshot: dict) -> List[Observation]:
    origin = snapshot.get("origin") or ""
    page_url = snapshot.get("url")
    return [
        Observation.storage(
            origin=origin,
            key=item["key"],
            value=item.get("value"),
            area=item.get("area") or "local",
            page_url=page_url,
        )
        for item in snapshot.get("items") or []
        if item.get("key") is not None
    ]


async def collect_observations(
    page,
    root_hostname: str,
    settle_ms: int = 1500,
    reload_timeout_ms: int = 30000,
    detect_consent_signals: bool = True,
) -> PageObservations:
    """
    Reload the page while capturing off-site requests, then read the full
    cookie jar of the browser context (httpOnly included), local/session
    storage and, optionally, consent-signalling APIs. Each step is guarded on
    its own, so a failure is logged and only loses that step's data.
    """
    result = PageObservations()

    with capture_offsite_requests(page, root_hostname, result.requests):
        try:
            await page.reload(wait_until="networkidle", timeout=reload_timeout_ms)
        except Exception as e:
            # the jar and storage are still readable after a networkidle timeout
            logging.warning(f"[COLLECT] Reload of {page.url} did not settle: {e}")
        try:
            # late trackers fire after the load event
            await page.wait_for_timeout(settle_ms)
        except Exception as e:
            logging.warning(f"[COLLECT] Settle wait on {page.url} failed: {e}")

    try:
        for c in await page.context.cookies():
            if c.get("name"):
                result.cookies.append(_cookie_observation(c))
    except Exception as e:
        logging.warning(f"[COLLECT] Cookie jar unreadable on {page.url}: {e}")

    try:
        snapshot = await page.evaluate(STORAGE_JS)
        result.storage.extend(_storage_observations(snapshot or {}))
    except Exception as e:
        logging.warning(f"[COLLECT] Storage unreadable on {page.url}: {e}")

    if detect_consent_signals:
        try:
            result.consent_signals = dict(await page.evaluate(CONSENT_SIGNALS_JS) or {})
        except Exception as e:
            logging.warning(f"[COLLECT] Consent signal probe failed on {page.url}: {e}")

    logging.debug(
        f"[COLLECT] {page.url}: {len(result.cookies)} cookies, "
        f"{len(result.requests)} off-site requests, {len(result.storage)} storage items"
    )
    return result
