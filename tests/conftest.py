# File: tests/conftest.py
# In-memory stand-ins for the Playwright page, frame and context objects.
import asyncio
from typing import Dict, List, Optional

import pytest

from consentscan.collector import CONSENT_SIGNALS_JS, STORAGE_JS
from consentscan.config import ScanConfig
from consentscan.consent import FIND_AND_CLICK_JS
from consentscan.frontier import LINKS_JS


class FakeRequest:
    def __init__(self, url: str, resource_type: str = "script"):
        self.url = url
        self.resource_type = resource_type


class FakeFrame:
    """
    A frame holding clickable element texts. Clicking an element whose text
    contains 'reject', 'decline', 'deny' or 'necessary' moves the site to the
    rejected state; 'accept', 'allow' or 'agree' to the accepted state.
    """

    def __init__(self, site=None, buttons=(), url="https://example.com/", detached=False, error=None):
        self.site = site
        self.buttons = list(buttons)
        self.url = url
        self.detached = detached
        self.error = error
        self.clicked: List[str] = []
        self.evaluated = 0

    def is_detached(self):
        return self.detached

    async def evaluate(self, script, arg=None):
        self.evaluated += 1
        if self.error is not None:
            raise self.error
        if script == FIND_AND_CLICK_JS:
            _, keyword = arg
            for text in self.buttons:
                if keyword in text.strip().lower():
                    self.clicked.append(text)
                    if self.site is not None:
                        self.site.click(text)
                    return True
            return False
        raise AssertionError(f"unexpected frame script: {script[:40]}")


class FakeSite:
    """
    Pages, banner buttons and consent-dependent cookies / requests / storage.
    The ``*_by_consent`` mappings are keyed by 'none', 'rejected', 'accepted'.
    """

    def __init__(
        self,
        pages: Optional[Dict[str, dict]] = None,
        cookies_by_consent: Optional[Dict[str, List[dict]]] = None,
        requests_by_consent: Optional[Dict[str, List[str]]] = None,
        storage_by_consent: Optional[Dict[str, List[dict]]] = None,
        failing=(),
        hanging=(),
        signals=None,
        redirects=None,
    ):
        self.pages = pages or {}
        self.cookies_by_consent = cookies_by_consent or {}
        self.requests_by_consent = requests_by_consent or {}
        self.storage_by_consent = storage_by_consent or {}
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.signals = signals or {"tcf": False, "gpp": False, "usp": False, "gpc": False}
        self.redirects = redirects or {}
        self.consent = "none"

    def click(self, text: str):
        t = text.lower()
        if any(k in t for k in ("reject", "decline", "deny", "necessary")):
            self.consent = "rejected"
        elif any(k in t for k in ("accept", "allow", "agree")):
            self.consent = "accepted"


class FakeContext:
    def __init__(self, site: FakeSite):
        self.site = site

    async def cookies(self):
        return [dict(c) for c in self.site.cookies_by_consent.get(self.site.consent, [])]


class FakePage:
    def __init__(self, site: FakeSite, child_frames=()):
        self.site = site
        self.url = "about:blank"
        self.context = FakeContext(site)
        self.main_frame = FakeFrame(site)
        self.child_frames = list(child_frames)
        self.handlers: Dict[str, list] = {}
        self.visits: List[str] = []
        self.reloads = 0
        self.screenshots = 0
        self.reload_error = None

    @property
    def frames(self):
        return [self.main_frame] + self.child_frames

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.handlers[event].remove(handler)

    def listener_count(self, event="request"):
        return len(self.handlers.get(event, []))

    def _fire_requests(self):
        for url in self.site.requests_by_consent.get(self.site.consent, []):
            for h in list(self.handlers.get("request", [])):
                h(FakeRequest(url))

    async def goto(self, url, wait_until=None, timeout=None):
        self.visits.append(url)
        if url in self.site.failing:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        if url in self.site.hanging:
            await asyncio.sleep(30)
        url = self.site.redirects.get(url, url)
        self.url = url
        spec = self.site.pages.get(url, {})
        self.main_frame.url = url
        self.main_frame.buttons = list(spec.get("buttons", []))
        self._fire_requests()

    async def reload(self, wait_until=None, timeout=None):
        self.reloads += 1
        if self.reload_error is not None:
            raise self.reload_error
        self._fire_requests()

    async def wait_for_timeout(self, ms):
        return None

    async def screenshot(self, **kwargs):
        self.screenshots += 1
        return b"\xff\xd8fake-jpeg"

    async def evaluate(self, script, arg=None):
        if script == STORAGE_JS:
            origin = self.url.split("/", 3)
            origin = "/".join(origin[:3])
            return {
                "origin": origin,
                "url": self.url,
                "items": [dict(i) for i in self.site.storage_by_consent.get(self.site.consent, [])],
            }
        if script == CONSENT_SIGNALS_JS:
            return dict(self.site.signals)
        if script == LINKS_JS:
            return [dict(a) for a in self.site.pages.get(self.url, {}).get("links", [])]
        return await self.main_frame.evaluate(script, arg)


def cookie(name, domain=".example.com", expires=-1, **extra):
    c = {"name": name, "value": "x", "domain": domain, "path": "/", "expires": expires,
         "httpOnly": False, "secure": True, "sameSite": "Lax"}
    c.update(extra)
    return c


@pytest.fixture()
def fast_config() -> ScanConfig:
    """ScanConfig with no waits, suitable for fake pages."""
    return ScanConfig(
        max_pages=10,
        settle_ms=0,
        consent_settle_ms=0,
        page_timeout_s=5,
        use_sitemap=False,
        oracle_backoff_s=0,
        inter_batch_delay_s=0,
    )


@pytest.fixture()
def decline_all_site() -> FakeSite:
    """Entry page with a 'Decline all' banner that sets _ga regardless of the choice."""
    return FakeSite(
        pages={
            "https://example.com/": {
                "buttons": ["Decline all", "Accept all"],
                "links": [
                    {"href": "/privacy-policy", "text": "Privacy"},
                    {"href": "/about", "text": "About us"},
                    {"href": "https://other.org/x", "text": "Elsewhere"},
                ],
            },
            "https://example.com/about": {"links": [{"href": "/", "text": "Home"}]},
            "https://example.com/privacy-policy": {"links": []},
        },
        cookies_by_consent={
            "none": [cookie("_ga"), cookie("session")],
            "rejected": [cookie("_ga"), cookie("session"), cookie("OptanonConsent")],
            "accepted": [cookie("_ga"), cookie("session"), cookie("OptanonConsent"),
                         cookie("_fbp", domain=".facebook.com")],
        },
        requests_by_consent={
            "none": ["https://example.com/app.js"],
            "rejected": [],
            "accepted": ["https://www.google-analytics.com/g/collect?v=2"],
        },
    )
