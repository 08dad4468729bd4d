"""
Crawl frontier: a priority queue of same-site URLs with a visited set, plus
link discovery on rendered pages.

Priorities: 0 for the entry URL and sitemap URLs, 1 for links whose text or
URL mentions a policy keyword, 2 for everything else. Equal priorities are
served first in, first out.
"""

import heapq
import itertools
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlparse

from consentscan.consent import get_consent_keywords
from consentscan.domain_utils import registrable_domain

PRIORITY_ENTRY = 0
PRIORITY_POLICY = 1
PRIORITY_DEFAULT = 2

LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href]')).map(a => ({
    href: a.getAttribute('href'),
    text: (a.textContent || a.getAttribute('aria-label') || '').trim().slice(0, 200),
}))
"""


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    priority: int


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """Absolute http(s) URL without fragment and query string, or None."""
    if not url:
        return None
    try:
        u = urlparse(urljoin(base, url) if base else url)
    except ValueError:
        return None
    if u.scheme not in ("http", "https") or not u.hostname:
        return None
    path = u.path or "/"
    return f"{u.scheme}://{u.netloc.lower()}{path}"


def is_safe_href(href: str) -> bool:
    if not href:
        return False
    href = href.strip()
    if href.startswith(("javascript:", "mailto:", "tel:", "sms:", "data:", "#")):
        return False
    # skip obvious logout/delete endpoints
    if re.search(r"(logout|signout|sign-out|log-out|delete|unsubscribe|remove-account)", href, re.I):
        return False
    return True


def link_priority(url: str, text: str = "", keywords: Optional[Iterable[str]] = None) -> int:
    if keywords is None:
        keywords = get_consent_keywords()["policy_links"]
    haystack = f"{text or ''} {url or ''}".lower()
    if any(k in haystack for k in keywords):
        return PRIORITY_POLICY
    return PRIORITY_DEFAULT


class CrawlFrontier:
    def __init__(self, root_url: str):
        self.root_url = root_url
        self.site = registrable_domain(root_url)
        self._heap: List[Tuple[int, int, str]] = []
        self._counter = itertools.count()
        self._queued: Set[str] = set()
        self.visited: Set[str] = set()

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def is_same_site(self, url: str) -> bool:
        return bool(self.site) and registrable_domain(url) == self.site

    def push(self, url: str, priority: int = PRIORITY_DEFAULT) -> bool:
        norm = normalize_url(url)
        if norm is None or not self.is_same_site(norm):
            return False
        if norm in self.visited or norm in self._queued:
            return False
        self._queued.add(norm)
        heapq.heappush(self._heap, (priority, next(self._counter), norm))
        return True

    def pop(self) -> Optional[FrontierEntry]:
        """Next unvisited same-site entry, marked visited, or None when empty."""
        while self._heap:
            priority, _, url = heapq.heappop(self._heap)
            self._queued.discard(url)
            if url in self.visited:
                continue
            self.visited.add(url)
            if not self.is_same_site(url):
                continue
            return FrontierEntry(url, priority)
        return None


async def extract_links(page, frontier: CrawlFrontier) -> List[Tuple[str, int]]:
    """Same-site links on the rendered page with their crawl priority."""
    base = page.url
    anchors = await page.evaluate(LINKS_JS) or []
    keywords = get_consent_keywords()["policy_links"]
    out = []
    seen = set()
    for a in anchors:
        href = (a or {}).get("href")
        if not is_safe_href(href):
            continue
        norm = normalize_url(href, base=base)
        if norm is None or norm in seen or not frontier.is_same_site(norm):
            continue
        seen.add(norm)
        out.append((norm, link_priority(norm, a.get("text") or "", keywords)))
    logging.debug(f"[CRAWL] Discovered {len(out)} same-site links on {base}")
    return out
