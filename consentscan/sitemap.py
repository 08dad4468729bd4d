import logging
import re
from typing import List, Optional
from urllib.parse import urljoin

from lxml import etree

from consentscan.domain_utils import same_site

SITEMAP_LINE = re.compile(r"^\s*sitemap\s*:\s*(\S+)", re.I | re.M)


def parse_sitemap(xml_content: str) -> List[str]:
    """URLs found in the <loc> tags of a sitemap or sitemap index."""
    if not xml_content or not xml_content.strip():
        return []
    parser = etree.XMLParser(ns_clean=True, recover=True)
    root = etree.fromstring(xml_content.encode("utf-8"), parser=parser)
    if root is None:
        return []
    locs = root.findall(".//{*}loc")
    return [loc.text.strip() for loc in locs if loc.text]


def is_sitemap_index(xml_content: str) -> bool:
    return "<sitemapindex" in (xml_content or "")[:2000].lower()


def sitemaps_from_robots(robots_txt: str, root_url: str) -> List[str]:
    return [urljoin(root_url, m) for m in SITEMAP_LINE.findall(robots_txt or "")]


async def _fetch_text(request_context, url: str, timeout_ms: int) -> Optional[str]:
    try:
        response = await request_context.get(url, timeout=timeout_ms)
        if not response.ok:
            logging.debug(f"[SITEMAP] {url} returned HTTP {response.status}")
            return None
        return await response.text()
    except Exception as e:
        logging.debug(f"[SITEMAP] Could not fetch {url}: {e}")
        return None


async def discover_sitemap_urls(request_context, root_url: str, limit: int = 50, timeout_ms: int = 15000) -> List[str]:
    """
    Same-site page URLs listed in the site's sitemaps. Sitemaps are taken from
    robots.txt (falling back to /sitemap.xml); sitemap indexes are followed one
    level deep. Never raises; any failure yields an empty list.
    """
    if limit <= 0:
        return []
    try:
        robots = await _fetch_text(request_context, urljoin(root_url, "/robots.txt"), timeout_ms)
        candidates = sitemaps_from_robots(robots, root_url) or [urljoin(root_url, "/sitemap.xml")]

        urls: List[str] = []
        seen = set()

        def add(found):
            for u in found:
                if len(urls) >= limit:
                    return
                if u not in seen and same_site(u, root_url):
                    seen.add(u)
                    urls.append(u)

        for sm_url in candidates:
            if len(urls) >= limit:
                break
            xml = await _fetch_text(request_context, sm_url, timeout_ms)
            if not xml:
                continue
            locs = parse_sitemap(xml)
            if not is_sitemap_index(xml):
                add(locs)
                continue
            for child in locs[:10]:
                if len(urls) >= limit:
                    break
                child_xml = await _fetch_text(request_context, child, timeout_ms)
                if child_xml and not is_sitemap_index(child_xml):
                    add(parse_sitemap(child_xml))

        logging.info(f"[SITEMAP] {len(urls)} same-site URLs discovered for {root_url}")
        return urls
    except Exception as e:
        logging.warning(f"[SITEMAP] Sitemap discovery failed for {root_url}: {e}")
        return []
