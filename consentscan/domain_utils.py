from urllib.parse import urlparse
import tldextract
import re

# bundled public suffix snapshot only, no network fetch at runtime
_extract = tldextract.TLDExtract(suffix_list_urls=())


# Domain related helper functions
def host_from_url(url: str) -> str:
    h = urlparse(url).hostname or ""
    return h.rstrip(".").lower()


def registrable_domain(host_or_url: str) -> str:
    if re.match(r"^(about:|data:|blob:|chrome:|devtools:)", host_or_url):
        return ""
    host = host_from_url(host_or_url) if "://" in host_or_url else host_or_url
    host = host.strip().lstrip(".").rstrip(".").lower()
    if not host:
        return ""
    ext = _extract(host)
    return ext.top_domain_under_public_suffix or host


def same_site(url: str, root_url: str) -> bool:
    site = registrable_domain(root_url)
    return bool(site) and registrable_domain(url) == site


def cookie_party(cookie_domain: str, site_url: str) -> str:
    """'First' when the cookie's registrable domain is the scanned site's, else 'Third'."""
    if registrable_domain(cookie_domain or "") == registrable_domain(site_url):
        return "First"
    return "Third"
