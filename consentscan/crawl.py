import asyncio
import inspect
import logging
import re
from typing import Callable, Iterable, Optional

from playwright.async_api import async_playwright

from consentscan.aggregator import Aggregator
from consentscan.classification import (
    OracleClassifier,
    OracleRiskAssessor,
    classify_records,
)
from consentscan.collector import collect_observations
from consentscan.config import ScanConfig, get_api_key
from consentscan.consent import attempt_consent_action
from consentscan.domain_utils import host_from_url
from consentscan.errors import BrowserLaunchError, EntryPageError, ScanCancelled, ScanError
from consentscan.frontier import PRIORITY_ENTRY, CrawlFrontier, extract_links
from consentscan.models import ConsentState, CrawlResult, PageObservations, ScanReport
from consentscan.oracle import GeminiOracle
from consentscan.report import assemble_report
from consentscan.sitemap import discover_sitemap_urls

# flags avoid background throttling of the single long-lived page
common_args = [
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
]

Progress = Callable[[str], object]


def ensure_scheme(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise ValueError("A URL to scan is required")
    if not re.match(r"^https?://", url, re.I):
        url = "https://" + url
    return url


async def _emit(progress: Optional[Progress], message: str):
    """
    Forward a progress line to the caller. A consumer that has gone away
    (broken pipe, closed connection) cancels the scan.
    """
    logging.info(message)
    if progress is None:
        return
    try:
        res = progress(message)
        if inspect.isawaitable(res):
            await res
    except ScanCancelled:
        raise
    except (BrokenPipeError, ConnectionError) as e:
        raise ScanCancelled(f"Progress consumer disconnected: {e}") from e


class ConsentStateCrawl:
    """
    One crawl run over one page object. The first page that loads gets the
    pre-consent / reject / accept sequence; every later page a single
    post-acceptance pass, relying on the session carrying the consent.
    """

    def __init__(self, page, root_url: str, config: ScanConfig, progress: Optional[Progress] = None):
        self.page = page
        self.root_url = root_url
        self.root_hostname = host_from_url(root_url)
        self.config = config
        self.progress = progress
        self.frontier = CrawlFrontier(root_url)
        self.aggregator = Aggregator()
        self.result = CrawlResult(root_url=root_url)
        self.entry_done = False

    def seed(self, sitemap_urls: Iterable[str] = ()):
        self.frontier.push(self.root_url, PRIORITY_ENTRY)
        added = sum(self.frontier.push(u, PRIORITY_ENTRY) for u in sitemap_urls)
        logging.debug(f"[CRAWL] Frontier seeded with root and {added} sitemap URL(s)")

    async def _collect(self, state: ConsentState, page_url: str) -> PageObservations:
        obs = await collect_observations(
            self.page,
            self.root_hostname,
            settle_ms=self.config.settle_ms,
            reload_timeout_ms=self.config.reload_timeout_ms,
        )
        self.aggregator.merge(obs.all(), state, page_url)
        if obs.consent_signals:
            signals = dict(self.result.consent_signals or {})
            for k, v in obs.consent_signals.items():
                signals[k] = bool(signals.get(k)) or bool(v)
            self.result.consent_signals = signals
        await _emit(
            self.progress,
            f"[SCAN] {state.value}: {len(obs.cookies)} cookies, {len(obs.requests)} off-site requests, "
            f"{len(obs.storage)} storage items",
        )
        return obs

    async def _screenshot(self):
        try:
            self.result.screenshot = await self.page.screenshot(type="jpeg", quality=70)
        except Exception as e:
            logging.warning(f"[SCAN] Screenshot failed: {e}")

    async def _entry_sequence(self, url: str):
        await _emit(self.progress, f"[SCAN] Entry page {url}: capturing pre-consent state")
        await self._screenshot()
        await self._collect(ConsentState.PRE_CONSENT, url)

        await _emit(self.progress, "[SCAN] Looking for a reject option")
        rejected = await attempt_consent_action(self.page, "reject", settle_ms=self.config.consent_settle_ms)
        await self._collect(ConsentState.POST_REJECTION, url)

        await _emit(self.progress, "[SCAN] Reloading and looking for an accept option")
        try:
            await self.page.reload(wait_until="load", timeout=self.config.navigation_timeout_ms)
        except Exception as e:
            logging.warning(f"[SCAN] Reload before accepting failed: {e}")
        accepted = await attempt_consent_action(self.page, "accept", settle_ms=self.config.consent_settle_ms)
        await self._collect(ConsentState.POST_ACCEPTANCE, url)

        self.result.consent_banner_detected = rejected or accepted
        logging.info(f"[CONSENT] Banner detected: {self.result.consent_banner_detected} (reject={rejected}, accept={accepted})")

    async def _expand_frontier(self):
        try:
            links = await extract_links(self.page, self.frontier)
        except Exception as e:
            logging.warning(f"[CRAWL] Link extraction failed on {self.page.url}: {e}")
            return
        added = sum(self.frontier.push(u, prio) for u, prio in links)
        logging.debug(f"[CRAWL] {added} new URL(s) queued, {len(self.frontier)} in frontier")

    async def visit(self, url: str):
        await self.page.goto(url, wait_until="load", timeout=self.config.navigation_timeout_ms)
        self.result.pages_visited.append(url)

        if not self.entry_done:
            self.entry_done = True
            # first-party host is where the entry page lands, e.g. after an apex -> www redirect
            landed = host_from_url(self.page.url)
            if landed and landed != self.root_hostname:
                logging.info(f"[CRAWL] {url} redirected to {landed}; treating it as the site host")
                self.root_hostname = landed
            await self._entry_sequence(url)
        else:
            await self._collect(ConsentState.POST_ACCEPTANCE, url)

        await self._expand_frontier()

    async def run(self) -> CrawlResult:
        budget = self.config.max_pages
        while self.frontier and len(self.result.pages_visited) < budget:
            entry = self.frontier.pop()
            if entry is None:
                break
            n = len(self.result.pages_visited)
            await _emit(self.progress, f"[CRAWL] ({n + 1}/{budget}) Visiting {entry.url}")
            try:
                await asyncio.wait_for(self.visit(entry.url), timeout=self.config.page_timeout_s)
            except ScanCancelled:
                raise
            except asyncio.TimeoutError:
                self._page_failed(entry.url, n, f"timed out after {self.config.page_timeout_s}s")
            except Exception as e:
                self._page_failed(entry.url, n, str(e).splitlines()[0] if str(e) else repr(e))

        if not self.result.pages_visited:
            raise EntryPageError(
                f"Could not load {self.root_url} or any other page of the site "
                f"({len(self.result.failed_urls)} attempt(s) failed)."
            )

        reason = "page budget reached" if len(self.result.pages_visited) >= budget else "frontier exhausted"
        self.result.records = self.aggregator.finalize()
        await _emit(
            self.progress,
            f"[CRAWL] Done ({reason}): {self.result.pages_scanned_count} page(s), "
            f"{len(self.result.records)} distinct item(s)",
        )
        return self.result

    def _page_failed(self, url: str, visited_before: int, reason: str):
        if len(self.result.pages_visited) > visited_before:
            # navigation worked; observation was cut short
            logging.warning(f"[CRAWL] Visit of {url} cut short: {reason}")
            return
        self.result.failed_urls.append(url)
        logging.warning(f"[CRAWL] Skipping {url}: {reason}")


async def crawl_site(
    page,
    root_url: str,
    config: Optional[ScanConfig] = None,
    sitemap_urls: Iterable[str] = (),
    progress: Optional[Progress] = None,
) -> CrawlResult:
    crawl = ConsentStateCrawl(page, root_url, config or ScanConfig(), progress)
    crawl.seed(sitemap_urls)
    return await crawl.run()


async def launch_browser(p, config: ScanConfig):
    browser_config = {"headless": config.headless, "args": list(common_args)}
    if config.browser_channel:
        browser_config["channel"] = config.browser_channel
    try:
        browser = await p.chromium.launch(**browser_config)
        logging.info("Launched browser via channel=%s", browser_config.get("channel"))
        return browser
    except Exception as e:
        if not browser_config.get("channel"):
            raise BrowserLaunchError(f"Could not launch a browser: {e}") from e
        logging.warning("Failed to launch channel=%s (%s). Falling back to bundled Chromium.",
                        browser_config.get("channel"), e)
    fallback_cfg = dict(browser_config)
    fallback_cfg.pop("channel", None)
    try:
        return await p.chromium.launch(**fallback_cfg)
    except Exception as e:
        raise BrowserLaunchError(f"Could not launch a browser: {e}") from e


def oracle_components(config: ScanConfig, api_key: Optional[str] = None):
    api_key = api_key or get_api_key()
    if not api_key:
        raise ScanError("No API key configured for the classification oracle (set GEMINI_API_KEY).")
    oracle = GeminiOracle(api_key, model=config.model)
    return OracleClassifier(oracle), OracleRiskAssessor(oracle)


async def run_browser_crawl(url: str, config: ScanConfig, progress: Optional[Progress] = None) -> CrawlResult:
    """Own the browser session for one crawl; it is closed on every exit path."""
    async with async_playwright() as p:
        logging.debug("Starting browser")
        browser = await launch_browser(p, config)
        try:
            context = await browser.new_context(user_agent=config.user_agent, viewport=dict(config.viewport))
            page = await context.new_page()

            sitemap_urls = []
            if config.use_sitemap:
                await _emit(progress, f"[SCAN] Looking for a sitemap on {url}")
                sitemap_urls = await discover_sitemap_urls(context.request, url, limit=config.sitemap_limit)

            return await crawl_site(page, url, config, sitemap_urls, progress)
        finally:
            try:
                await browser.close()
            except Exception as e:
                logging.warning(f"Error closing browser: {e}")


async def scan_site(
    url: str,
    config: Optional[ScanConfig] = None,
    classifier=None,
    assessor=None,
    progress: Optional[Progress] = None,
) -> ScanReport:
    """
    Crawl ``url`` through the three consent states, classify everything
    observed and assemble the report. Without an explicit classifier and
    assessor the Gemini oracle is used.
    """
    config = config or ScanConfig()
    url = ensure_scheme(url)
    if classifier is None or assessor is None:
        default_classifier, default_assessor = oracle_components(config)
        classifier = classifier or default_classifier
        assessor = assessor or default_assessor

    await _emit(progress, f"[SCAN] Starting scan of {url} (budget {config.max_pages} page(s))")
    crawl = await run_browser_crawl(url, config, progress)

    await _emit(progress, f"[AI] Classifying {len(crawl.records)} item(s)")
    classified = await classify_records(
        crawl.records,
        classifier,
        batch_size=config.batch_size,
        max_retries=config.oracle_max_retries,
        backoff_s=config.oracle_backoff_s,
        timeout_s=config.oracle_timeout_s,
        inter_batch_delay_s=config.inter_batch_delay_s,
    )

    await _emit(progress, "[SCAN] Assembling report")
    return await assemble_report(crawl, classified, assessor)
