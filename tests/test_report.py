# File: tests/test_report.py
import base64
import datetime as dt

import pytest

from consentscan.classification import NO_ITEMS_ASSESSMENT, RuleRiskAssessor
from consentscan.domain_utils import cookie_party
from consentscan.models import (
    CanonicalRecord,
    Category,
    ClassifiedRecord,
    ConsentState,
    CrawlResult,
    Observation,
    RiskLevel,
)
from consentscan.report import assemble_report, human_readable_expiry, summarize_violations, build_verdicts

NOW = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
T = NOW.timestamp()


def test_cookie_party_first_and_third():
    assert cookie_party(".example.com", "https://www.example.com") == "First"
    assert cookie_party("shop.example.com", "https://www.example.com") == "First"
    assert cookie_party(".ads.example-cdn.net", "https://www.example.com") == "Third"


@pytest.mark.parametrize(
    "expires,expected",
    [
        (-1, "Session"),
        (0, "Session"),
        (None, "Session"),
        (T - 10, "Expired"),
        (T + 45 * 60, "45 minutes"),
        (T + 5 * 3600, "5 hours"),
        (T + 3 * 86400, "3 days"),
        (T + 90 * 86400, "3 months"),
        (T + 365 * 86400, "1 year"),
        (T + 2 * 365 * 86400, "2 years"),
        (T + int(1.5 * 365 * 86400), "1.5 years"),
    ],
)
def test_human_readable_expiry(expires, expected):
    assert human_readable_expiry(expires, NOW) == expected


def classified(obs, category, states, pages=("https://example.com/",)):
    rec = CanonicalRecord(obs.key, obs.kind, obs.payload, set(states), set(pages))
    return ClassifiedRecord(rec, category, "purpose")


class CountingAssessor(RuleRiskAssessor):
    def __init__(self):
        self.calls = 0

    async def assess(self, summary):
        self.calls += 1
        return await super().assess(summary)


@pytest.mark.asyncio()
async def test_assemble_report_joins_fields():
    items = [
        classified(
            Observation.cookie(name="_ga", domain=".example.com", expires=T + 3600 * 2, http_only=True),
            Category.ANALYTICS,
            {ConsentState.PRE_CONSENT, ConsentState.POST_REJECTION},
            pages=("https://example.com/b", "https://example.com/a"),
        ),
        classified(
            Observation.request(url="https://px.ads.net/p.gif", hostname="px.ads.net"),
            Category.MARKETING,
            {ConsentState.POST_REJECTION},
        ),
        classified(
            Observation.storage(origin="https://example.com", key="theme", area="session"),
            Category.FUNCTIONAL,
            {ConsentState.POST_ACCEPTANCE},
        ),
    ]
    crawl = CrawlResult(
        root_url="https://www.example.com",
        screenshot=b"img",
        consent_banner_detected=True,
        pages_visited=["https://www.example.com/", "https://www.example.com/a"],
    )
    assessor = CountingAssessor()
    report = await assemble_report(crawl, items, assessor, now=NOW)

    assert report.pages_scanned_count == 2
    assert report.consent_banner_detected is True
    assert base64.b64decode(report.screenshot_base64) == b"img"

    (c,) = report.cookies
    assert c.party == "First"
    assert c.expiry == "2 hours"
    assert c.is_http_only is True
    assert c.compliance_status == "Pre-Consent Violation"
    assert c.states == ["pre-consent", "post-rejection"]
    assert c.pages_found == ["https://example.com/a", "https://example.com/b"]

    (t,) = report.trackers
    assert t.hostname == "px.ads.net"
    assert t.compliance_status == "Post-Rejection Violation"

    (s,) = report.storage
    assert s.area == "session"
    assert s.compliance_status == "Compliant"

    assert report.summary.pre_consent_violations == 1
    assert report.summary.post_rejection_violations == 1
    assert report.summary.total_items == 3
    assert assessor.calls == 1
    assert report.compliance["gdpr"].risk_level is RiskLevel.HIGH


@pytest.mark.asyncio()
async def test_empty_crawl_gives_low_risk_without_assessor():
    assessor = CountingAssessor()
    report = await assemble_report(CrawlResult(root_url="https://example.com", pages_visited=["x"]), [], assessor, now=NOW)
    assert assessor.calls == 0
    assert report.cookies == [] and report.trackers == [] and report.storage == []
    for reg in ("gdpr", "ccpa"):
        assert report.compliance[reg].risk_level is RiskLevel.LOW
        assert report.compliance[reg].assessment == NO_ITEMS_ASSESSMENT
    assert report.to_dict()["compliance"]["gdpr"]["risk_level"] == "Low"


def test_summary_counts_categories():
    items = [
        classified(Observation.cookie(name=f"m{i}", domain="x.com"), Category.MARKETING, {ConsentState.POST_ACCEPTANCE})
        for i in range(3)
    ] + [classified(Observation.cookie(name="a", domain="x.com"), Category.ANALYTICS, {ConsentState.POST_ACCEPTANCE})]
    summary = summarize_violations(build_verdicts(items))
    assert summary.total_marketing == 3
    assert summary.total_analytics == 1
    assert not summary.has_violations
