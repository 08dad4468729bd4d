"""
Result assembly: verdicts plus kind-specific presentation fields, the
violation summary and the per-regulation risk assessment.
"""

import base64
import datetime as dt
import logging
import math
from typing import List, Optional, Sequence

from consentscan.classification import RiskAssessor, no_items_assessment
from consentscan.domain_utils import cookie_party
from consentscan.models import (
    Category,
    ClassifiedRecord,
    ComplianceStatus,
    ConsentState,
    CookieReport,
    CrawlResult,
    ScanReport,
    StorageReport,
    TechnologyKind,
    TrackerReport,
    VerdictRecord,
    ViolationSummary,
)
from consentscan.verdict import resolve

STATE_ORDER = [ConsentState.PRE_CONSENT, ConsentState.POST_REJECTION, ConsentState.POST_ACCEPTANCE]


def _now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def human_readable_expiry(expires: Optional[float], now: Optional[dt.datetime] = None) -> str:
    """
    Bucket a cookie expiry timestamp (epoch seconds) relative to ``now``:
    Session, Expired, minutes, hours, days, months (30 days) or years.
    """
    if expires is None or expires <= 0:
        return "Session"
    now = now or _now_utc()
    diff = expires - now.timestamp()
    if diff < 0:
        return "Expired"
    if diff < 3600:
        return f"{_round_half_up(diff / 60)} minutes"
    if diff < 86400:
        return f"{_round_half_up(diff / 3600)} hours"
    if diff < 86400 * 30:
        return f"{_round_half_up(diff / 86400)} days"
    if diff < 86400 * 365:
        return f"{_round_half_up(diff / (86400 * 30))} months"
    years = round(diff / (86400 * 365), 1)
    return f"{years:g} year{'s' if years > 1 else ''}"


def ordered_states(states) -> List[str]:
    return [s.value for s in STATE_ORDER if s in states]


def build_verdicts(classified: Sequence[ClassifiedRecord]) -> List[VerdictRecord]:
    out = []
    for c in classified:
        status, remediation = resolve(c.category, c.record.states_observed)
        out.append(VerdictRecord(c, status, remediation))
    return out


def summarize_violations(verdicts: Sequence[VerdictRecord]) -> ViolationSummary:
    return ViolationSummary(
        pre_consent_violations=sum(v.compliance_status is ComplianceStatus.PRE_CONSENT_VIOLATION for v in verdicts),
        post_rejection_violations=sum(v.compliance_status is ComplianceStatus.POST_REJECTION_VIOLATION for v in verdicts),
        total_marketing=sum(v.category is Category.MARKETING for v in verdicts),
        total_analytics=sum(v.category is Category.ANALYTICS for v in verdicts),
        total_items=len(verdicts),
    )


def cookie_row(v: VerdictRecord, site_url: str, now: dt.datetime) -> CookieReport:
    r = v.record
    p = r.payload
    return CookieReport(
        key=r.key,
        name=p.name,
        provider=p.domain,
        category=v.category.value,
        purpose=v.classified.purpose,
        expiry=human_readable_expiry(p.expires, now),
        party=cookie_party(p.domain, site_url),
        is_http_only=p.http_only,
        is_secure=p.secure,
        compliance_status=v.compliance_status.value,
        remediation=v.remediation,
        states=ordered_states(r.states_observed),
        pages_found=sorted(r.pages_found),
    )


def tracker_row(v: VerdictRecord) -> TrackerReport:
    r = v.record
    return TrackerReport(
        key=r.key,
        url=r.payload.url,
        provider=r.provider,
        hostname=r.payload.hostname,
        category=v.category.value,
        purpose=v.classified.purpose,
        compliance_status=v.compliance_status.value,
        remediation=v.remediation,
        states=ordered_states(r.states_observed),
        pages_found=sorted(r.pages_found),
    )


def storage_row(v: VerdictRecord) -> StorageReport:
    r = v.record
    p = r.payload
    return StorageReport(
        key=r.key,
        name=p.key,
        origin=p.origin,
        area=p.area,
        category=v.category.value,
        purpose=v.classified.purpose,
        compliance_status=v.compliance_status.value,
        remediation=v.remediation,
        states=ordered_states(r.states_observed),
        pages_found=sorted(r.pages_found),
    )


async def assemble_report(
    crawl: CrawlResult,
    classified: Sequence[ClassifiedRecord],
    assessor: RiskAssessor,
    now: Optional[dt.datetime] = None,
) -> ScanReport:
    now = now or _now_utc()
    verdicts = build_verdicts(classified)
    summary = summarize_violations(verdicts)

    report = ScanReport(
        scanned_url=crawl.root_url,
        generated_at=now.replace(microsecond=0).isoformat(),
        screenshot_base64=base64.b64encode(crawl.screenshot).decode("ascii") if crawl.screenshot else "",
        consent_banner_detected=crawl.consent_banner_detected,
        pages_scanned_count=crawl.pages_scanned_count,
        consent_signals=crawl.consent_signals,
        summary=summary,
    )
    for v in verdicts:
        kind = v.record.kind
        if kind is TechnologyKind.COOKIE:
            report.cookies.append(cookie_row(v, crawl.root_url, now))
        elif kind is TechnologyKind.NETWORK_REQUEST:
            report.trackers.append(tracker_row(v))
        elif kind is TechnologyKind.STORAGE_ITEM:
            report.storage.append(storage_row(v))

    if summary.total_items == 0:
        report.compliance = no_items_assessment()
    else:
        report.compliance = await assessor.assess(summary)

    logging.info(
        f"[REPORT] {len(report.cookies)} cookies, {len(report.trackers)} trackers, "
        f"{len(report.storage)} storage items; {summary.pre_consent_violations} pre-consent / "
        f"{summary.post_rejection_violations} post-rejection violations"
    )
    return report
