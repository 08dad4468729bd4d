#!/usr/bin/env python3
"""
classification.py: categorisation of canonical records and the per-regulation
risk assessment.

Two interchangeable classifiers share one async interface:
  - RuleClassifier, a static YAML ruleset (no network)
  - OracleClassifier, batched calls to the text-generation oracle
classify_records() drives either one in bounded batches with retries and
degrades failed batches to Unknown instead of failing the scan.
"""

import asyncio
import fnmatch
import json
import logging
import os
import re
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import yaml

from consentscan.config import MAX_BATCH_SIZE
from consentscan.errors import OracleError, RiskAssessmentError
from consentscan.models import (
    CanonicalRecord,
    Category,
    ClassificationResult,
    ClassifiedRecord,
    ComplianceInfo,
    RiskLevel,
    TechnologyKind,
    ViolationSummary,
)
from consentscan.utils import batch, retry_with_backoff

MODULE_DIR = os.path.dirname(os.path.abspath(__file__))
RULES_FILE = f"{MODULE_DIR}/assets/cookie_rules.yml"
CONSENT_INFRASTRUCTURE_FILE = f"{MODULE_DIR}/assets/consent_infrastructure.yml"

NEUTRAL_PURPOSE = "No purpose determined."
CONSENT_PURPOSE = "Stores the visitor's consent choice."
REGULATIONS = ("gdpr", "ccpa")
NO_ITEMS_ASSESSMENT = "No cookies, trackers or storage items were detected."


def map_category(cat: Optional[str]) -> Category:
    if not cat:
        return Category.UNKNOWN
    c = str(cat).strip().lower()
    if c in ("necessary", "strictly necessary", "essential", "strictly_necessary", "required"):
        return Category.NECESSARY
    if c in ("functional", "functionality", "preferences", "personalization", "personalisation"):
        return Category.FUNCTIONAL
    if c in ("analytics", "statistics", "performance"):
        return Category.ANALYTICS
    if c in ("advertising", "marketing", "ads", "targeting"):
        return Category.MARKETING
    return Category.UNKNOWN


def parse_risk_level(value: Optional[str]) -> RiskLevel:
    v = str(value or "").strip().capitalize()
    try:
        return RiskLevel(v)
    except ValueError:
        return RiskLevel.UNKNOWN


# Classifier interface

class Classifier(Protocol):
    async def classify(self, batch: Sequence[CanonicalRecord]) -> List[ClassificationResult]:
        ...


# Static ruleset

def load_rules(rules_path: str = RULES_FILE) -> Tuple[dict, List[dict]]:
    with open(rules_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    meta = data.get("_meta", {})
    rules = data.get("rules", [])
    return meta, rules


def _compile_rule(rule: dict) -> dict:
    rule_id = rule.get("id") or rule.get("name") or ""
    base = {
        "rule_id": rule_id,
        "category": map_category(rule.get("category")),
        "vendor": rule.get("vendor"),
        "purpose": rule.get("purpose") or "",
    }
    try:
        if rule.get("regex"):
            return {**base, "type": "name", "name_patt": re.compile(rule["regex"], flags=re.I), "domain_patt": None}
        if rule.get("wildcard"):
            esc = re.escape(rule["wildcard"]).replace("\\*", ".*")
            return {**base, "type": "name", "name_patt": re.compile(f"^{esc}$", flags=re.I), "domain_patt": None}
        if rule.get("cookie") is not None:
            exact = re.escape(str(rule["cookie"]))
            return {**base, "type": "name", "name_patt": re.compile(f"^{exact}$", flags=re.I), "domain_patt": None}
        if rule.get("name_re"):
            dom = rule.get("domain_re")
            return {
                **base,
                "type": "name",
                "name_patt": re.compile(str(rule["name_re"]), flags=re.I),
                "domain_patt": re.compile(str(dom), flags=re.I) if dom else None,
            }
        if rule.get("host_re"):
            return {**base, "type": "host", "host_patt": re.compile(str(rule["host_re"]), flags=re.I)}
    except re.error as e:
        logging.warning(f"[CLASSIFY] Ignoring rule {rule_id}: bad pattern ({e})")
        return {**base, "type": "none"}
    return {**base, "type": "none"}


class RuleClassifier:
    """
    First matching rule wins. Cookies and storage items are matched on their
    name (and optionally domain/origin); network requests on their hostname.
    """

    def __init__(self, rules: Optional[List[dict]] = None, rules_path: str = RULES_FILE):
        if rules is None:
            _, rules = load_rules(rules_path)
        self.rules = [r for r in (_compile_rule(x) for x in rules) if r["type"] != "none"]

    def match(self, record: CanonicalRecord) -> Optional[dict]:
        name = (record.name or "").strip()
        provider = (record.provider or "").strip().lower()
        for r in self.rules:
            if record.kind is TechnologyKind.NETWORK_REQUEST:
                if r["type"] == "host" and r["host_patt"].search(provider):
                    return r
            elif r["type"] == "name":
                dp = r["domain_patt"]
                if r["name_patt"].search(name) and (dp.search(provider) if dp else True):
                    return r
        return None

    def classify_one(self, record: CanonicalRecord) -> ClassificationResult:
        hit = self.match(record)
        if hit is None:
            return ClassificationResult(record.key, Category.UNKNOWN, NEUTRAL_PURPOSE)
        return ClassificationResult(record.key, hit["category"], hit["purpose"] or NEUTRAL_PURPOSE)

    async def classify(self, batch: Sequence[CanonicalRecord]) -> List[ClassificationResult]:
        return [self.classify_one(r) for r in batch]


# Oracle-backed classifier

BATCH_PROMPT = """You are a privacy expert categorizing web technologies. Given this batch of cookies, network requests and web storage items and the consent states they were observed in ('pre-consent', 'post-rejection', 'post-acceptance'), provide a JSON array. For each item:
- key: The original key, unchanged.
- category: One of 'Necessary', 'Functional', 'Analytics', 'Marketing', 'Unknown'. Be strict: only items essential for the site to operate are 'Necessary'.
- purpose: A very brief, one-sentence description of the item's likely function. Limit to 15 words.
Input Data:
{items}
Return ONLY the valid JSON array of results."""

BATCH_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "key": {"type": "STRING"},
            "category": {"type": "STRING"},
            "purpose": {"type": "STRING"},
        },
        "required": ["key", "category", "purpose"],
    },
}


def record_prompt_item(record: CanonicalRecord) -> dict:
    return {
        "key": record.key,
        "type": record.kind.value,
        "name": record.name,
        "provider": record.provider,
        "states": sorted(s.value for s in record.states_observed),
    }


class OracleClassifier:
    def __init__(self, oracle):
        self.oracle = oracle

    async def classify(self, batch: Sequence[CanonicalRecord]) -> List[ClassificationResult]:
        items = [record_prompt_item(r) for r in batch]
        prompt = BATCH_PROMPT.format(items=json.dumps(items, indent=2))
        data = await self.oracle.generate_json(prompt, BATCH_SCHEMA)
        if not isinstance(data, list):
            raise OracleError(f"expected a JSON array, got {type(data).__name__}")
        out = []
        for item in data:
            if not isinstance(item, dict) or not item.get("key"):
                continue
            out.append(ClassificationResult(
                key=str(item["key"]),
                category=map_category(item.get("category")),
                purpose=str(item.get("purpose") or "").strip(),
            ))
        return out


# Consent infrastructure allowlist

class ConsentInfrastructureAllowlist:
    """Cookie/storage names written by consent management platforms."""

    def __init__(self, exact: Iterable[str] = (), wildcard: Iterable[str] = ()):
        self.exact = {e.lower() for e in exact}
        self.wildcard = tuple(w.lower() for w in wildcard)

    @classmethod
    def from_file(cls, path: str = CONSENT_INFRASTRUCTURE_FILE) -> "ConsentInfrastructureAllowlist":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(data.get("exact") or [], data.get("wildcard") or [])

    def matches(self, record: CanonicalRecord) -> bool:
        if record.kind is TechnologyKind.NETWORK_REQUEST:
            return False
        name = (record.name or "").lower()
        if name in self.exact:
            return True
        return any(fnmatch.fnmatchcase(name, w) for w in self.wildcard)


@lru_cache(maxsize=1)
def default_allowlist() -> ConsentInfrastructureAllowlist:
    return ConsentInfrastructureAllowlist.from_file()


def apply_allowlist(classified: ClassifiedRecord, allowlist: Optional[ConsentInfrastructureAllowlist]) -> ClassifiedRecord:
    """A consent-infrastructure name forces Necessary whatever the classifier said."""
    if allowlist is None or not allowlist.matches(classified.record):
        return classified
    if classified.category is not Category.NECESSARY:
        logging.debug(f"[CLASSIFY] {classified.key}: {classified.category.value} -> Necessary (consent infrastructure)")
    purpose = classified.purpose if classified.purpose and classified.purpose != NEUTRAL_PURPOSE else CONSENT_PURPOSE
    return ClassifiedRecord(classified.record, Category.NECESSARY, purpose)


async def classify_records(
    records: Sequence[CanonicalRecord],
    classifier: Classifier,
    batch_size: int = MAX_BATCH_SIZE,
    max_retries: int = 2,
    backoff_s: float = 1.5,
    timeout_s: Optional[float] = 60.0,
    inter_batch_delay_s: float = 0.5,
    sleep=asyncio.sleep,
    allowlist: Optional[ConsentInfrastructureAllowlist] = None,
) -> List[ClassifiedRecord]:
    """
    Classify records in batches of at most ``batch_size`` (capped at 40).
    Each batch gets ``max_retries`` retries; a batch that still fails, and any
    record missing from a response, ends up Unknown with a neutral purpose.
    Output order follows ``records``.
    """
    if not records:
        return []
    batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
    batches = list(batch(records, batch_size))
    logging.info(f"[AI] Splitting analysis into {len(batches)} batch(es) of size ~{batch_size}.")

    results: Dict[str, ClassificationResult] = {}
    for i, chunk in enumerate(batches):
        if i > 0 and inter_batch_delay_s:
            await sleep(inter_batch_delay_s)
        wanted = {r.key for r in chunk}
        try:
            answer = await retry_with_backoff(
                lambda chunk=chunk: classifier.classify(chunk),
                max_attempts=max_retries + 1,
                base_delay=backoff_s,
                timeout=timeout_s,
                label=f"batch {i + 1}/{len(batches)}",
                sleep=sleep,
            )
        except Exception as e:
            logging.error(f"[AI] Batch {i + 1} degraded to Unknown: {e!r}")
            continue
        for res in answer or []:
            # ignore keys we did not ask about
            if res.key in wanted and res.key not in results:
                results[res.key] = res
        missing = wanted - set(results)
        if missing:
            logging.warning(f"[AI] Batch {i + 1}: {len(missing)} item(s) missing from response")

    if allowlist is None:
        allowlist = default_allowlist()

    out = []
    for r in records:
        res = results.get(r.key)
        if res is None:
            classified = ClassifiedRecord(r, Category.UNKNOWN, NEUTRAL_PURPOSE)
        else:
            classified = ClassifiedRecord(r, res.category, res.purpose or NEUTRAL_PURPOSE)
        out.append(apply_allowlist(classified, allowlist))
    logging.info(f"[AI] Classified {len(out)} item(s); {len(records) - len(results)} without an answer.")
    return out


# Risk assessment

class RiskAssessor(Protocol):
    async def assess(self, summary: ViolationSummary) -> Dict[str, ComplianceInfo]:
        ...


def no_items_assessment() -> Dict[str, ComplianceInfo]:
    return {reg: ComplianceInfo(RiskLevel.LOW, NO_ITEMS_ASSESSMENT) for reg in REGULATIONS}


class RuleRiskAssessor:
    """Any violation is High; ten or more marketing/analytics items is Medium."""

    medium_threshold = 10

    async def assess(self, summary: ViolationSummary) -> Dict[str, ComplianceInfo]:
        tracking = summary.total_marketing + summary.total_analytics
        if summary.has_violations:
            level = RiskLevel.HIGH
            text = (
                f"{summary.pre_consent_violations} pre-consent and "
                f"{summary.post_rejection_violations} post-rejection violation(s) were detected. "
                "Non-essential technologies load without valid consent."
            )
        elif tracking >= self.medium_threshold:
            level = RiskLevel.MEDIUM
            text = (
                f"No consent violations were detected, but {tracking} marketing and analytics "
                "items were found. Review that each one is covered by the consent banner."
            )
        else:
            level = RiskLevel.LOW
            text = f"No consent violations were detected across {summary.total_items} item(s)."
        return {reg: ComplianceInfo(level, text) for reg in REGULATIONS}


RISK_PROMPT = """You are a privacy expert providing a risk assessment. Based on this summary from a website scan, provide a JSON object with "gdpr" and "ccpa" keys.
Summary:
{summary}
For both GDPR and CCPA, provide:
- riskLevel: 'Low', 'Medium', 'High'. Any violation ('preConsentViolations' or 'postRejectionViolations' > 0) immediately makes the risk 'High'. A large number of marketing/analytics trackers suggests at least 'Medium' risk.
- assessment: A brief, professional summary explaining the risk level. Specifically mention the number of violations as the primary reason for a 'High' risk assessment.
Return ONLY the valid JSON object."""

_REGULATION_SCHEMA = {
    "type": "OBJECT",
    "properties": {"riskLevel": {"type": "STRING"}, "assessment": {"type": "STRING"}},
    "required": ["riskLevel", "assessment"],
}
RISK_SCHEMA = {
    "type": "OBJECT",
    "properties": {"gdpr": _REGULATION_SCHEMA, "ccpa": _REGULATION_SCHEMA},
    "required": ["gdpr", "ccpa"],
}


class OracleRiskAssessor:
    def __init__(self, oracle):
        self.oracle = oracle

    async def assess(self, summary: ViolationSummary) -> Dict[str, ComplianceInfo]:
        payload = {
            "preConsentViolations": summary.pre_consent_violations,
            "postRejectionViolations": summary.post_rejection_violations,
            "totalMarketing": summary.total_marketing,
            "totalAnalytics": summary.total_analytics,
            "totalItems": summary.total_items,
        }
        logging.info("[AI] Requesting final compliance assessment...")
        try:
            data = await self.oracle.generate_json(RISK_PROMPT.format(summary=json.dumps(payload, indent=2)), RISK_SCHEMA)
        except Exception as e:
            raise RiskAssessmentError(f"Risk assessment failed: {e}") from e

        if not isinstance(data, dict):
            raise RiskAssessmentError("Risk assessment returned a non-object response")
        out = {}
        for reg in REGULATIONS:
            part = data.get(reg)
            if not isinstance(part, dict):
                raise RiskAssessmentError(f"Risk assessment response lacks '{reg}'")
            out[reg] = ComplianceInfo(parse_risk_level(part.get("riskLevel")), str(part.get("assessment") or ""))
        return out
