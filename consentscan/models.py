"""
Data model shared by the crawler, aggregator, classifier and report assembler.

Observations are a tagged union: ``Observation.kind`` says which payload
dataclass sits in ``Observation.payload``.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union


class ConsentState(str, Enum):
    PRE_CONSENT = "pre-consent"
    POST_REJECTION = "post-rejection"
    POST_ACCEPTANCE = "post-acceptance"


class TechnologyKind(str, Enum):
    COOKIE = "cookie"
    NETWORK_REQUEST = "request"
    STORAGE_ITEM = "storage"


class Category(str, Enum):
    NECESSARY = "Necessary"
    FUNCTIONAL = "Functional"
    ANALYTICS = "Analytics"
    MARKETING = "Marketing"
    UNKNOWN = "Unknown"


class ComplianceStatus(str, Enum):
    COMPLIANT = "Compliant"
    PRE_CONSENT_VIOLATION = "Pre-Consent Violation"
    POST_REJECTION_VIOLATION = "Post-Rejection Violation"
    UNKNOWN = "Unknown"


class RiskLevel(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFORMATIONAL = "Informational"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class CookiePayload:
    name: str
    domain: str
    path: str = "/"
    expires: float = -1
    secure: bool = False
    http_only: bool = False
    same_site: Optional[str] = None

    @property
    def session(self) -> bool:
        return self.expires is None or self.expires <= 0


@dataclass(frozen=True)
class RequestPayload:
    url: str
    hostname: str
    resource_type: Optional[str] = None


@dataclass(frozen=True)
class StoragePayload:
    origin: str
    key: str
    value: Optional[str] = None
    area: str = "local"
    page_url: Optional[str] = None


Payload = Union[CookiePayload, RequestPayload, StoragePayload]


@dataclass(frozen=True)
class Observation:
    kind: TechnologyKind
    payload: Payload

    @property
    def key(self) -> str:
        p = self.payload
        if self.kind is TechnologyKind.COOKIE:
            return f"cookie|{p.name}|{p.domain}|{p.path}"
        if self.kind is TechnologyKind.NETWORK_REQUEST:
            return f"request|{p.url}"
        if self.kind is TechnologyKind.STORAGE_ITEM:
            return f"storage|{p.origin}|{p.key}"
        raise ValueError(f"Unknown technology kind: {self.kind}")

    @classmethod
    def cookie(cls, **fields) -> "Observation":
        return cls(TechnologyKind.COOKIE, CookiePayload(**fields))

    @classmethod
    def request(cls, **fields) -> "Observation":
        return cls(TechnologyKind.NETWORK_REQUEST, RequestPayload(**fields))

    @classmethod
    def storage(cls, **fields) -> "Observation":
        return cls(TechnologyKind.STORAGE_ITEM, StoragePayload(**fields))


@dataclass
class PageObservations:
    cookies: List[Observation] = field(default_factory=list)
    requests: List[Observation] = field(default_factory=list)
    storage: List[Observation] = field(default_factory=list)
    consent_signals: Optional[Dict[str, bool]] = None

    def all(self) -> List[Observation]:
        return [*self.cookies, *self.requests, *self.storage]


@dataclass
class CanonicalRecord:
    key: str
    kind: TechnologyKind
    payload: Payload
    states_observed: Set[ConsentState] = field(default_factory=set)
    pages_found: Set[str] = field(default_factory=set)

    @property
    def name(self) -> str:
        p = self.payload
        if self.kind is TechnologyKind.COOKIE:
            return p.name
        if self.kind is TechnologyKind.NETWORK_REQUEST:
            return p.hostname
        return p.key

    @property
    def provider(self) -> str:
        p = self.payload
        if self.kind is TechnologyKind.COOKIE:
            return p.domain
        if self.kind is TechnologyKind.NETWORK_REQUEST:
            return p.hostname
        return p.origin


@dataclass(frozen=True)
class ClassificationResult:
    key: str
    category: Category
    purpose: str = ""


@dataclass
class ClassifiedRecord:
    record: CanonicalRecord
    category: Category
    purpose: str

    @property
    def key(self) -> str:
        return self.record.key


@dataclass
class VerdictRecord:
    classified: ClassifiedRecord
    compliance_status: ComplianceStatus
    remediation: str

    @property
    def record(self) -> CanonicalRecord:
        return self.classified.record

    @property
    def category(self) -> Category:
        return self.classified.category


@dataclass
class ComplianceInfo:
    risk_level: RiskLevel
    assessment: str


@dataclass
class CrawlResult:
    root_url: str
    records: List[CanonicalRecord] = field(default_factory=list)
    screenshot: Optional[bytes] = None
    consent_banner_detected: bool = False
    pages_visited: List[str] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)
    consent_signals: Optional[Dict[str, bool]] = None

    @property
    def pages_scanned_count(self) -> int:
        return len(self.pages_visited)


@dataclass
class ViolationSummary:
    pre_consent_violations: int = 0
    post_rejection_violations: int = 0
    total_marketing: int = 0
    total_analytics: int = 0
    total_items: int = 0

    @property
    def has_violations(self) -> bool:
        return (self.pre_consent_violations + self.post_rejection_violations) > 0


@dataclass
class CookieReport:
    key: str
    name: str
    provider: str
    category: str
    purpose: str
    expiry: str
    party: str
    is_http_only: bool
    is_secure: bool
    compliance_status: str
    remediation: str
    states: List[str]
    pages_found: List[str]


@dataclass
class TrackerReport:
    key: str
    url: str
    provider: str
    hostname: str
    category: str
    purpose: str
    compliance_status: str
    remediation: str
    states: List[str]
    pages_found: List[str]


@dataclass
class StorageReport:
    key: str
    name: str
    origin: str
    area: str
    category: str
    purpose: str
    compliance_status: str
    remediation: str
    states: List[str]
    pages_found: List[str]


@dataclass
class ScanReport:
    scanned_url: str
    generated_at: str
    cookies: List[CookieReport] = field(default_factory=list)
    trackers: List[TrackerReport] = field(default_factory=list)
    storage: List[StorageReport] = field(default_factory=list)
    screenshot_base64: str = ""
    compliance: Dict[str, ComplianceInfo] = field(default_factory=dict)
    consent_banner_detected: bool = False
    pages_scanned_count: int = 0
    consent_signals: Optional[Dict[str, bool]] = None
    summary: ViolationSummary = field(default_factory=ViolationSummary)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["compliance"] = {
            reg: {"risk_level": info.risk_level.value, "assessment": info.assessment}
            for reg, info in self.compliance.items()
        }
        return out
