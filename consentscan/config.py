import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEPTH_TIERS = {
    "lite": 10,
    "medium": 50,
    "deep": 100,
}
MAX_PAGE_BUDGET = 100
MAX_BATCH_SIZE = 40

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/117.0.5938.92 Safari/537.36"
)
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


@dataclass(frozen=True)
class ScanConfig:
    max_pages: int = DEPTH_TIERS["lite"]
    navigation_timeout_ms: int = 30000
    reload_timeout_ms: int = 30000
    settle_ms: int = 1500
    consent_settle_ms: int = 1500
    page_timeout_s: float = 120.0
    use_sitemap: bool = True
    sitemap_limit: int = 50
    batch_size: int = MAX_BATCH_SIZE
    oracle_max_retries: int = 2
    oracle_backoff_s: float = 1.5
    oracle_timeout_s: float = 60.0
    inter_batch_delay_s: float = 0.5
    model: str = DEFAULT_MODEL
    headless: bool = True
    browser_channel: Optional[str] = "chrome"
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1920, "height": 1080})

    def __post_init__(self):
        if not 1 <= self.max_pages <= MAX_PAGE_BUDGET:
            raise ValueError(f"max_pages must be between 1 and {MAX_PAGE_BUDGET}, got {self.max_pages}")
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {self.batch_size}")
        if self.oracle_max_retries < 0:
            raise ValueError("oracle_max_retries cannot be negative")
        for name in ("navigation_timeout_ms", "reload_timeout_ms", "page_timeout_s", "oracle_timeout_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("settle_ms", "consent_settle_ms", "oracle_backoff_s", "inter_batch_delay_s", "sitemap_limit"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @classmethod
    def for_depth(cls, depth: str, **overrides) -> "ScanConfig":
        if depth not in DEPTH_TIERS:
            raise ValueError(f"Unknown scan depth '{depth}'. Allowed: {sorted(DEPTH_TIERS)}")
        overrides.setdefault("max_pages", DEPTH_TIERS[depth])
        return cls(**overrides)

    def with_overrides(self, **overrides) -> "ScanConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_config(path: Union[str, Path, None] = None, **overrides) -> ScanConfig:
    """
    Build a ScanConfig from an optional YAML file plus keyword overrides.
    A ``depth`` key (file or override) selects the page budget tier unless
    ``max_pages`` is given explicitly. Unknown keys are rejected.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        p = Path(path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {p}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Top level of {p} must be a mapping, got {type(data).__name__}")

    data.update({k: v for k, v in overrides.items() if v is not None})

    depth = data.pop("depth", None)
    known = {f.name for f in fields(ScanConfig)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    if depth is not None:
        return ScanConfig.for_depth(depth, **data)
    return ScanConfig(**data)


def get_api_key(env: Optional[Dict[str, str]] = None) -> Optional[str]:
    env = os.environ if env is None else env
    for name in API_KEY_ENV_VARS:
        if env.get(name):
            return env[name]
    return None
