# catalog_repricer/config.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigError

# -------------------------
# Base project root
# -------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_SECRETS_PATH = PROJECT_ROOT / "catalog_repricer" / "secrets.json"
DEFAULT_PAYLOAD_PATH = PROJECT_ROOT / "bulk_payload.jsonl"
DEFAULT_SNAPSHOT_PATH = PROJECT_ROOT / "resolved_items.xlsx"

# -------------------------
# Shopify defaults
# -------------------------

DEFAULT_API_VERSION = "2025-01"
DEFAULT_LOCATION_ID = "gid://shopify/Location/97195786556"

# -------------------------
# Competitor probe defaults
# -------------------------

DEFAULT_PRICE_SELECTOR = ".many__price .price__value"
DEFAULT_BATCH_SIZE = 3
DEFAULT_NAVIGATION_TIMEOUT_MS = 60_000

# -------------------------
# Bulk job polling
# -------------------------

DEFAULT_POLL_INTERVAL_SECONDS = 6.0
DEFAULT_MAX_POLL_ATTEMPTS = 300  # 300 x 6s = 30 minutes

# Added to supplier stock when pushing availableQuantity
STOCK_BUFFER = 10

# Delta metafield: suppliers whose name contains the marker lose a fixed offset
DELTA_EXCLUSION_MARKER = "ЩУ"
DELTA_EXCLUSION_OFFSET = 30.0


@dataclass(frozen=True)
class PricingTier:
    """
    Markup constants for one tier: ``bound = wholesale * mult + add``.

    Monotonic multipliers and addends guarantee ``min <= mid <= max`` for any
    non-negative wholesale price, so that is checked once, here.
    """

    name: str
    min_mult: float
    min_add: float
    mid_mult: float
    mid_add: float
    max_mult: float
    max_add: float

    def __post_init__(self) -> None:
        if not (self.min_mult <= self.mid_mult <= self.max_mult):
            raise ConfigError(
                f"Pricing tier '{self.name}' multipliers are not monotonic",
                detail={"tier": self.name},
            )
        if not (self.min_add <= self.mid_add <= self.max_add):
            raise ConfigError(
                f"Pricing tier '{self.name}' addends are not monotonic",
                detail={"tier": self.name},
            )


AGGRESSIVE = PricingTier("aggressive", 1.05, 25, 1.10, 50, 1.15, 75)
PREMIUM = PricingTier("premium", 1.10, 50, 1.20, 100, 1.30, 150)
MIDDLE = PricingTier("middle", 1.07, 50, 1.15, 100, 1.20, 150)

DEFAULT_TIERS: Dict[str, PricingTier] = {
    AGGRESSIVE.name: AGGRESSIVE,
    PREMIUM.name: PREMIUM,
    MIDDLE.name: MIDDLE,
}

# Winning supplier -> tier. Anything not listed prices as "middle".
DEFAULT_TIER_MEMBERSHIP: Dict[str, str] = {
    "ЧЕ": "aggressive",
    "Б": "aggressive",
    "РИ": "aggressive",
    "BudgetDistributor": "aggressive",
    "ИИ": "premium",
}

# Supplier name -> price normalization factor
DEFAULT_NORMALIZATION_FACTORS: Dict[str, float] = {
    "ЧЕ": 1.0,
    "МЕ": 1.02,
    "РИ": 1.2,
    "ЩУ": 1.0,
    "Б": 1.0,
    "Бо": 1.0,
    "ИИ": 1.0,
}


# -------------------------
# Settings
# -------------------------


@dataclass(frozen=True)
class ShopifySettings:
    store_url: str
    access_token: str
    api_version: str = DEFAULT_API_VERSION
    location_id: str = DEFAULT_LOCATION_ID

    @property
    def graphql_url(self) -> str:
        return f"{self.store_url.rstrip('/')}/admin/api/{self.api_version}/graphql.json"


@dataclass(frozen=True)
class ProbeSettings:
    batch_size: int = DEFAULT_BATCH_SIZE
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    price_selector: str = DEFAULT_PRICE_SELECTOR
    headless: bool = True


@dataclass(frozen=True)
class BulkSettings:
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS


@dataclass(frozen=True)
class PricingSettings:
    tiers: Mapping[str, PricingTier] = field(default_factory=lambda: dict(DEFAULT_TIERS))
    tier_membership: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_TIER_MEMBERSHIP)
    )
    default_tier: str = "middle"
    stock_buffer: int = STOCK_BUFFER
    delta_exclusion_marker: str = DELTA_EXCLUSION_MARKER
    delta_exclusion_offset: float = DELTA_EXCLUSION_OFFSET

    def __post_init__(self) -> None:
        if self.default_tier not in self.tiers:
            raise ConfigError(f"Unknown default pricing tier: {self.default_tier}")
        unknown = sorted({t for t in self.tier_membership.values() if t not in self.tiers})
        if unknown:
            raise ConfigError(f"Tier membership references unknown tiers: {unknown}")


@dataclass(frozen=True)
class SupplierFeedConfig:
    """One entry of the SUPPLIERS list in secrets.json."""

    name: str
    kind: str
    normalization_factor: float = 1.0
    min_count: int = 0
    warranty: str = ""
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Settings:
    shopify: ShopifySettings
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    bulk: BulkSettings = field(default_factory=BulkSettings)
    pricing: PricingSettings = field(default_factory=PricingSettings)
    suppliers: Tuple[SupplierFeedConfig, ...] = ()
    google_service_account_file: Optional[Path] = None


REQUIRED_KEYS = [
    "SHOPIFY_STORE_URL",
    "SHOPIFY_ACCESS_TOKEN",
]

_SUPPLIER_FIELDS = {"name", "kind", "normalization_factor", "min_count", "warranty"}


def _parse_suppliers(raw: Any) -> Tuple[SupplierFeedConfig, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError("SUPPLIERS must be a list of feed definitions")

    feeds: List[SupplierFeedConfig] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("kind"):
            raise ConfigError(f"Supplier feed needs 'name' and 'kind': {entry!r}")
        name = str(entry["name"])
        factor = entry.get("normalization_factor")
        if factor is None:
            factor = DEFAULT_NORMALIZATION_FACTORS.get(name, 1.0)
        feeds.append(
            SupplierFeedConfig(
                name=name,
                kind=str(entry["kind"]),
                normalization_factor=float(factor),
                min_count=int(entry.get("min_count") or 0),
                warranty=str(entry.get("warranty") or ""),
                options={k: v for k, v in entry.items() if k not in _SUPPLIER_FIELDS},
            )
        )
    return tuple(feeds)


_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _parse_bool(key: str, value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ConfigError(f"{key} must be true or false, got {value!r}")


def settings_from_dict(secrets: Dict[str, Any]) -> Settings:
    """
    Build the immutable run configuration from a parsed secrets mapping.

    Required keys:
      - SHOPIFY_STORE_URL
      - SHOPIFY_ACCESS_TOKEN
    Optional keys:
      - SHOPIFY_API_VERSION, SHOPIFY_LOCATION_ID
      - GOOGLE_SERVICE_ACCOUNT_FILE
      - PROBE_BATCH_SIZE, PROBE_NAVIGATION_TIMEOUT_MS, PROBE_PRICE_SELECTOR, PROBE_HEADLESS
      - BULK_POLL_INTERVAL_SECONDS, BULK_MAX_POLL_ATTEMPTS
      - SUPPLIERS
    """
    missing = [k for k in REQUIRED_KEYS if not secrets.get(k)]
    if missing:
        raise ConfigError(f"secrets.json is missing keys: {missing}", detail={"missing": missing})

    shopify = ShopifySettings(
        store_url=str(secrets["SHOPIFY_STORE_URL"]),
        access_token=str(secrets["SHOPIFY_ACCESS_TOKEN"]),
        api_version=str(secrets.get("SHOPIFY_API_VERSION") or DEFAULT_API_VERSION),
        location_id=str(secrets.get("SHOPIFY_LOCATION_ID") or DEFAULT_LOCATION_ID),
    )

    try:
        probe = ProbeSettings(
            batch_size=int(secrets.get("PROBE_BATCH_SIZE") or DEFAULT_BATCH_SIZE),
            navigation_timeout_ms=int(
                secrets.get("PROBE_NAVIGATION_TIMEOUT_MS") or DEFAULT_NAVIGATION_TIMEOUT_MS
            ),
            price_selector=str(secrets.get("PROBE_PRICE_SELECTOR") or DEFAULT_PRICE_SELECTOR),
            headless=_parse_bool("PROBE_HEADLESS", secrets.get("PROBE_HEADLESS"), True),
        )
        bulk = BulkSettings(
            poll_interval_seconds=float(
                secrets.get("BULK_POLL_INTERVAL_SECONDS") or DEFAULT_POLL_INTERVAL_SECONDS
            ),
            max_poll_attempts=int(
                secrets.get("BULK_MAX_POLL_ATTEMPTS") or DEFAULT_MAX_POLL_ATTEMPTS
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid numeric setting in secrets.json: {exc}") from exc

    if probe.batch_size < 1:
        raise ConfigError("PROBE_BATCH_SIZE must be at least 1")
    if bulk.max_poll_attempts < 1:
        raise ConfigError("BULK_MAX_POLL_ATTEMPTS must be at least 1")

    service_account = secrets.get("GOOGLE_SERVICE_ACCOUNT_FILE")

    return Settings(
        shopify=shopify,
        probe=probe,
        bulk=bulk,
        suppliers=_parse_suppliers(secrets.get("SUPPLIERS")),
        google_service_account_file=Path(service_account) if service_account else None,
    )


def load_settings(secrets_path: Path | str | None = None) -> Settings:
    """
    Load secrets.json and turn it into a ``Settings`` object.

    Nothing is written back to the environment; callers pass the returned
    object to each component explicitly.
    """
    if secrets_path is None:
        secrets_path = DEFAULT_SECRETS_PATH

    secrets_path = Path(secrets_path)
    if not secrets_path.exists():
        raise ConfigError(f"secrets.json not found at: {secrets_path}")

    try:
        with open(secrets_path, "r", encoding="utf-8") as f:
            secrets: Dict[str, Any] = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"secrets.json is not valid JSON: {exc}") from exc

    return settings_from_dict(secrets)
