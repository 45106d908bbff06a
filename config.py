"""Configuration, constants, and shared data structures for the alert pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """CAP severity levels, declared in display/sort order."""
    EXTREME = "Extreme"
    SEVERE = "Severe"
    MODERATE = "Moderate"
    MINOR = "Minor"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)

    @classmethod
    def parse(cls, value: object) -> Severity:
        """Map a raw severity string to a Severity. Anything unrecognized is UNKNOWN."""
        if isinstance(value, str):
            for sev in cls:
                if sev.value.lower() == value.strip().lower():
                    return sev
        return cls.UNKNOWN


SEVERITY_ORDER: list[Severity] = list(Severity)

# Severity → (Rich style, hex colour used by map consumers)
SEVERITY_STYLES: dict[Severity, tuple[str, str]] = {
    Severity.EXTREME:  ("bold red",    "#ef4444"),
    Severity.SEVERE:   ("dark_orange", "#f97316"),
    Severity.MODERATE: ("yellow",      "#eab308"),
    Severity.MINOR:    ("blue",        "#3b82f6"),
    Severity.UNKNOWN:  ("dim",         "#6b7280"),
}


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AlertFilter:
    """Consumer-side alert filter. Empty axes do not restrict."""
    severities: frozenset[Severity] = frozenset()
    event_types: frozenset[str] = frozenset()
    region: str = ""            # Two-letter state/territory, e.g. "TX"
    keyword: str = ""

    @property
    def is_active(self) -> bool:
        return bool(self.severities or self.event_types or self.region or self.keyword)


# ---------------------------------------------------------------------------
# NWS API constants
# ---------------------------------------------------------------------------

NWS_BASE_URL = "https://api.weather.gov"
NWS_USER_AGENT = "(nws-alert-overlay, contact@example.com)"
NWS_ACCEPT = "application/geo+json"

# UGC codes: two-letter state/marine prefix, C (county) or Z (zone), three digits
UGC_PATTERN = r"^[A-Z]{2}[CZ]\d{3}$"

# Marine UGC prefixes (coastal and Great Lakes waters)
MARINE_PREFIXES: set[str] = {
    "AM", "AN", "GM", "LC", "LE", "LH", "LM", "LO", "LS",
    "PH", "PK", "PM", "PS", "PZ", "SL",
}

# ---------------------------------------------------------------------------
# Geometry resolution parameters
# ---------------------------------------------------------------------------

ZONE_BATCH_LIMIT = 100         # Hard cap on codes per /zones request
ZONE_BATCH_SIZE = 100
ZONE_BATCH_CONCURRENCY = 3
MAX_ZONES_PER_CYCLE = 300      # Remainder is deferred to the next refresh

# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

POLL_INTERVAL = 60  # seconds between automatic refreshes

# ---------------------------------------------------------------------------
# County boundaries (SAME code fallback)
# ---------------------------------------------------------------------------

COUNTY_GEOJSON_URL = "https://raw.githubusercontent.com/plotly/datasets/master/geojson-counties-fips.json"

# ---------------------------------------------------------------------------
# HTTP settings
# ---------------------------------------------------------------------------

HTTP_TIMEOUT = 10       # seconds per API call
HTTP_TIMEOUT_MIN = 8
HTTP_TIMEOUT_MAX = 15
DOWNLOAD_TIMEOUT = 120  # seconds for large file downloads

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")
GEOMETRY_CACHE_FILE = "zone_geometry.json"
SNAPSHOT_FILE = "snapshot.json"
COUNTY_CACHE_FILE = "us_counties.geojson"


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------

@dataclass
class Settings:
    """Externally configurable knobs. Read once at startup, never reloaded."""
    base_url: str = NWS_BASE_URL
    user_agent: str = NWS_USER_AGENT
    poll_interval: float = POLL_INTERVAL
    batch_size: int = ZONE_BATCH_SIZE
    batch_concurrency: int = ZONE_BATCH_CONCURRENCY
    max_codes_per_cycle: int = MAX_ZONES_PER_CYCLE
    timeout: float = HTTP_TIMEOUT
    data_dir: str = DATA_DIR
    extra_headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.batch_size = max(1, min(int(self.batch_size), ZONE_BATCH_LIMIT))
        self.batch_concurrency = max(1, int(self.batch_concurrency))
        self.max_codes_per_cycle = max(self.batch_size, int(self.max_codes_per_cycle))
        self.timeout = min(max(float(self.timeout), HTTP_TIMEOUT_MIN), HTTP_TIMEOUT_MAX)
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")

    @property
    def geometry_cache_path(self) -> str:
        return os.path.join(self.data_dir, GEOMETRY_CACHE_FILE)

    @property
    def snapshot_path(self) -> str:
        return os.path.join(self.data_dir, SNAPSHOT_FILE)

    @property
    def county_cache_path(self) -> str:
        return os.path.join(self.data_dir, COUNTY_CACHE_FILE)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        return cls(
            base_url=env.get("NWS_BASE_URL", NWS_BASE_URL),
            user_agent=env.get("NWS_USER_AGENT", NWS_USER_AGENT),
            poll_interval=float(env.get("POLL_INTERVAL", POLL_INTERVAL)),
            batch_size=int(env.get("ZONE_BATCH_SIZE", ZONE_BATCH_SIZE)),
            batch_concurrency=int(env.get("ZONE_BATCH_CONCURRENCY", ZONE_BATCH_CONCURRENCY)),
            max_codes_per_cycle=int(env.get("MAX_ZONES_PER_CYCLE", MAX_ZONES_PER_CYCLE)),
            timeout=float(env.get("HTTP_TIMEOUT", HTTP_TIMEOUT)),
            data_dir=env.get("DATA_DIR", DATA_DIR),
        )
