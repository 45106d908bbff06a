"""Fetch active NWS alerts and zone geometry from api.weather.gov."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime

import requests

from config import NWS_ACCEPT, ZONE_BATCH_LIMIT, Settings, Severity
from errors import MalformedGeometry, UpstreamUnavailable
from geo.shapes import validate_geometry


@dataclass(frozen=True)
class Alert:
    """A single active NWS alert."""
    id: str
    event: str                      # "Tornado Warning"
    severity: Severity
    urgency: str = "Unknown"        # "Immediate", "Expected", "Future"
    certainty: str = "Unknown"      # "Observed", "Likely", "Possible"
    status: str = "Actual"
    message_type: str = "Alert"
    headline: str = ""
    description: str = ""
    instruction: str = ""
    area_desc: str = ""
    sender_name: str = ""           # Issuing office
    sent: str | None = None         # ISO 8601
    effective: str | None = None
    onset: str | None = None
    expires: str | None = None
    ends: str | None = None
    ugc_codes: tuple[str, ...] = ()
    same_codes: tuple[str, ...] = ()
    geometry: dict | None = field(default=None, compare=False)

    @property
    def issued_at(self) -> datetime | None:
        """Issuance time used for ordering. Falls back to effective."""
        return parse_timestamp(self.sent) or parse_timestamp(self.effective)

    @property
    def states(self) -> set[str]:
        """Two-letter prefixes of the alert's UGC codes."""
        return {code[:2] for code in self.ugc_codes}

    def to_feature(self) -> dict:
        """Serialize back to a GeoJSON Feature using NWS property names."""
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": self.geometry,
            "properties": {
                "id": self.id,
                "event": self.event,
                "severity": self.severity.value,
                "urgency": self.urgency,
                "certainty": self.certainty,
                "status": self.status,
                "messageType": self.message_type,
                "headline": self.headline,
                "description": self.description,
                "instruction": self.instruction,
                "areaDesc": self.area_desc,
                "senderName": self.sender_name,
                "sent": self.sent,
                "effective": self.effective,
                "onset": self.onset,
                "expires": self.expires,
                "ends": self.ends,
                "geocode": {
                    "UGC": list(self.ugc_codes),
                    "SAME": list(self.same_codes),
                },
            },
        }


@dataclass(frozen=True)
class AlertCollection:
    """Parsed alert feed. total_count is what upstream reported."""
    alerts: tuple[Alert, ...] = ()
    total_count: int = 0
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.alerts)

    def __iter__(self):
        return iter(self.alerts)

    def to_geojson(self) -> dict:
        return {
            "type": "FeatureCollection",
            "features": [a.to_feature() for a in self.alerts],
            "pagination": {"total": self.total_count},
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class AlertParseError(ValueError):
    """A feature does not have the shape of an NWS alert."""


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp. Returns None for missing/invalid values."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None


def _text(props: dict, key: str, default: str = "") -> str:
    value = props.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise AlertParseError(f"{key} must be a string")
    return value


def _timestamp(props: dict, key: str) -> str | None:
    value = props.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or parse_timestamp(value) is None:
        raise AlertParseError(f"{key} is not an ISO 8601 timestamp: {value!r}")
    return value


def _codes(geocode: dict, key: str) -> tuple[str, ...]:
    values = geocode.get(key) or []
    if not isinstance(values, list):
        raise AlertParseError(f"geocode.{key} must be a list")
    return tuple(str(v).strip().upper() for v in values if v)


def parse_feature(feature: object) -> Alert:
    """Parse one GeoJSON feature into an Alert.

    Raises AlertParseError when the record is structurally unusable.
    Malformed inline geometry is dropped rather than failing the record,
    so the alert can still be placed through its reference codes.
    """
    if not isinstance(feature, dict):
        raise AlertParseError("feature must be an object")

    props = feature.get("properties")
    if not isinstance(props, dict):
        raise AlertParseError("feature has no properties")

    alert_id = feature.get("id") or props.get("id")
    if not alert_id or not isinstance(alert_id, str):
        raise AlertParseError("feature has no id")

    geocode = props.get("geocode") or {}
    if not isinstance(geocode, dict):
        raise AlertParseError("geocode must be an object")

    geometry = feature.get("geometry")
    if geometry is not None:
        try:
            geometry = validate_geometry(geometry)
        except MalformedGeometry as exc:
            print(f"  Dropping inline geometry for {alert_id}: {exc}", file=sys.stderr)
            geometry = None

    return Alert(
        id=alert_id,
        event=_text(props, "event", "Unknown Event"),
        severity=Severity.parse(props.get("severity")),
        urgency=_text(props, "urgency", "Unknown"),
        certainty=_text(props, "certainty", "Unknown"),
        status=_text(props, "status", "Actual"),
        message_type=_text(props, "messageType", "Alert"),
        headline=_text(props, "headline"),
        description=_text(props, "description"),
        instruction=_text(props, "instruction"),
        area_desc=_text(props, "areaDesc"),
        sender_name=_text(props, "senderName"),
        sent=_timestamp(props, "sent"),
        effective=_timestamp(props, "effective"),
        onset=_timestamp(props, "onset"),
        expires=_timestamp(props, "expires"),
        ends=_timestamp(props, "ends"),
        ugc_codes=_codes(geocode, "UGC"),
        same_codes=_codes(geocode, "SAME"),
        geometry=geometry,
    )


def parse_collection(data: object) -> AlertCollection:
    """Parse a FeatureCollection, skipping records that fail to parse."""
    if not isinstance(data, dict):
        raise AlertParseError("alert feed must be a JSON object")

    features = data.get("features") or []
    if not isinstance(features, list):
        raise AlertParseError("features must be a list")

    alerts: list[Alert] = []
    skipped = 0
    for feat in features:
        try:
            alerts.append(parse_feature(feat))
        except AlertParseError as exc:
            skipped += 1
            print(f"  Skipping malformed alert record: {exc}", file=sys.stderr)

    total = len(features)
    pagination = data.get("pagination")
    if isinstance(pagination, dict) and isinstance(pagination.get("total"), int):
        total = max(pagination["total"], total)

    return AlertCollection(alerts=tuple(alerts), total_count=total, skipped=skipped)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class NWSClient:
    """Thin read-only client for the two NWS endpoints the pipeline uses.

    No retries and no caching: callers decide what to do on failure.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": settings.user_agent,
            "Accept": NWS_ACCEPT,
            **settings.extra_headers,
        })

    def fetch_alerts(self) -> AlertCollection:
        """Fetch the active alert feed."""
        data = self._get_json(f"{self.settings.base_url}/alerts/active")
        try:
            return parse_collection(data)
        except AlertParseError as exc:
            raise UpstreamUnavailable(f"unexpected alert feed shape: {exc}") from exc

    def fetch_geometry_batch(self, codes: set[str] | list[str]) -> dict[str, dict]:
        """Fetch geometry for up to ZONE_BATCH_LIMIT UGC codes.

        Returns code -> geometry for whatever came back with a usable polygon.
        """
        codes = sorted(set(codes))
        if not codes:
            return {}
        if len(codes) > ZONE_BATCH_LIMIT:
            raise ValueError(f"at most {ZONE_BATCH_LIMIT} codes per batch, got {len(codes)}")

        data = self._get_json(
            f"{self.settings.base_url}/zones",
            params={"id": ",".join(codes), "include_geometry": "true"},
        )

        result: dict[str, dict] = {}
        features = data.get("features", []) if isinstance(data, dict) else []
        for feat in features if isinstance(features, list) else []:
            if not isinstance(feat, dict):
                continue
            props = feat.get("properties") or {}
            code = props.get("id") if isinstance(props, dict) else None
            if not code or feat.get("geometry") is None:
                continue
            try:
                result[code] = validate_geometry(feat["geometry"])
            except MalformedGeometry as exc:
                print(f"  Zone {code}: {exc}", file=sys.stderr)
        return result

    def _get_json(self, url: str, params: dict | None = None) -> object:
        try:
            resp = self.session.get(url, params=params, timeout=self.settings.timeout)
        except requests.exceptions.Timeout as exc:
            raise UpstreamUnavailable(f"timeout fetching {url}", url=url) from exc
        except requests.exceptions.RequestException as exc:
            raise UpstreamUnavailable(f"error fetching {url}: {exc}", url=url) from exc

        if not 200 <= resp.status_code < 300:
            raise UpstreamUnavailable(
                f"NWS {resp.status_code}: {url}", url=url, status=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"bad JSON from {url}", url=url) from exc


if __name__ == "__main__":
    settings = Settings.from_env()
    print("Fetching active NWS alerts...", file=sys.stderr)
    collection = NWSClient(settings).fetch_alerts()

    with_geom = sum(1 for a in collection if a.geometry is not None)
    print(f"  {len(collection)} alert(s), {with_geom} with inline geometry, "
          f"{collection.skipped} skipped (upstream total {collection.total_count})")
