"""Order and filter alerts for display."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from config import AlertFilter, Severity
from sources.nws_alerts import Alert


def sort_key(alert: Alert) -> tuple[int, int, float]:
    """Severity rank ascending, then most recently issued first (undated last)."""
    issued = alert.issued_at
    if issued is None:
        return (alert.severity.rank, 1, 0.0)
    return (alert.severity.rank, 0, -issued.timestamp())


def sort_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    return sorted(alerts, key=sort_key)


def matches(alert: Alert, flt: AlertFilter) -> bool:
    """Check an alert against every active filter axis (AND)."""
    if flt.severities and alert.severity not in flt.severities:
        return False
    if flt.event_types and alert.event not in flt.event_types:
        return False
    if flt.region:
        region = flt.region.strip()
        if not (any(c.startswith(region.upper()) for c in alert.ugc_codes)
                or region.lower() in alert.area_desc.lower()):
            return False
    if flt.keyword:
        keyword = flt.keyword.lower()
        haystack = " ".join(
            (alert.headline, alert.description, alert.event, alert.area_desc),
        ).lower()
        if keyword not in haystack:
            return False
    return True


def apply_filter(alerts: Iterable[Alert], flt: AlertFilter) -> list[Alert]:
    """Filter alerts, preserving input order."""
    if not flt.is_active:
        return list(alerts)
    return [a for a in alerts if matches(a, flt)]


def available_event_types(alerts: Iterable[Alert]) -> list[str]:
    """Sorted, de-duplicated event names."""
    return sorted({a.event for a in alerts if a.event})


def count_by_state(alerts: Iterable[Alert]) -> dict[str, int]:
    """Number of alerts touching each state, keyed by UGC prefix."""
    counts: dict[str, int] = defaultdict(int)
    for alert in alerts:
        for state in alert.states:
            counts[state] += 1
    return dict(counts)


def count_by_severity(alerts: Iterable[Alert]) -> dict[Severity, int]:
    counts = {sev: 0 for sev in Severity}
    for alert in alerts:
        counts[alert.severity] += 1
    return counts


def build_filter(
    severities: Iterable[str] = (),
    event_types: Iterable[str] = (),
    region: str = "",
    keyword: str = "",
) -> AlertFilter:
    """Build an AlertFilter from raw strings (CLI or query parameters)."""
    return AlertFilter(
        severities=frozenset(Severity.parse(s) for s in severities if s),
        event_types=frozenset(e.strip() for e in event_types if e and e.strip()),
        region=region.strip().upper() if len(region.strip()) == 2 else region.strip(),
        keyword=keyword.strip(),
    )
