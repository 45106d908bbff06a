"""Rich console output for active alerts."""

from __future__ import annotations

import sys
from datetime import datetime, timezone

from rich.console import Console
from rich.table import Table
from rich.text import Text

from config import SEVERITY_STYLES, AlertFilter, Severity
from filters import count_by_severity, count_by_state
from geo.shapes import alert_geometry
from sources.nws_alerts import Alert, parse_timestamp


def format_countdown(total_seconds: float | None) -> str:
    """'1m 5s' / '42s'. Empty string when nothing is scheduled."""
    if total_seconds is None:
        return ""
    s = max(0, round(total_seconds))
    m, sec = divmod(s, 60)
    return f"{m}m {sec}s" if m > 0 else f"{sec}s"


def format_relative(value: str | datetime | None, now: datetime | None = None) -> str:
    """Human-readable distance from now, e.g. '5m ago' or 'in 2h 10m'."""
    dt = parse_timestamp(value) if isinstance(value, str) else value
    if dt is None:
        return ""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)

    seconds = int((dt - now).total_seconds())
    future = seconds > 0
    seconds = abs(seconds)
    hours, rem = divmod(seconds, 3600)
    minutes = rem // 60
    span = f"{hours}h {minutes}m" if hours else f"{minutes}m"
    return f"in {span}" if future else f"{span} ago"


def truncate(text: str, max_len: int = 110) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len].rstrip() + "…"


def is_expired(alert: Alert, now: datetime | None = None) -> bool:
    expires = parse_timestamp(alert.expires)
    if expires is None:
        return False
    return expires < (now or datetime.now(timezone.utc))


def render_alerts(
    alerts: list[Alert],
    geometry_map: dict[str, dict],
    total_count: int,
    flt: AlertFilter | None = None,
    fetched_at: datetime | None = None,
    stale: bool = False,
    countdown: float | None = None,
    error: str | None = None,
    county_geometries: dict[str, dict] | None = None,
    limit: int = 50,
) -> None:
    """Render the alert list to the terminal using Rich."""
    console = Console(file=sys.stdout)

    filtered_note = f" (filtered to {len(alerts)})" if flt is not None and flt.is_active else ""
    console.print()
    console.rule(f"[bold]NWS ACTIVE ALERTS — {total_count:,} alert(s){filtered_note}[/bold]",
                 style="bright_white")

    status = []
    if fetched_at is not None:
        status.append(f"Updated {format_relative(fetched_at)}")
    if stale:
        status.append("[bold yellow]STALE — showing last good snapshot[/bold yellow]")
    if countdown is not None:
        status.append(f"next refresh in {format_countdown(countdown)}")
    if error:
        status.append(f"[bold red]⚠ {error}[/bold red]")
    if status:
        console.print("  " + " │ ".join(status))

    counts = count_by_severity(alerts)
    console.print("  " + "  ".join(
        f"[{SEVERITY_STYLES[sev][0]}]{sev.value}: {counts[sev]}[/]" for sev in Severity
    ))

    if not alerts:
        console.print("\n  [bold green]No active alerts match.[/bold green]\n")
        return

    table = Table(show_lines=False, expand=True, pad_edge=False)
    table.add_column("Severity", no_wrap=True)
    table.add_column("Event")
    table.add_column("Area", ratio=2)
    table.add_column("Expires", no_wrap=True)
    table.add_column("Map", no_wrap=True)

    for alert in alerts[:limit]:
        style = SEVERITY_STYLES[alert.severity][0]
        has_shape = alert_geometry(alert, geometry_map, county_geometries) is not None
        expires = format_relative(alert.expires) or "—"
        table.add_row(
            Text(alert.severity.value, style=style),
            Text(alert.event, style="dim" if is_expired(alert) else ""),
            truncate(alert.area_desc, 80),
            expires,
            "✔" if has_shape else "·",
        )

    console.print(table)
    if len(alerts) > limit:
        console.print(f"  … {len(alerts) - limit} more")

    top_states = sorted(count_by_state(alerts).items(), key=lambda x: -x[1])[:10]
    if top_states:
        console.print("  States: " + ", ".join(f"{s} ({n})" for s, n in top_states), style="dim")
    console.print()
