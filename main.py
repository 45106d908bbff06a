"""NWS alert overlay pipeline — CLI entrypoint."""

from __future__ import annotations

import argparse
import json
import os
import sys
import threading

from dotenv import load_dotenv


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Fetch NWS alerts and resolve zone geometry for map overlays",
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Suppress stderr progress messages (useful for cron)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # alerts command
    alerts_parser = subparsers.add_parser(
        "alerts", help="Show active alerts (snapshot fast path unless --refresh)",
    )
    alerts_parser.add_argument(
        "--refresh", action="store_true",
        help="Fetch fresh alerts and resolve missing zone geometry",
    )
    alerts_parser.add_argument(
        "--json", action="store_true",
        help="Print the GET alerts response body instead of a table",
    )
    _add_filter_args(alerts_parser)

    # watch command
    watch_parser = subparsers.add_parser(
        "watch", help="Poll continuously and print each update",
    )
    watch_parser.add_argument(
        "--interval", type=float,
        help="Seconds between automatic refreshes (default: POLL_INTERVAL)",
    )
    watch_parser.add_argument(
        "--server", metavar="URL",
        help="Poll a serving layer's alerts endpoint instead of NWS directly",
    )
    _add_filter_args(watch_parser)

    # cache command
    subparsers.add_parser("cache", help="Show geometry cache and snapshot status")

    args = parser.parse_args()

    # Redirect stderr to /dev/null in quiet mode
    if getattr(args, "quiet", False):
        sys.stderr = open(os.devnull, "w")

    if args.command == "alerts":
        _cmd_alerts(args)
    elif args.command == "watch":
        _cmd_watch(args)
    elif args.command == "cache":
        _cmd_cache(args)
    else:
        parser.print_help()


def _add_filter_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "--severity", action="append", default=[],
        help="Severity to include (repeatable): Extreme, Severe, Moderate, Minor, Unknown",
    )
    sub.add_argument(
        "--event", action="append", default=[],
        help="Event type to include (repeatable), e.g. 'Tornado Warning'",
    )
    sub.add_argument("--state", default="", help="Two-letter state/territory, e.g. TX")
    sub.add_argument("--keyword", default="", help="Free-text search")
    sub.add_argument(
        "--counties", action="store_true",
        help="Use county outlines from SAME codes when zone geometry is missing",
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_alerts(args: argparse.Namespace) -> None:
    """Run one GET alerts request and render it."""
    from config import Settings
    from service import AlertService, build_response

    settings = Settings.from_env()
    service = AlertService.from_settings(settings)

    status, body = build_response(service, refresh=args.refresh)
    if args.json:
        json.dump(body, sys.stdout)
        print()
        if status != 200:
            sys.exit(1)
        return

    if status != 200:
        print(f"Error: {body.get('details', body.get('error'))}", file=sys.stderr)
        sys.exit(1)

    from filters import apply_filter, sort_alerts
    from output.console import render_alerts
    from service import AlertPayload

    payload = AlertPayload.from_body(body)
    flt = _build_filter(args)
    alerts = apply_filter(sort_alerts(payload.collection.alerts), flt)
    render_alerts(
        alerts,
        payload.geometry_map,
        total_count=payload.collection.total_count,
        flt=flt,
        fetched_at=payload.fetched_at,
        stale=payload.stale,
        county_geometries=_county_geometries(settings, args),
    )


def _cmd_watch(args: argparse.Namespace) -> None:
    """Keep an AlertSyncClient running until interrupted."""
    from config import Settings
    from filters import apply_filter
    from output.console import render_alerts
    from sync import AlertSyncClient, ServerLoader, SyncState

    settings = Settings.from_env()
    if args.server:
        loader = ServerLoader(args.server, timeout=settings.timeout)
    else:
        from service import AlertService
        loader = AlertService.from_settings(settings).get_alerts

    client = AlertSyncClient(loader, poll_interval=args.interval or settings.poll_interval)
    flt = _build_filter(args)
    counties = _county_geometries(settings, args)

    def on_change(previous: SyncState, current: SyncState) -> None:
        print(f"  [{previous.value} → {current.value}]", file=sys.stderr)
        if current not in (SyncState.READY, SyncState.ERROR):
            return
        alerts = apply_filter(client.alerts, flt)
        render_alerts(
            alerts,
            client.geometry_map,
            total_count=client.total_count,
            flt=flt,
            fetched_at=client.last_updated,
            stale=client.stale,
            countdown=client.seconds_until_refresh,
            error=client.error,
            county_geometries=counties,
        )

    client.subscribe(on_change)
    client.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        print("\nStopping.", file=sys.stderr)
    finally:
        client.stop()


def _cmd_cache(args: argparse.Namespace) -> None:
    """Summarize the persisted geometry cache and snapshot."""
    from config import Settings
    from geo.cache import GeometryCache
    from snapshots import SnapshotStore

    settings = Settings.from_env()
    cache = GeometryCache(settings.geometry_cache_path)
    cache.load_all()
    resolved = cache.resolved_count()

    print(f"Geometry cache: {settings.geometry_cache_path}")
    print(f"  {len(cache)} code(s): {resolved} resolved, {len(cache) - resolved} unresolvable")

    snapshot = SnapshotStore(settings.snapshot_path).load()
    if snapshot is None:
        print("Snapshot: none saved yet")
    else:
        print(f"Snapshot: {snapshot.fetched_at.isoformat()} — "
              f"{len(snapshot.collection)} alert(s), {len(snapshot.geometry_map)} zone geometr(ies)")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_filter(args: argparse.Namespace):
    from filters import build_filter

    return build_filter(
        severities=args.severity,
        event_types=args.event,
        region=args.state,
        keyword=args.keyword,
    )


def _county_geometries(settings, args) -> dict | None:
    """County outlines for the SAME-code fallback, when --counties is given."""
    if not getattr(args, "counties", False):
        return None

    from geo.counties import load_county_geometries

    return load_county_geometries(settings.county_cache_path)


if __name__ == "__main__":
    main()
