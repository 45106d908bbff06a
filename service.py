"""Alert refresh cycle: fetch, resolve geometry, snapshot, fall back when stale."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone

from config import Settings
from errors import NoDataAvailable, UpstreamUnavailable
from geo.cache import GeometryCache
from geo.resolver import GeometryResolver
from snapshots import Snapshot, SnapshotStore
from sources.nws_alerts import AlertCollection, NWSClient, parse_timestamp


@dataclass(frozen=True)
class AlertPayload:
    """What a caller of GET alerts receives."""
    collection: AlertCollection
    geometry_map: dict[str, dict] = field(default_factory=dict, compare=False)
    cached: bool = False
    stale: bool = False
    fetched_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, stale: bool = False) -> AlertPayload:
        return cls(
            collection=snapshot.collection,
            geometry_map=snapshot.geometry_map,
            cached=True,
            stale=stale,
            fetched_at=snapshot.fetched_at,
        )

    def to_body(self) -> dict:
        meta: dict = {"cached": self.cached}
        if self.stale:
            meta["stale"] = True
        if self.fetched_at is not None:
            meta["fetchedAt"] = self.fetched_at.isoformat()
        return {
            "alertCollection": self.collection.to_geojson(),
            "geometryMap": self.geometry_map,
            "meta": meta,
        }

    @classmethod
    def from_body(cls, body: dict) -> AlertPayload:
        """Decode a response body produced by to_body()."""
        meta = body.get("meta")
        if not isinstance(meta, dict):
            meta = {}
        snapshot = Snapshot.from_dict({
            "alertCollection": body.get("alertCollection"),
            "geometryMap": body.get("geometryMap"),
            "fetchedAt": meta.get("fetchedAt") or datetime.now(timezone.utc).isoformat(),
        })
        return cls(
            collection=snapshot.collection,
            geometry_map=snapshot.geometry_map,
            cached=bool(meta.get("cached", False)),
            stale=bool(meta.get("stale", False)),
            fetched_at=parse_timestamp(meta.get("fetchedAt")),
        )


class AlertService:
    """Owns the pipeline collaborators for one process.

    The geometry cache and snapshot store are created once and shared by
    every request handled through this service.
    """

    def __init__(
        self,
        client: NWSClient,
        cache: GeometryCache,
        resolver: GeometryResolver,
        store: SnapshotStore,
    ) -> None:
        self.client = client
        self.cache = cache
        self.resolver = resolver
        self.store = store

    @classmethod
    def from_settings(cls, settings: Settings) -> AlertService:
        client = NWSClient(settings)
        cache = GeometryCache(settings.geometry_cache_path)
        cache.load_all()
        return cls(
            client=client,
            cache=cache,
            resolver=GeometryResolver(client, settings),
            store=SnapshotStore(settings.snapshot_path),
        )

    def get_alerts(self, refresh: bool = False) -> AlertPayload:
        """Serve the snapshot fast path, or run a full refresh cycle.

        On upstream failure the last snapshot is returned marked stale.
        Raises NoDataAvailable when there is nothing to fall back to.
        """
        if not refresh:
            snapshot = self.store.load()
            if snapshot is not None:
                return AlertPayload.from_snapshot(snapshot)

        try:
            snapshot = self.refresh()
        except UpstreamUnavailable as exc:
            print(f"  NWS unavailable: {exc}", file=sys.stderr)
            fallback = self.store.load()
            if fallback is None:
                raise NoDataAvailable(f"no snapshot available and NWS failed: {exc}") from exc
            print(f"  Serving stale snapshot from {fallback.fetched_at.isoformat()}",
                  file=sys.stderr)
            return AlertPayload.from_snapshot(fallback, stale=True)

        return AlertPayload(
            collection=snapshot.collection,
            geometry_map=snapshot.geometry_map,
            cached=False,
            fetched_at=snapshot.fetched_at,
        )

    def refresh(self) -> Snapshot:
        """Fetch alerts, resolve missing geometry, and save a new snapshot."""
        print("Fetching active NWS alerts...", file=sys.stderr)
        collection = self.client.fetch_alerts()
        print(f"  {len(collection)} alert(s) (upstream total {collection.total_count})",
              file=sys.stderr)

        geometry_map = self.resolver.resolve(collection, self.cache)
        report = self.resolver.last_report
        if report.needed:
            print(f"  Zones: {report.needed} needed, {report.cached} cached, "
                  f"{report.fetched} fetched, {report.unresolvable} unresolvable",
                  file=sys.stderr)

        snapshot = Snapshot(collection=collection, geometry_map=geometry_map)
        self.store.save(snapshot)
        return snapshot


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------

def parse_refresh_flag(value: str | None) -> bool:
    """Interpret the ?refresh= query value."""
    if value is None:
        return False
    return value.strip().lower() in ("1", "true", "yes")


def build_response(service: AlertService, refresh: bool = False) -> tuple[int, dict]:
    """Return (status, body) for GET alerts. Non-2xx only when no data exists."""
    try:
        payload = service.get_alerts(refresh=refresh)
    except NoDataAvailable as exc:
        return 502, {"error": "Failed to fetch NOAA alerts", "details": str(exc)}
    return 200, payload.to_body()
