"""Persist the last resolved alert + geometry bundle as JSON."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone

from geo.cache import read_json, write_json_atomic
from sources.nws_alerts import AlertCollection, AlertParseError, parse_collection, parse_timestamp


@dataclass(frozen=True)
class Snapshot:
    """Alerts, the geometry needed to draw them, and when they were fetched."""
    collection: AlertCollection
    geometry_map: dict[str, dict] = field(default_factory=dict, compare=False)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "alertCollection": self.collection.to_geojson(),
            "geometryMap": self.geometry_map,
            "fetchedAt": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Snapshot:
        """Rebuild a snapshot. Raises ValueError if the layout is wrong."""
        if not isinstance(data, dict):
            raise ValueError("snapshot must be a JSON object")

        fetched_at = parse_timestamp(data.get("fetchedAt"))
        if fetched_at is None:
            raise ValueError("snapshot has no fetchedAt")

        geometry_map = data.get("geometryMap") or {}
        if not isinstance(geometry_map, dict):
            raise ValueError("geometryMap must be an object")

        try:
            collection = parse_collection(data.get("alertCollection"))
        except AlertParseError as exc:
            raise ValueError(f"bad alertCollection: {exc}") from exc

        return cls(collection=collection, geometry_map=geometry_map, fetched_at=fetched_at)


class SnapshotStore:
    """Single-slot store: every save supersedes the previous snapshot."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._latest: Snapshot | None = None
        self._loaded = False

    def load(self) -> Snapshot | None:
        """Return the last saved snapshot, or None. Corrupt files read as None."""
        if self._latest is not None or self._loaded:
            return self._latest

        self._loaded = True
        data = read_json(self.path)
        if data is None:
            return None
        try:
            self._latest = Snapshot.from_dict(data)
        except ValueError as exc:
            print(f"  Ignoring unreadable snapshot at {self.path}: {exc}", file=sys.stderr)
            return None
        return self._latest

    def save(self, snapshot: Snapshot) -> None:
        """Replace the stored snapshot. The in-memory copy updates even if the write fails."""
        self._latest = snapshot
        self._loaded = True
        try:
            write_json_atomic(self.path, snapshot.to_dict())
        except OSError as exc:
            print(f"  Could not write snapshot to {self.path}: {exc}", file=sys.stderr)


if __name__ == "__main__":
    from config import Settings

    snap = SnapshotStore(Settings.from_env().snapshot_path).load()
    if snap is None:
        print("No snapshot saved yet.")
    else:
        print(f"Snapshot from {snap.fetched_at.isoformat()}: "
              f"{len(snap.collection)} alert(s), {len(snap.geometry_map)} zone geometr(ies)")
