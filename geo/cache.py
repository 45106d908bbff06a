"""Persistent UGC code -> geometry cache backed by a JSON file."""

from __future__ import annotations

import json
import os
import sys
import tempfile
import threading
from typing import Iterable


class GeometryCache:
    """Write-once map of zone/county code to GeoJSON geometry.

    A value of None marks a code the upstream could not resolve, so it is
    not requested again. Entries are never updated or evicted.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._entries: dict[str, dict | None] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._dirty = False

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, code: str, default: object = None) -> dict | None:
        with self._lock:
            return self._entries.get(code, default)

    def get_many(self, codes: Iterable[str]) -> dict[str, dict | None]:
        """Return the cached subset of codes, unresolvable markers included."""
        with self._lock:
            return {c: self._entries[c] for c in codes if c in self._entries}

    def put(self, code: str, geometry: dict | None) -> bool:
        """Add an entry. Returns False if the code was already cached."""
        with self._lock:
            if code in self._entries:
                return False
            self._entries[code] = geometry
            self._dirty = True
            return True

    def put_many(self, entries: dict[str, dict | None]) -> int:
        """Add several entries. Returns how many were new."""
        return sum(1 for code, geom in entries.items() if self.put(code, geom))

    def resolved_count(self) -> int:
        with self._lock:
            return sum(1 for g in self._entries.values() if g is not None)

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def load_all(self) -> dict[str, dict | None]:
        """Merge the persisted file into memory. Missing/corrupt file -> empty."""
        data = read_json(self.path)
        if not isinstance(data, dict):
            if data is not None:
                print(f"  Geometry cache at {self.path} is not a mapping, ignoring",
                      file=sys.stderr)
            data = {}

        loaded = {
            code: geom for code, geom in data.items()
            if isinstance(code, str) and (geom is None or isinstance(geom, dict))
        }
        with self._lock:
            for code, geom in loaded.items():
                self._entries.setdefault(code, geom)
            return dict(self._entries)

    def persist_all(self) -> None:
        """Write every entry atomically (write to temp, rename).

        Writers are serialized so an older copy never lands after a newer one.
        """
        with self._write_lock:
            with self._lock:
                if not self._dirty and os.path.exists(self.path):
                    return
                snapshot = dict(self._entries)
                self._dirty = False
            try:
                write_json_atomic(self.path, snapshot)
            except OSError:
                with self._lock:
                    self._dirty = True
                raise


def read_json(path: str) -> object:
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        print(f"  Could not read {path} ({exc}), starting empty", file=sys.stderr)
        return None


def write_json_atomic(path: str, data: object) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f)
        os.replace(tmp, path)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
