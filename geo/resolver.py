"""Resolve zone/county geometry for alerts that carry no inline polygon."""

from __future__ import annotations

import re
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Protocol

from config import UGC_PATTERN, Settings
from errors import UpstreamUnavailable
from geo.cache import GeometryCache
from sources.nws_alerts import Alert

_UGC_RE = re.compile(UGC_PATTERN)


class GeometrySource(Protocol):
    def fetch_geometry_batch(self, codes: list[str]) -> dict[str, dict]: ...


@dataclass
class ResolutionReport:
    """What a single resolve() call did."""
    needed: int = 0
    malformed: int = 0
    cached: int = 0
    fetched: int = 0
    unresolvable: int = 0
    batches: int = 0
    failed_batches: int = 0
    deferred: int = 0
    in_flight_elsewhere: int = 0

    @property
    def partial_failure(self) -> bool:
        """True when some batches failed; those alerts render without polygons."""
        return self.failed_batches > 0


def is_valid_code(code: str) -> bool:
    return bool(_UGC_RE.match(code))


def collect_needed_codes(alerts: Iterable[Alert]) -> set[str]:
    """Union of UGC codes for alerts without inline geometry."""
    needed: set[str] = set()
    for alert in alerts:
        if alert.geometry is None:
            needed.update(alert.ugc_codes)
    return needed


def chunk(codes: list[str], size: int) -> list[list[str]]:
    return [codes[i:i + size] for i in range(0, len(codes), size)]


class GeometryResolver:
    """Fill in geometry for reference codes, fetching only what the cache lacks.

    Batches of up to settings.batch_size codes are fetched on a pool of
    settings.batch_concurrency threads. A failed batch contributes nothing
    and is retried on the next cycle; codes a successful batch did not
    return are cached as unresolvable.
    """

    def __init__(self, source: GeometrySource, settings: Settings) -> None:
        self.source = source
        self.settings = settings
        self.last_report = ResolutionReport()
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    @property
    def in_flight(self) -> frozenset[str]:
        with self._in_flight_lock:
            return frozenset(self._in_flight)

    def resolve(self, alerts: Iterable[Alert], cache: GeometryCache) -> dict[str, dict]:
        """Return code -> geometry for every resolvable code the alerts need."""
        report = ResolutionReport()
        self.last_report = report

        needed = collect_needed_codes(alerts)
        report.needed = len(needed)
        if not needed:
            return {}

        valid = {c for c in needed if is_valid_code(c)}
        report.malformed = len(needed) - len(valid)

        cached = cache.get_many(valid)
        report.cached = len(cached)
        missing = sorted(valid - cached.keys())

        if missing:
            claimed = self._claim(missing, report)
            if claimed:
                self._fetch_missing(claimed, cache, report)

        result: dict[str, dict] = {}
        for code, geom in cache.get_many(valid).items():
            if geom is not None:
                result[code] = geom
        return result

    def _claim(self, missing: list[str], report: ResolutionReport) -> list[str]:
        """Register codes as in flight, skipping ones another cycle is fetching."""
        limit = self.settings.max_codes_per_cycle
        with self._in_flight_lock:
            available = [c for c in missing if c not in self._in_flight]
            report.in_flight_elsewhere = len(missing) - len(available)
            claimed = available[:limit]
            self._in_flight.update(claimed)

        report.deferred = len(available) - len(claimed)
        if report.deferred:
            print(f"  Deferring {report.deferred} zone(s) to the next refresh",
                  file=sys.stderr)
        return claimed

    def _fetch_missing(
        self, missing: list[str], cache: GeometryCache, report: ResolutionReport,
    ) -> None:
        batches = chunk(missing, self.settings.batch_size)
        report.batches = len(batches)
        print(f"  Fetching {len(missing)} zone geometr{'y' if len(missing) == 1 else 'ies'} "
              f"in {len(batches)} batch(es)...", file=sys.stderr)

        with ThreadPoolExecutor(max_workers=self.settings.batch_concurrency) as pool:
            outcomes = list(pool.map(self._fetch_batch, batches))

        new_entries: dict[str, dict | None] = {}
        for batch, fetched in outcomes:
            if fetched is None:
                report.failed_batches += 1
                continue
            for code in batch:
                geom = fetched.get(code)
                new_entries[code] = geom
                if geom is None:
                    report.unresolvable += 1
                else:
                    report.fetched += 1

        if cache.put_many(new_entries):
            try:
                cache.persist_all()
            except OSError as exc:
                print(f"  Could not persist geometry cache: {exc}", file=sys.stderr)

        if report.partial_failure:
            print(f"  {report.failed_batches}/{report.batches} zone batch(es) failed; "
                  f"affected alerts render without polygons", file=sys.stderr)

    def _fetch_batch(self, batch: list[str]) -> tuple[list[str], dict[str, dict] | None]:
        try:
            return batch, self.source.fetch_geometry_batch(batch)
        except UpstreamUnavailable as exc:
            print(f"  Zone batch failed ({len(batch)} codes): {exc}", file=sys.stderr)
            return batch, None
        finally:
            with self._in_flight_lock:
                self._in_flight.difference_update(batch)
