"""Polling controller that keeps a consumer's alert view in sync."""

from __future__ import annotations

import sys
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

import requests

from config import HTTP_TIMEOUT, POLL_INTERVAL
from errors import NoDataAvailable, UpstreamUnavailable
from filters import sort_alerts
from service import AlertPayload
from sources.nws_alerts import Alert

Loader = Callable[[bool], AlertPayload]
Listener = Callable[["SyncState", "SyncState"], None]


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    ERROR = "error"


class AlertSyncClient:
    """Initial load, fixed-interval refresh, and manual refresh with single flight.

    At most one fetch cycle runs at a time. A refresh requested while a
    cycle is in flight cancels the pending timer and is coalesced into one
    follow-up cycle that starts after the in-flight one finishes; the
    interval restarts after that. stop() discards late results; a start()
    while a superseded cycle is still draining queues the new mount's load
    behind it. Loader failures of any kind end the cycle in the error state.

    The loader is any callable taking the refresh intent and returning an
    AlertPayload, e.g. AlertService.get_alerts or a ServerLoader.
    """

    def __init__(
        self,
        loader: Loader,
        poll_interval: float = POLL_INTERVAL,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._poll_interval = poll_interval
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.Lock()
        self._listeners: list[Listener] = []
        self._state = SyncState.IDLE
        self._alerts: tuple[Alert, ...] = ()
        self._geometry_map: dict[str, dict] = {}
        self._error: str | None = None
        self._last_updated: datetime | None = None
        self._total_count = 0
        self._stale = False

        self._running = False
        self._generation = 0
        self._in_flight = False
        self._pending: bool | None = None  # refresh intent of the queued follow-up
        self._timer: threading.Timer | None = None
        self._next_refresh_at: float | None = None
        self._completed_cycles = 0

    # -----------------------------------------------------------------------
    # Exposed state
    # -----------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def alerts(self) -> tuple[Alert, ...]:
        return self._alerts

    @property
    def geometry_map(self) -> dict[str, dict]:
        return self._geometry_map

    @property
    def loading(self) -> bool:
        return self._state is SyncState.LOADING

    @property
    def refreshing(self) -> bool:
        return self._in_flight

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def completed_cycles(self) -> int:
        return self._completed_cycles

    @property
    def seconds_until_refresh(self) -> float | None:
        """Seconds until the next automatic refresh, None when none is scheduled."""
        with self._lock:
            if self._next_refresh_at is None:
                return None
            return max(0.0, self._next_refresh_at - self._clock())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register for (previous, current) state transitions. Returns an unsubscribe."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def start(self) -> None:
        """Mount: run the initial load on this thread, then schedule refreshes."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._generation += 1
        self._run(refresh=False)

    def refresh(self) -> bool:
        """Manual refresh. Returns False if it was coalesced into an in-flight cycle."""
        return self._run(refresh=True)

    def stop(self) -> None:
        """Unmount: cancel timers and ignore results of any in-flight cycle."""
        with self._lock:
            self._running = False
            self._generation += 1
            self._pending = None
            self._cancel_timer()

    # -----------------------------------------------------------------------
    # Cycle
    # -----------------------------------------------------------------------

    def _run(self, refresh: bool) -> bool:
        with self._lock:
            if not self._running:
                return False
            self._cancel_timer()
            if self._in_flight:
                # A queued mount load (refresh=False) outranks a queued refresh
                self._pending = refresh if self._pending is None else (self._pending and refresh)
                return False

        while True:
            with self._lock:
                if not self._running:
                    return True
                self._in_flight = True
                generation = self._generation
                target = SyncState.REFRESHING if self._state is SyncState.READY else SyncState.LOADING
                transition = self._set_state(target)

            payload: AlertPayload | None = None
            error: str | None = None
            follow_up: bool | None = None
            try:
                self._notify(transition)
                transition = None
                try:
                    payload = self._loader(refresh)
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
                    print(f"  Alert sync failed: {error}", file=sys.stderr)
            finally:
                with self._lock:
                    self._in_flight = False
                    follow_up = self._pending
                    self._pending = None
                    # Results of a cycle superseded by stop() are dropped
                    if generation == self._generation:
                        if payload is not None or error is not None:
                            transition = self._apply(payload, error)
                            self._completed_cycles += 1
                        if follow_up is None:
                            self._arm_timer()
            self._notify(transition)

            if follow_up is None:
                return True
            refresh = follow_up

    def _apply(self, payload: AlertPayload | None, error: str | None) -> tuple | None:
        if payload is None:
            self._error = error
            return self._set_state(SyncState.ERROR)

        alerts = tuple(sort_alerts(payload.collection.alerts))
        self._alerts = alerts
        self._geometry_map = dict(payload.geometry_map)
        self._total_count = max(payload.collection.total_count, len(alerts))
        self._stale = payload.stale
        self._error = None
        self._last_updated = datetime.now(timezone.utc)
        return self._set_state(SyncState.READY)

    def _on_timer(self) -> None:
        self._run(refresh=True)

    def _arm_timer(self) -> None:
        if not self._running:
            return
        timer = self._timer_factory(self._poll_interval, self._on_timer)
        timer.daemon = True
        self._timer = timer
        self._next_refresh_at = self._clock() + self._poll_interval
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._next_refresh_at = None

    def _set_state(self, new: SyncState) -> tuple | None:
        old = self._state
        if old is new:
            return None
        self._state = new
        return (old, new)

    def _notify(self, transition: tuple | None) -> None:
        if transition is None:
            return
        for listener in list(self._listeners):
            try:
                listener(*transition)
            except Exception as exc:
                print(f"  Alert sync listener failed: {exc}", file=sys.stderr)


class ServerLoader:
    """Loader that polls the serving layer's GET alerts endpoint."""

    def __init__(
        self,
        url: str,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "application/json")
        self.timeout = timeout

    def __call__(self, refresh: bool) -> AlertPayload:
        params = {"refresh": "1"} if refresh else None
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise UpstreamUnavailable(f"error fetching {self.url}: {exc}", url=self.url) from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable(
                f"bad JSON from {self.url}", url=self.url, status=resp.status_code,
            ) from exc

        # 502 with an error body is the serving layer saying it has no data at all
        message = body.get("error") if isinstance(body, dict) else None
        if resp.status_code == 502 and message:
            raise NoDataAvailable(message)
        if resp.status_code != 200:
            raise UpstreamUnavailable(
                f"HTTP {resp.status_code} from {self.url}", url=self.url, status=resp.status_code,
            )
        if not isinstance(body, dict):
            raise ValueError("alerts response must be a JSON object")

        return AlertPayload.from_body(body)
