"""Shared fixtures and fakes for the alert pipeline tests."""

import sys
import threading
import time
from pathlib import Path

import pytest
import requests

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings
from errors import UpstreamUnavailable


def square(x=0.0, y=0.0, size=1.0):
    """A closed GeoJSON polygon."""
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]],
    }


def make_feature(
    alert_id="urn:oid:2.49.0.1.840.0.1",
    event="Tornado Warning",
    severity="Extreme",
    sent="2025-05-01T12:00:00-05:00",
    ugc=(),
    same=(),
    geometry=None,
    **props,
):
    """A minimal NWS alert feature."""
    properties = {
        "id": alert_id,
        "event": event,
        "severity": severity,
        "urgency": "Immediate",
        "certainty": "Observed",
        "status": "Actual",
        "messageType": "Alert",
        "headline": f"{event} issued",
        "description": "",
        "areaDesc": "Somewhere County",
        "senderName": "NWS Norman OK",
        "sent": sent,
        "effective": sent,
        "geocode": {"UGC": list(ugc), "SAME": list(same)},
    }
    properties.update(props)
    return {"type": "Feature", "id": alert_id, "geometry": geometry, "properties": properties}


def feature_collection(*features, total=None):
    data = {"type": "FeatureCollection", "features": list(features)}
    if total is not None:
        data["pagination"] = {"total": total}
    return data


class FakeResponse:
    def __init__(self, status_code=200, payload=None, raise_json=False):
        self.status_code = status_code
        self._payload = payload
        self._raise_json = raise_json

    def json(self):
        if self._raise_json:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; records every GET."""

    def __init__(self, responses=None, error=None):
        self.headers = {}
        self.calls = []
        self._responses = list(responses or [])
        self._error = error

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        if self._error is not None:
            raise self._error
        if not self._responses:
            raise requests.exceptions.ConnectionError("no more canned responses")
        return self._responses.pop(0)


class FakeZoneSource:
    """Geometry source that serves canned zones and records concurrency."""

    def __init__(self, geometries=None, failing=(), delay=0.0):
        self.geometries = dict(geometries or {})
        self.failing = set(failing)
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch_geometry_batch(self, codes):
        with self._lock:
            self.calls.append(list(codes))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.failing.intersection(codes):
                raise UpstreamUnavailable("NWS 503: /zones", status=503)
            return {c: self.geometries[c] for c in codes if c in self.geometries}
        finally:
            with self._lock:
                self.active -= 1


class FakeAlertSource(FakeZoneSource):
    """Full upstream stand-in: alert feed plus zone batches."""

    def __init__(self, collection=None, error=None, **kwargs):
        super().__init__(**kwargs)
        self.collection = collection
        self.error = error
        self.alert_calls = 0

    def fetch_alerts(self):
        self.alert_calls += 1
        if self.error is not None:
            raise self.error
        return self.collection


class FakeTimer:
    """threading.Timer replacement that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=str(tmp_path), user_agent="(test-suite, test@example.com)")


@pytest.fixture
def timers():
    created = []

    def factory(interval, function):
        timer = FakeTimer(interval, function)
        created.append(timer)
        return timer

    factory.created = created
    return factory
