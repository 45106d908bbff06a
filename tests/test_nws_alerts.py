"""Tests for NWS alert parsing and the upstream client."""

import pytest
import requests

from config import ZONE_BATCH_LIMIT, Severity
from errors import UpstreamUnavailable
from sources.nws_alerts import (
    AlertParseError,
    NWSClient,
    parse_collection,
    parse_feature,
)

from conftest import FakeResponse, FakeSession, feature_collection, make_feature, square


def test_parse_feature_reads_nws_properties():
    feature = make_feature(ugc=["OKC109", "OKC027"], same=["040109"], geometry=square())

    alert = parse_feature(feature)

    assert alert.id == "urn:oid:2.49.0.1.840.0.1"
    assert alert.event == "Tornado Warning"
    assert alert.severity is Severity.EXTREME
    assert alert.sender_name == "NWS Norman OK"
    assert alert.ugc_codes == ("OKC109", "OKC027")
    assert alert.same_codes == ("040109",)
    assert alert.geometry == square()
    assert alert.states == {"OK"}


def test_unrecognized_severity_is_unknown():
    alert = parse_feature(make_feature(severity="Catastrophic"))
    assert alert.severity is Severity.UNKNOWN

    alert = parse_feature(make_feature(severity=None))
    assert alert.severity is Severity.UNKNOWN


def test_malformed_inline_geometry_is_dropped_not_fatal():
    point = {"type": "Point", "coordinates": [-97.5, 35.4]}

    alert = parse_feature(make_feature(ugc=["OKZ025"], geometry=point))

    assert alert.geometry is None
    assert alert.ugc_codes == ("OKZ025",)


def test_feature_without_id_is_rejected():
    feature = make_feature()
    feature.pop("id")
    feature["properties"].pop("id")

    with pytest.raises(AlertParseError):
        parse_feature(feature)


def test_bad_timestamp_rejects_record():
    with pytest.raises(AlertParseError):
        parse_feature(make_feature(expires="next tuesday"))


def test_parse_collection_isolates_bad_records():
    good = make_feature(alert_id="a1")
    bad = {"type": "Feature", "properties": "not-an-object"}

    collection = parse_collection(feature_collection(good, bad, "junk"))

    assert [a.id for a in collection] == ["a1"]
    assert collection.skipped == 2
    assert collection.total_count == 3


def test_parse_collection_uses_upstream_total():
    collection = parse_collection(feature_collection(make_feature(), total=1500))
    assert len(collection) == 1
    assert collection.total_count == 1500


def test_feature_round_trip_preserves_alert():
    alert = parse_feature(make_feature(ugc=["TXZ100"], same=["048201"], ends="2025-05-01T18:00:00-05:00"))
    assert parse_feature(alert.to_feature()) == alert


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

def test_client_sends_identification_headers_and_timeout(settings):
    session = FakeSession([FakeResponse(200, feature_collection(make_feature()))])
    client = NWSClient(settings, session=session)

    collection = client.fetch_alerts()

    assert len(collection) == 1
    assert session.headers["User-Agent"] == settings.user_agent
    assert session.headers["Accept"] == "application/geo+json"
    assert session.calls[0]["url"] == "https://api.weather.gov/alerts/active"
    assert 8 <= session.calls[0]["timeout"] <= 15


@pytest.mark.parametrize("status", [404, 500, 503])
def test_non_success_status_raises_upstream_unavailable(settings, status):
    client = NWSClient(settings, session=FakeSession([FakeResponse(status, {})]))

    with pytest.raises(UpstreamUnavailable) as exc_info:
        client.fetch_alerts()

    assert exc_info.value.status == status


def test_timeout_raises_upstream_unavailable_without_retry(settings):
    session = FakeSession(error=requests.exceptions.Timeout("read timed out"))
    client = NWSClient(settings, session=session)

    with pytest.raises(UpstreamUnavailable):
        client.fetch_alerts()

    assert len(session.calls) == 1


def test_bad_json_raises_upstream_unavailable(settings):
    client = NWSClient(settings, session=FakeSession([FakeResponse(200, raise_json=True)]))

    with pytest.raises(UpstreamUnavailable):
        client.fetch_alerts()


def test_fetch_geometry_batch_maps_ids_to_geometry(settings):
    zones = feature_collection(
        {"type": "Feature", "properties": {"id": "CAZ001"}, "geometry": square(0, 0)},
        {"type": "Feature", "properties": {"id": "CAZ002"}, "geometry": None},
        {"type": "Feature", "properties": {"id": "CAZ003"},
         "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}},
    )
    session = FakeSession([FakeResponse(200, zones)])
    client = NWSClient(settings, session=session)

    result = client.fetch_geometry_batch({"CAZ003", "CAZ001", "CAZ002"})

    assert result == {"CAZ001": square(0, 0)}
    call = session.calls[0]
    assert call["url"] == "https://api.weather.gov/zones"
    assert call["params"] == {"id": "CAZ001,CAZ002,CAZ003", "include_geometry": "true"}


def test_fetch_geometry_batch_rejects_oversized_batches(settings):
    session = FakeSession()
    client = NWSClient(settings, session=session)
    codes = {f"TXZ{i:03d}" for i in range(ZONE_BATCH_LIMIT + 1)}

    with pytest.raises(ValueError):
        client.fetch_geometry_batch(codes)

    assert session.calls == []


def test_fetch_geometry_batch_empty_makes_no_call(settings):
    session = FakeSession()
    assert NWSClient(settings, session=session).fetch_geometry_batch(set()) == {}
    assert session.calls == []
