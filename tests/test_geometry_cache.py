"""Tests for the persistent zone geometry cache."""

import json
import os
import threading

import pytest

import geo.cache
from geo.cache import GeometryCache

from conftest import square


def test_persist_then_load_reproduces_entries(tmp_path):
    path = str(tmp_path / "zones.json")
    cache = GeometryCache(path)
    cache.put_many({"CAZ001": square(0, 0), "CAZ002": square(5, 5), "ANZ530": None})
    cache.persist_all()

    reloaded = GeometryCache(path)
    entries = reloaded.load_all()

    assert set(entries) == {"CAZ001", "CAZ002", "ANZ530"}
    assert entries["CAZ001"] == square(0, 0)
    assert entries["CAZ002"] == square(5, 5)
    assert entries["ANZ530"] is None


def test_entries_are_write_once(tmp_path):
    cache = GeometryCache(str(tmp_path / "zones.json"))

    assert cache.put("CAZ001", square(0, 0)) is True
    assert cache.put("CAZ001", square(9, 9)) is False

    assert cache.get("CAZ001") == square(0, 0)


def test_get_many_includes_unresolvable_markers(tmp_path):
    cache = GeometryCache(str(tmp_path / "zones.json"))
    cache.put_many({"CAZ001": square(), "CAZ002": None})

    assert cache.get_many(["CAZ001", "CAZ002", "CAZ003"]) == {"CAZ001": square(), "CAZ002": None}
    assert "CAZ002" in cache
    assert "CAZ003" not in cache
    assert cache.resolved_count() == 1


def test_load_all_missing_file_is_empty(tmp_path):
    cache = GeometryCache(str(tmp_path / "nope" / "zones.json"))
    assert cache.load_all() == {}
    assert len(cache) == 0


def test_load_all_corrupt_file_is_empty(tmp_path):
    path = tmp_path / "zones.json"
    path.write_text("{not json")

    cache = GeometryCache(str(path))

    assert cache.load_all() == {}


def test_load_all_ignores_non_mapping_and_bad_values(tmp_path):
    path = tmp_path / "zones.json"
    path.write_text(json.dumps(["CAZ001"]))
    assert GeometryCache(str(path)).load_all() == {}

    path.write_text(json.dumps({"CAZ001": square(), "CAZ002": "garbage"}))
    assert GeometryCache(str(path)).load_all() == {"CAZ001": square()}


def test_load_all_is_idempotent(tmp_path):
    path = str(tmp_path / "zones.json")
    first = GeometryCache(path)
    first.put("CAZ001", square())
    first.persist_all()

    cache = GeometryCache(path)
    assert cache.load_all() == cache.load_all() == {"CAZ001": square()}


def test_failed_persist_keeps_previous_file_intact(tmp_path, monkeypatch):
    path = tmp_path / "zones.json"
    cache = GeometryCache(str(path))
    cache.put("CAZ001", square())
    cache.persist_all()
    before = path.read_text()

    cache.put("CAZ002", square(3, 3))

    def broken_dump(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(geo.cache.json, "dump", broken_dump)
    with pytest.raises(OSError):
        cache.persist_all()
    monkeypatch.undo()

    assert path.read_text() == before
    assert [p for p in os.listdir(tmp_path) if p.endswith(".tmp")] == []

    # The unsaved entry is written on the next successful persist
    cache.persist_all()
    assert set(json.loads(path.read_text())) == {"CAZ001", "CAZ002"}


def test_concurrent_persists_never_land_an_older_copy_last(tmp_path, monkeypatch):
    path = tmp_path / "zones.json"
    cache = GeometryCache(str(path))
    cache.put("CAZ001", square())

    real_write = geo.cache.write_json_atomic
    first_entered = threading.Event()
    release_first = threading.Event()
    written = []

    def slow_write(target, data):
        written.append(set(data))
        if len(written) == 1:
            first_entered.set()
            release_first.wait(timeout=5)
        real_write(target, data)

    monkeypatch.setattr(geo.cache, "write_json_atomic", slow_write)

    first = threading.Thread(target=cache.persist_all)
    first.start()
    assert first_entered.wait(timeout=5)

    cache.put("CAZ002", square(3, 3))
    second = threading.Thread(target=cache.persist_all)
    second.start()
    second.join(timeout=0.2)
    # The second writer waits for the first write to finish
    assert second.is_alive()
    assert written == [{"CAZ001"}]

    release_first.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert written == [{"CAZ001"}, {"CAZ001", "CAZ002"}]
    assert set(json.loads(path.read_text())) == {"CAZ001", "CAZ002"}
