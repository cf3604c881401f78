"""
Unit tests for snapshot persistence backends
"""
import os

import pytest

from tankwatch.core.error_handling import PersistenceError
from tankwatch.services.storage.sqlite_store import SqliteStateStore
from tankwatch.services.storage.state_store import JsonFileStateStore

SNAPSHOT = {
    "events": [{"timestamp": "2025-01-01T10:00:00.000Z", "type": "system"}],
    "sensors": {},
}


@pytest.fixture
def json_store(tmp_path):
    return JsonFileStateStore(str(tmp_path / "data"))


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteStateStore(str(tmp_path / "db" / "tankwatch.db"))
    yield store
    store.close()


class TestJsonFileStateStore:
    """Unit tests for JsonFileStateStore"""

    @pytest.mark.unit
    def test_missing_snapshot_returns_default(self, json_store):
        assert json_store.load_snapshot("sensor-events", {"events": []}) == {"events": []}

    @pytest.mark.unit
    def test_save_then_load(self, json_store):
        json_store.save_snapshot("sensor-events", SNAPSHOT)

        assert json_store.path_for("sensor-events").name == "sensor-events.json"
        assert json_store.load_snapshot("sensor-events") == SNAPSHOT

    @pytest.mark.unit
    def test_save_leaves_no_temp_files(self, json_store):
        json_store.save_snapshot("sensor-timeline", {"dev-1": {}})
        json_store.save_snapshot("sensor-timeline", {"dev-2": {}})

        assert sorted(os.listdir(json_store.data_dir)) == ["sensor-timeline.json"]

    @pytest.mark.unit
    def test_corrupt_file_returns_default(self, json_store):
        json_store.data_dir.mkdir(parents=True)
        json_store.path_for("tank-readings").write_text("{not json")

        assert json_store.load_snapshot("tank-readings", {}) == {}

    @pytest.mark.unit
    def test_unserializable_data_raises_and_keeps_previous(self, json_store):
        json_store.save_snapshot("tank-readings", {"a": 1})

        with pytest.raises(PersistenceError):
            json_store.save_snapshot("tank-readings", {"a": object()})

        assert json_store.load_snapshot("tank-readings") == {"a": 1}
        assert sorted(os.listdir(json_store.data_dir)) == ["tank-readings.json"]


class TestSqliteStateStore:
    """Unit tests for SqliteStateStore"""

    @pytest.mark.unit
    def test_missing_snapshot_returns_default(self, sqlite_store):
        assert sqlite_store.load_snapshot("sensor-events", None) is None

    @pytest.mark.unit
    def test_save_overwrites(self, sqlite_store):
        sqlite_store.save_snapshot("sensor-events", {"events": []})
        sqlite_store.save_snapshot("sensor-events", SNAPSHOT)

        assert sqlite_store.load_snapshot("sensor-events") == SNAPSHOT

    @pytest.mark.unit
    def test_unserializable_data_raises(self, sqlite_store):
        with pytest.raises(PersistenceError):
            sqlite_store.save_snapshot("tank-readings", {"a": object()})
