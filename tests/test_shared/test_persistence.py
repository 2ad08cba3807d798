"""
Tests for namespaced persisted state.

These tests verify sectioned reads and writes, schema migration, and that
storage failures never propagate.
"""

import json

from shared.persistence import SCHEMA_VERSION, JsonFileStorage, MemoryStorage, PersistedState


class FailingStorage(MemoryStorage):
    """Storage whose writes always fail, as with a full disk or quota."""

    def write(self, namespace: str, data: str) -> None:
        raise OSError("No space left on device")


class TestPersistedState:
    """Tests for PersistedState."""

    def test_sections_are_independent(self):
        state = PersistedState(MemoryStorage(), namespace="ns")
        state.write_section("orders", {"records": []})
        state.write_section("notifications", {"items": []})

        assert state.read_section("orders") == {"records": []}
        assert state.read_section("notifications") == {"items": []}
        assert state.read_section("missing") is None

    def test_blob_is_versioned(self):
        storage = MemoryStorage()
        PersistedState(storage, namespace="ns").write_section("orders", {"records": []})

        blob = json.loads(storage.blobs["ns"])
        assert blob["schema_version"] == SCHEMA_VERSION

    def test_reloads_from_storage(self):
        storage = MemoryStorage()
        PersistedState(storage, namespace="ns").write_section("orders", {"records": [1]})

        assert PersistedState(storage, namespace="ns").read_section("orders") == {"records": [1]}

    def test_write_failure_is_not_fatal(self, caplog):
        state = PersistedState(FailingStorage(), namespace="ns")

        with caplog.at_level("ERROR", logger="persistence"):
            assert state.write_section("orders", {"records": []}) is False

        assert "Failed to persist" in caplog.text
        # The in-memory copy is still there
        assert state.read_section("orders") == {"records": []}

    def test_clear(self):
        storage = MemoryStorage()
        state = PersistedState(storage, namespace="ns")
        state.write_section("orders", {"records": []})

        state.clear()

        assert "ns" not in storage.blobs
        assert state.read_section("orders") is None


class TestSchemaVersions:
    """Tests for migrating or discarding older blobs."""

    def test_migrates_version_1(self):
        storage = MemoryStorage()
        storage.blobs["ns"] = json.dumps({
            "schema_version": 1,
            "orders": [{"orderNumber": "ORD-1"}],
            "notifications": [],
        })

        state = PersistedState(storage, namespace="ns")

        assert state.read_section("orders") == {"records": [{"orderNumber": "ORD-1"}], "aliases": {}}
        assert state.read_section("notifications")["notified_keys"] == []

    def test_discards_unknown_version(self, caplog):
        storage = MemoryStorage()
        storage.blobs["ns"] = json.dumps({"schema_version": 99, "orders": {"records": [1]}})

        with caplog.at_level("WARNING", logger="persistence"):
            state = PersistedState(storage, namespace="ns")
            assert state.read_section("orders") is None

        assert "not supported" in caplog.text

    def test_discards_corrupt_blob(self):
        storage = MemoryStorage()
        storage.blobs["ns"] = "{not json"

        assert PersistedState(storage, namespace="ns").read_section("orders") is None


class TestJsonFileStorage:
    """Tests for the file backend."""

    def test_write_and_read(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.write("ns", '{"a": 1}')

        assert (tmp_path / "ns.json").exists()
        assert storage.read("ns") == '{"a": 1}'

    def test_missing_file(self, tmp_path):
        assert JsonFileStorage(tmp_path).read("ns") is None

    def test_remove(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.write("ns", "{}")
        storage.remove("ns")
        storage.remove("ns")

        assert not (tmp_path / "ns.json").exists()

    def test_state_survives_restart(self, tmp_path):
        PersistedState(JsonFileStorage(tmp_path), namespace="ns").write_section("orders", {"records": [1]})

        restarted = PersistedState(JsonFileStorage(tmp_path), namespace="ns")
        assert restarted.read_section("orders") == {"records": [1]}
