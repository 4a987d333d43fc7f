"""
Tests for the ConnectorInstanceStore.

Uses temp files for persistence. No mocks.
"""

import json

import pytest

from conduit.connectors.base import ConnectorStatus
from conduit.connectors.models import ConnectorInstance, utcnow
from conduit.connectors.store import ConnectorInstanceStore


def _instance(id="conn_1", workspace_id="ws-1", **overrides):
    defaults = dict(
        id=id,
        integration_id="echo",
        workspace_id=workspace_id,
        name=f"Instance {id}",
        config={"region": "eu"},
        credentials="gAAAAencrypted-blob",
    )
    defaults.update(overrides)
    return ConnectorInstance(**defaults)


@pytest.fixture
def store():
    return ConnectorInstanceStore()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "connectors.json"


# ── In-memory operations ──────────────────────────────────────────

class TestInMemory:
    def test_add_and_get(self, store):
        store.add(_instance())
        got = store.get("conn_1")
        assert got.name == "Instance conn_1"
        assert got.status is ConnectorStatus.DISCONNECTED

    def test_get_unknown(self, store):
        assert store.get("missing") is None

    def test_duplicate_add_rejected(self, store):
        store.add(_instance())
        with pytest.raises(ValueError):
            store.add(_instance())

    def test_get_returns_copy(self, store):
        store.add(_instance())
        got = store.get("conn_1")
        got.name = "mutated"
        got.config["region"] = "us"
        fresh = store.get("conn_1")
        assert fresh.name == "Instance conn_1"
        assert fresh.config == {"region": "eu"}

    def test_save_writes_back(self, store):
        store.add(_instance())
        got = store.get("conn_1")
        got.status = ConnectorStatus.CONNECTING
        store.save(got)
        assert store.get("conn_1").status is ConnectorStatus.CONNECTING

    def test_save_unknown_raises(self, store):
        with pytest.raises(KeyError):
            store.save(_instance())

    def test_delete(self, store):
        store.add(_instance())
        assert store.delete("conn_1") is True
        assert store.delete("conn_1") is False
        assert len(store) == 0

    def test_list_by_workspace(self, store):
        store.add(_instance("a", "ws-1"))
        store.add(_instance("b", "ws-2"))
        store.add(_instance("c", "ws-1"))
        assert sorted(i.id for i in store.list_by_workspace("ws-1")) == ["a", "c"]
        assert store.list_by_workspace("ws-9") == []
        assert len(store.list_all()) == 3


# ── Persistence ───────────────────────────────────────────────────

class TestPersistence:
    def test_roundtrip(self, store_path):
        s1 = ConnectorInstanceStore(store_path)
        tested = utcnow()
        s1.add(_instance(last_tested=tested, last_error="old failure"))

        s2 = ConnectorInstanceStore(store_path)
        got = s2.get("conn_1")
        assert got.config == {"region": "eu"}
        assert got.credentials == "gAAAAencrypted-blob"
        assert got.last_tested == tested
        assert got.last_error == "old failure"

    def test_file_layout(self, store_path):
        ConnectorInstanceStore(store_path).add(_instance())
        data = json.loads(store_path.read_text())
        assert data["version"] == 1
        record = data["connectors"][0]
        assert set(record) == {
            "id", "integration_id", "workspace_id", "name", "config", "credentials",
            "status", "last_tested", "last_error", "created_at", "updated_at",
        }
        assert record["status"] == "disconnected"

    def test_backup_written(self, store_path):
        s = ConnectorInstanceStore(store_path)
        s.add(_instance("a"))
        s.add(_instance("b"))
        backup = store_path.with_name(store_path.name + ".bak")
        assert backup.exists()
        assert [c["id"] for c in json.loads(backup.read_text())["connectors"]] == ["a"]

    def test_no_backup_when_disabled(self, store_path):
        s = ConnectorInstanceStore(store_path, backup=False)
        s.add(_instance("a"))
        s.add(_instance("b"))
        assert not store_path.with_name(store_path.name + ".bak").exists()

    @pytest.mark.parametrize("status", [ConnectorStatus.CONNECTED, ConnectorStatus.CONNECTING])
    def test_live_statuses_reset_on_load(self, store_path, status):
        ConnectorInstanceStore(store_path).add(_instance(status=status))
        assert ConnectorInstanceStore(store_path).get("conn_1").status is ConnectorStatus.DISCONNECTED

    def test_error_status_survives_load(self, store_path):
        ConnectorInstanceStore(store_path).add(_instance(status=ConnectorStatus.ERROR, last_error="x"))
        assert ConnectorInstanceStore(store_path).get("conn_1").status is ConnectorStatus.ERROR

    def test_corrupt_file_starts_empty(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")
        s = ConnectorInstanceStore(store_path)
        assert len(s) == 0

    def test_delete_persists(self, store_path):
        s = ConnectorInstanceStore(store_path)
        s.add(_instance())
        s.delete("conn_1")
        assert ConnectorInstanceStore(store_path).get("conn_1") is None

    def test_failed_write_keeps_previous_record(self, store_path):
        s = ConnectorInstanceStore(store_path)
        s.add(_instance())
        # A directory in place of the temp file makes every write fail
        store_path.with_name(store_path.name + ".tmp").mkdir()

        changed = s.get("conn_1")
        changed.status = ConnectorStatus.CONNECTED
        with pytest.raises(OSError):
            s.save(changed)
        assert s.get("conn_1").status is ConnectorStatus.DISCONNECTED

        with pytest.raises(OSError):
            s.delete("conn_1")
        assert s.get("conn_1") is not None

        with pytest.raises(OSError):
            s.add(_instance("conn_2"))
        assert s.get("conn_2") is None
