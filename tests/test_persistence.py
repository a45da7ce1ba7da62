"""
Tests for persistence — state file and run ledger.
"""

import json
from pathlib import Path

import pytest

from converge.core.engine.errors import StateError
from converge.core.models.state import ResourceState, StateSnapshot
from converge.core.persistence.audit import RunFailure, RunLedger, RunRecord
from converge.core.persistence.state_file import (
    StateStore,
    default_state_path,
    load_state,
    save_state,
)


def _resource(name: str = "main", **kw) -> ResourceState:
    return ResourceState(kind="network", name=name, resource_id=f"network-{name}", **kw)


# ── State File ───────────────────────────────────────────────────────


class TestStateFile:
    """Tests for state file persistence."""

    def test_save_and_load(self, tmp_path: Path):
        """State roundtrips through save/load."""
        path = tmp_path / ".state" / "converge.json"
        snap = StateSnapshot()
        snap.resources["network.main"] = _resource(attributes={"cidr": "10.0.0.0/16"})
        snap.outputs = {"vpc": "network-main"}
        snap.touch()

        save_state(snap, path)
        assert path.is_file()

        loaded = load_state(path)
        assert loaded.lineage == snap.lineage
        assert loaded.serial == 1
        assert loaded.resources["network.main"].attributes == {"cidr": "10.0.0.0/16"}
        assert loaded.outputs == {"vpc": "network-main"}

    def test_load_missing_returns_fresh(self, tmp_path: Path):
        """Missing state file returns a fresh snapshot."""
        snap = load_state(tmp_path / "nonexistent.json")
        assert snap.serial == 0
        assert snap.resources == {}

    def test_load_corrupt_raises(self, tmp_path: Path):
        """Corrupt JSON is an error, never a silent reset."""
        path = tmp_path / "corrupt.json"
        path.write_text("not json at all {{{")
        with pytest.raises(StateError, match="Corrupt state file"):
            load_state(path)

    def test_load_wrong_shape_raises(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"serial": "many"}))
        with pytest.raises(StateError):
            load_state(path)

    def test_save_is_valid_json(self, tmp_path: Path):
        """Saved file is valid, human-readable JSON."""
        path = tmp_path / "state.json"
        save_state(StateSnapshot(), path)
        data = json.loads(path.read_text())
        assert data["schema_version"] == 1
        assert "lineage" in data

    def test_save_atomic_no_partial(self, tmp_path: Path):
        """No temp files are left behind."""
        path = tmp_path / "state.json"
        save_state(StateSnapshot(), path)
        assert list(tmp_path.glob(".converge_*.tmp")) == []

    def test_default_state_path(self, tmp_path: Path):
        assert default_state_path(tmp_path) == tmp_path / ".state" / "converge.json"
        absolute = tmp_path / "elsewhere.json"
        assert default_state_path(tmp_path, str(absolute)) == absolute


# ── State Store ──────────────────────────────────────────────────────


class TestStateStore:
    def test_every_write_bumps_serial_and_persists(self, tmp_path: Path):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.put(_resource())
        store.set_outputs({"a": 1})
        assert store.remove("network.main")
        assert store.serial == 3
        assert load_state(path).serial == 3

    def test_remove_untracked(self):
        store = StateStore()
        assert store.remove("network.nope") is False
        assert store.serial == 0

    def test_reload_from_disk(self, tmp_path: Path):
        path = tmp_path / "state.json"
        first = StateStore(path)
        first.put(_resource())
        second = StateStore(path)
        assert second.lineage == first.lineage
        assert second.get("network.main").resource_id == "network-main"

    def test_snapshot_is_isolated(self):
        store = StateStore()
        store.put(_resource(attributes={"cidr": "a"}))
        snap = store.snapshot()
        snap.resources["network.main"].attributes["cidr"] = "changed"
        snap.resources.clear()
        assert store.get("network.main").attributes["cidr"] == "a"

    def test_put_keeps_created_at(self):
        store = StateStore()
        store.put(_resource(created_at="2026-01-01T00:00:00+00:00"))
        store.put(_resource(attributes={"cidr": "b"}))
        rs = store.get("network.main")
        assert rs.created_at == "2026-01-01T00:00:00+00:00"
        assert rs.attributes == {"cidr": "b"}

    def test_initial_snapshot_is_copied(self):
        snap = StateSnapshot()
        store = StateStore(snapshot=snap)
        store.put(_resource())
        assert snap.resources == {}
        assert store.lineage == snap.lineage

    def test_corrupt_file_refuses_to_open(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{")
        with pytest.raises(StateError):
            StateStore(path)


# ── Run Ledger ───────────────────────────────────────────────────────


class TestRunLedger:
    def test_write_and_read(self, tmp_path: Path):
        ledger = RunLedger(tmp_path / ".state" / "runs.ndjson")
        ledger.write(RunRecord(operation_id="op-1", command="apply", status="ok", applied=3))
        ledger.write(RunRecord(
            operation_id="op-2",
            command="destroy",
            status="partial",
            failures=[RunFailure(entry="delete:network.main", error_kind="TerminalProviderError")],
        ))

        records = ledger.read_all()
        assert [r.operation_id for r in records] == ["op-1", "op-2"]
        assert records[1].failures[0].entry == "delete:network.main"

    def test_read_recent(self, tmp_path: Path):
        ledger = RunLedger(tmp_path / "runs.ndjson")
        for i in range(5):
            ledger.write(RunRecord(operation_id=f"op-{i}"))
        assert [r.operation_id for r in ledger.read_recent(2)] == ["op-3", "op-4"]

    def test_missing_file(self, tmp_path: Path):
        assert RunLedger(tmp_path / "none.ndjson").read_all() == []

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "runs.ndjson"
        ledger = RunLedger(path)
        ledger.write(RunRecord(operation_id="good"))
        with path.open("a") as f:
            f.write("garbage\n\n")
        ledger.write(RunRecord(operation_id="also-good"))
        assert [r.operation_id for r in ledger.read_all()] == ["good", "also-good"]

    def test_append_only(self, tmp_path: Path):
        path = tmp_path / "runs.ndjson"
        ledger = RunLedger(path)
        ledger.write(RunRecord(operation_id="a"))
        first_line = path.read_text().splitlines()[0]
        ledger.write(RunRecord(operation_id="b"))
        assert path.read_text().splitlines()[0] == first_line
