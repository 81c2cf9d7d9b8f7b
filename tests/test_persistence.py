"""
Tests for persistence — agent state file and audit ledger.
"""

import json
from pathlib import Path

from stack_deploy.core.models.outcome import DeploymentOutcome
from stack_deploy.core.models.state import AgentState, CycleRecord
from stack_deploy.core.persistence.audit import AuditEntry, AuditWriter
from stack_deploy.core.persistence.state_file import default_state_path, load_state, save_state


class TestStateFile:
    """Tests for state file persistence."""

    def test_save_and_load(self, tmp_path: Path):
        """State roundtrips through save/load."""
        path = default_state_path(tmp_path / ".state")
        state = AgentState(hostname="host1", repo_dir="/srv/repo")
        state.record_cycle(
            CycleRecord(cycle_id="c1", status="ok", outcomes=[DeploymentOutcome.success("db")])
        )

        save_state(state, path)
        assert path.name == "agent.json"

        loaded = load_state(path)
        assert loaded.hostname == "host1"
        assert loaded.last_deploy.outcomes[0].stack == "db"

    def test_load_missing_returns_fresh(self, tmp_path: Path):
        state = load_state(tmp_path / "nonexistent.json")
        assert state.cycles_run == 0
        assert state.last_deploy is None

    def test_load_corrupt_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "corrupt.json"
        path.write_text("{not valid json")
        assert load_state(path).hostname == ""

    def test_load_wrong_shape_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps({"cycles_run": "many"}))
        assert load_state(path).cycles_run == 0

    def test_load_ignores_retired_fields(self, tmp_path: Path):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps({"hostname": "host1", "cycles_run": 4, "controller_state": "idle"}))
        state = load_state(path)
        assert state.cycles_run == 4
        assert "controller_state" not in state.model_dump()

    def test_save_atomic_no_partial(self, tmp_path: Path):
        """No temp files are left behind after a save."""
        path = tmp_path / "agent.json"
        save_state(AgentState(), path)
        assert [p.name for p in tmp_path.iterdir()] == ["agent.json"]

    def test_save_updates_timestamp(self, tmp_path: Path):
        state = AgentState(updated_at="2000-01-01T00:00:00+00:00")
        save_state(state, tmp_path / "agent.json")
        assert state.updated_at != "2000-01-01T00:00:00+00:00"


class TestAuditWriter:
    """Tests for the NDJSON audit ledger."""

    def test_write_and_read(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        writer.write(AuditEntry(cycle_id="c1", status="ok", stacks_total=2, stacks_deployed=2))

        entries = writer.read_all()
        assert len(entries) == 1
        assert entries[0].stacks_deployed == 2

    def test_read_recent(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        for i in range(5):
            writer.write(AuditEntry(cycle_id=f"c{i}"))
        assert [e.cycle_id for e in writer.read_recent(2)] == ["c3", "c4"]

    def test_read_empty_ledger(self, tmp_path: Path):
        assert AuditWriter(tmp_path / "missing.ndjson").read_all() == []

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path)
        writer.write(AuditEntry(cycle_id="good"))
        with path.open("a") as f:
            f.write("not json\n\n")
        writer.write(AuditEntry(cycle_id="also-good"))
        assert [e.cycle_id for e in writer.read_all()] == ["good", "also-good"]

    def test_creates_parent_directories(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "deep" / "audit.ndjson")
        writer.write(AuditEntry(cycle_id="c1"))
        assert writer.path.is_file()

    def test_ndjson_format(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        writer.write(AuditEntry(cycle_id="c1", errors=["db: boom"]))
        writer.write(AuditEntry(cycle_id="c2"))
        lines = writer.path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["errors"] == ["db: boom"]
