"""
AgentState — the agent's observable status.

Saved to <state-dir>/agent.json after every cycle so that `status`
(or anything watching the file) can tell what the last cycle did and
why it stopped. Disposable: deleting it loses history, not behaviour.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from stack_deploy.core.models.outcome import DeploymentOutcome


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CycleRecord(BaseModel):
    """Summary of one deployment cycle."""

    cycle_id: str = ""
    trigger: str = ""               # timer, manual, startup
    started_at: str = ""
    ended_at: str = ""
    commit: str = ""
    changed: bool = False
    status: str = ""                # unchanged, ok, partial, failed, error
    error: str | None = None
    error_kind: str | None = None   # sync, config, graph, store
    outcomes: list[DeploymentOutcome] = Field(default_factory=list)


class AgentState(BaseModel):
    """Root state model — serialized to <state-dir>/agent.json."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    hostname: str = ""
    repo_dir: str = ""

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Controller ───────────────────────────────────────────────
    cycles_run: int = 0
    last_cycle: CycleRecord = Field(default_factory=CycleRecord)
    last_deploy: CycleRecord | None = None

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def record_cycle(self, record: CycleRecord) -> None:
        """Store a finished cycle; deploy cycles are also kept as last_deploy."""
        self.cycles_run += 1
        self.last_cycle = record
        if record.outcomes:
            self.last_deploy = record
