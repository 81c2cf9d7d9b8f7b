"""
Status use case — read back what the agent last did.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stack_deploy.core.models.state import AgentState
from stack_deploy.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from stack_deploy.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    """Persisted agent state plus the most recent audit entries."""

    state_dir: Path
    found: bool = False
    state: AgentState | None = None
    recent: list[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        if not self.found or self.state is None:
            return {"state_dir": str(self.state_dir), "error": "No agent state found"}
        return {
            "state_dir": str(self.state_dir),
            "state": self.state.model_dump(mode="json"),
            "recent": [e.model_dump(mode="json") for e in self.recent],
        }


def get_status(state_dir: Path, recent: int = 5) -> StatusResult:
    """Load <state_dir>/agent.json and the tail of the audit ledger."""
    path = default_state_path(state_dir)
    result = StatusResult(state_dir=state_dir, found=path.is_file())
    if not result.found:
        return result

    result.state = load_state(path)
    result.recent = AuditWriter(state_dir / DEFAULT_AUDIT_FILE).read_recent(recent)
    return result
