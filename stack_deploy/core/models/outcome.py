"""
Deployment outcomes — what happened to each stack in one cycle.

Outcomes are produced once per stack per cycle and never carried over:
every cycle recomputes them from scratch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

OutcomeStatus = Literal["deployed", "skipped", "failed"]

# Reason recorded on dependents of a failed stack
DEPENDENCY_FAILED = "dependency failed"
# Reason recorded on stacks never started because the agent is stopping
SHUTDOWN_REQUESTED = "shutdown requested"


class DeploymentOutcome(BaseModel):
    """Per-stack result: Deployed, Skipped(reason, causing_stack) or Failed(error)."""

    stack: str
    status: OutcomeStatus
    reason: str = ""                    # skipped only
    causing_stack: str | None = None    # skipped only
    error: str | None = None            # failed only
    error_kind: Literal["secret", "executor"] | None = None
    duration_ms: int = 0

    @property
    def deployed(self) -> bool:
        return self.status == "deployed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, stack: str, duration_ms: int = 0) -> DeploymentOutcome:
        return cls(stack=stack, status="deployed", duration_ms=duration_ms)

    @classmethod
    def failure(
        cls,
        stack: str,
        error: str,
        kind: Literal["secret", "executor"],
        duration_ms: int = 0,
    ) -> DeploymentOutcome:
        return cls(
            stack=stack,
            status="failed",
            error=error,
            error_kind=kind,
            duration_ms=duration_ms,
        )

    @classmethod
    def skip(cls, stack: str, reason: str, causing_stack: str | None = None) -> DeploymentOutcome:
        return cls(stack=stack, status="skipped", reason=reason, causing_stack=causing_stack)

    def summary(self) -> tuple[str, str, str | None]:
        """(stack, status, causing_stack) — stable across identical cycles."""
        return (self.stack, self.status, self.causing_stack)


@dataclass
class DeploymentReport:
    """All outcomes of one deployment pass, in plan order."""

    cycle_id: str = ""
    outcomes: list[DeploymentOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def deployed(self) -> int:
        return sum(1 for o in self.outcomes if o.deployed)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def status(self) -> str:
        if self.all_ok:
            return "ok"
        if self.deployed > 0:
            return "partial"
        return "failed"

    def get(self, stack: str) -> DeploymentOutcome | None:
        for outcome in self.outcomes:
            if outcome.stack == stack:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status,
            "total": self.total,
            "deployed": self.deployed,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }
