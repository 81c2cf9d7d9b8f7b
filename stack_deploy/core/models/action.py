"""
Action and Receipt — one external command and what came of it.

The executor describes each docker compose invocation as an Action and
hands it to an adapter; the adapter answers with a Receipt. A non-zero
exit status, a timeout or a missing binary is a failed Receipt, never
an exception, so the executor decides alone what a failure means for
the rest of the plan.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ReceiptStatus = Literal["ok", "skipped", "failed"]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def elapsed_ms(start: float) -> int:
    """Milliseconds since ``start`` (a time.monotonic() reading)."""
    return int((time.monotonic() - start) * 1000)


class Action(BaseModel):
    """A command the engine wants run, e.g. ``up`` for one stack."""

    model_config = ConfigDict(frozen=True)

    id: str                     # <cycle-id>:<stack>:<operation>
    adapter: str
    operation: str
    stack: str | None = None    # None for commands not tied to a stack
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        target = f" {self.stack}" if self.stack else ""
        return f"{self.adapter} {self.operation}{target}"


class Receipt(BaseModel):
    """What an adapter did with an Action."""

    adapter: str
    action_id: str
    status: ReceiptStatus = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    command: str = ""               # as run, for logs; never carries secrets
    return_code: int | None = None  # None when the process never ran
    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    # ── Constructors ────────────────────────────────────────────

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **fields: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **fields)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **fields: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **fields)

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **fields: Any) -> Receipt:
        """Not executed (dry run); ``reason`` is kept as the output."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **fields)
