"""
Audit ledger — one NDJSON line per controller cycle.

``<state-dir>/audit.ndjson`` is only ever appended to. It answers
"what did the agent do, and when?" across restarts, while agent.json
only holds the latest cycle.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """Summary of one cycle as written to the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    cycle_id: str = ""
    trigger: str = ""
    hostname: str = ""
    commit: str = ""

    status: str = ""                # unchanged, ok, partial, failed, error
    stacks_total: int = 0
    stacks_deployed: int = 0
    stacks_failed: int = 0
    stacks_skipped: int = 0
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Appends AuditEntry lines to a ledger file and reads them back."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append ``entry``. A failed write is logged; the cycle carries on."""
        line = entry.model_dump_json() + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Cannot append to audit ledger %s: %s", self._path, e)
            return
        logger.debug("Audit: %s %s", entry.cycle_id, entry.status)

    def entries(self) -> Iterator[AuditEntry]:
        """Yield entries oldest first, skipping lines that do not parse."""
        if not self._path.is_file():
            return
        with self._path.open(encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield AuditEntry.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("%s:%d: unreadable audit entry (%s)", self._path, number, e)

    def read_all(self) -> list[AuditEntry]:
        try:
            return list(self.entries())
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)
            return []

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The last ``n`` entries, oldest first."""
        try:
            return list(deque(self.entries(), maxlen=n))
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)
            return []
