"""
Repository update model — what a sync of the infrastructure repo found.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol


@dataclass(frozen=True)
class RepoUpdate:
    """Result of one repository sync.

    kind:
        cloned   fresh checkout (nothing to compare against)
        updated  HEAD moved
        same     HEAD unchanged
        local    no remote configured; the working tree is used as-is
    """

    kind: Literal["cloned", "updated", "same", "local"]
    commit: str = ""

    @property
    def changed(self) -> bool:
        return self.kind != "same"


class RepoSync(Protocol):
    """Port for bringing the local checkout up to date."""

    def sync(self) -> RepoUpdate:
        """Fetch the latest state. Raises SyncError on failure."""
        ...
