"""
Adapter base — how the engine reaches external tools.

The executor never runs docker itself; it builds an ExecutionContext
and calls ``adapter.run(context)``. Tests swap in MockAdapter, so
deployment logic is exercised without a docker daemon.

    run(context)
      ├─ validate()  invalid  → failed Receipt
      ├─ dry_run              → skipped Receipt
      └─ execute()   raises   → failed Receipt
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from stack_deploy.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class ExecutionContext(BaseModel):
    """One invocation: the action, where to run it and with which extra env.

    ``env`` holds resolved secrets for the duration of the call. It is
    left out of repr and of model dumps, so logging a context is safe.
    """

    action: Action
    working_dir: str = "."
    env: dict[str, str] = Field(default_factory=dict, repr=False, exclude=True)
    timeout: int = 900          # seconds
    dry_run: bool = False


class Adapter(ABC):
    """A wrapper around one external tool.

    Subclasses implement validate() and execute(); callers use run().
    Failures are reported through the Receipt, not raised.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'compose'."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the tool can be found on this host."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Cheap pre-flight check: (ok, reason-if-not)."""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Run the tool. Implementations return a failed Receipt instead of raising."""

    def run(self, context: ExecutionContext) -> Receipt:
        action = context.action
        ok, reason = self.validate(context)
        if not ok:
            logger.debug("%s rejected: %s", action.label, reason)
            return Receipt.failure(self.name, action.id, f"Validation failed: {reason}")

        if context.dry_run:
            return Receipt.skip(
                self.name,
                action.id,
                reason=f"[dry-run] Would run {self.name} {action.operation}",
                metadata={"dry_run": True},
            )

        try:
            return self.execute(context)
        except Exception as e:
            logger.exception("%s raised instead of returning a receipt", action.label)
            return Receipt.failure(self.name, action.id, f"Unexpected error: {e}")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
