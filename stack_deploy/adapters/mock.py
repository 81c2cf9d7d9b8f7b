"""
Mock adapter — test double for the compose adapter.

Records every call (including a copy of the environment it was given)
and returns success unless told otherwise per stack.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stack_deploy.adapters.base import Adapter, ExecutionContext
from stack_deploy.core.models.action import Receipt


@dataclass
class MockCall:
    """One recorded execute() call."""

    stack: str | None
    operation: str
    working_dir: str
    env: dict[str, str] = field(default_factory=dict)


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, returns success for everything. Failures are keyed by
    stack name.
    """

    def __init__(self, adapter_name: str = "compose", available: bool = True):
        self._name = adapter_name
        self._available = available
        self._failures: dict[str, str] = {}
        self._calls: list[MockCall] = []
        self.on_execute = None  # optional hook(context), called before returning

    @property
    def name(self) -> str:
        return self._name

    @property
    def calls(self) -> list[MockCall]:
        return self._calls

    @property
    def call_count(self) -> int:
        return len(self._calls)

    @property
    def stacks_called(self) -> list[str | None]:
        return [c.stack for c in self._calls]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, stack: str, error: str = "Mock failure") -> None:
        """Configure the given stack to fail."""
        self._failures[stack] = error

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        action = context.action
        self._calls.append(
            MockCall(
                stack=action.stack,
                operation=action.operation,
                working_dir=context.working_dir,
                env=dict(context.env),
            )
        )
        if self.on_execute is not None:
            self.on_execute(context)

        if action.stack in self._failures:
            return Receipt.failure(
                adapter=self._name,
                action_id=action.id,
                error=self._failures[action.stack],
                return_code=1,
            )
        return Receipt.success(
            adapter=self._name,
            action_id=action.id,
            output="[mock] executed",
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._calls.clear()
        self._failures.clear()
