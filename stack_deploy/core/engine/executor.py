"""
Deployment executor — walks a plan and brings each stack up.

Flow per stack (strictly sequential, in plan order):
    skipped already? → resolve secrets → compose up → outcome

A stack that fails (missing secret or non-zero compose exit) takes
all of its transitive dependents down with it: they are recorded as
Skipped with the failed stack as cause and never attempted. Stacks
outside that subtree carry on, so one broken stack never aborts the
cycle. Resolved secrets are zeroed as soon as the compose call that
consumed them returns, whatever its result.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from stack_deploy.adapters.base import Adapter, ExecutionContext
from stack_deploy.core.errors import ExecutorError, SecretError
from stack_deploy.core.engine.graph import DeploymentPlan
from stack_deploy.core.models.action import Action, Receipt, elapsed_ms
from stack_deploy.core.models.outcome import (
    DEPENDENCY_FAILED,
    SHUTDOWN_REQUESTED,
    DeploymentOutcome,
    DeploymentReport,
)
from stack_deploy.core.models.stack import SecretPath, StackDescriptor
from stack_deploy.core.services.credential_store import CredentialStore
from stack_deploy.core.services.secret_resolver import ResolvedSecrets, resolve_secrets

logger = logging.getLogger(__name__)

SecretResolverFn = Callable[[CredentialStore | None, Mapping[str, SecretPath]], ResolvedSecrets]


def generate_cycle_id() -> str:
    """Generate a unique cycle ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"cycle-{now}-{short}"


def compose_action(stack: StackDescriptor, operation: str, cycle_id: str) -> Action:
    return Action(
        id=f"{cycle_id}:{stack.name}:{operation}",
        adapter="compose",
        operation=operation,
        stack=stack.name,
        params={"directory": str(stack.directory)},
    )


class DeploymentExecutor:
    """Runs a DeploymentPlan through the compose adapter.

    Args:
        compose: Adapter that performs ``up``/``down`` for one stack.
        resolver: Secret resolution function (defaults to resolve_secrets).
        should_stop: Polled before each stack; when it returns True the
            remaining stacks are not started.
        timeout: Per-invocation compose timeout in seconds.
        dry_run: Resolve secrets and validate, but do not run compose.
    """

    def __init__(
        self,
        compose: Adapter,
        resolver: SecretResolverFn = resolve_secrets,
        should_stop: Callable[[], bool] | None = None,
        timeout: int = 900,
        dry_run: bool = False,
    ):
        self._compose = compose
        self._resolve = resolver
        self._should_stop = should_stop or (lambda: False)
        self._timeout = timeout
        self._dry_run = dry_run

    def execute(
        self,
        plan: DeploymentPlan,
        store: CredentialStore | None = None,
        cycle_id: str = "",
    ) -> DeploymentReport:
        """Deploy every stack of ``plan``; one outcome per stack, plan order."""
        cycle_id = cycle_id or generate_cycle_id()
        report = DeploymentReport(cycle_id=cycle_id)
        skipped: dict[str, str] = {}  # stack → causing stack

        for stack in plan:
            if stack.name in skipped:
                cause = skipped[stack.name]
                logger.warning("⊘ %s skipped: dependency %s failed", stack.name, cause)
                report.outcomes.append(
                    DeploymentOutcome.skip(stack.name, DEPENDENCY_FAILED, cause)
                )
                continue

            if self._should_stop():
                logger.warning("⊘ %s not started: shutdown requested", stack.name)
                report.outcomes.append(DeploymentOutcome.skip(stack.name, SHUTDOWN_REQUESTED))
                continue

            outcome = self._deploy_one(stack, store, cycle_id)
            report.outcomes.append(outcome)

            if outcome.failed:
                for dependent in plan.graph.descendants(stack.name):
                    skipped.setdefault(dependent, stack.name)

        logger.info(
            "Cycle %s: %d deployed, %d failed, %d skipped",
            cycle_id,
            report.deployed,
            report.failed,
            report.skipped,
        )
        return report

    def _deploy_one(
        self,
        stack: StackDescriptor,
        store: CredentialStore | None,
        cycle_id: str,
    ) -> DeploymentOutcome:
        start = time.monotonic()

        try:
            with self._resolve(store, stack.secret_bindings) as secrets:
                receipt = self._up(stack, cycle_id, secrets.env())
        except SecretError as e:
            logger.error("✗ Cannot deploy %s: %s", stack.name, e)
            return DeploymentOutcome.failure(stack.name, str(e), kind="secret")
        except ExecutorError as e:
            logger.error("✗ Failed to deploy %s: %s", stack.name, e)
            return DeploymentOutcome.failure(
                stack.name,
                str(e),
                kind="executor",
                duration_ms=elapsed_ms(start),
            )

        if receipt.skipped:
            logger.info("⊘ %s", receipt.output)
            return DeploymentOutcome.skip(stack.name, receipt.output)

        logger.info("✓ Deployed %s", stack.name)
        return DeploymentOutcome.success(stack.name, duration_ms=elapsed_ms(start))

    def _up(self, stack: StackDescriptor, cycle_id: str, env: dict[str, str]) -> Receipt:
        """compose up; raises ExecutorError when the receipt failed."""
        receipt = self._invoke(stack, "up", cycle_id, env)
        if receipt.failed:
            raise ExecutorError(receipt.error or "docker compose failed")
        return receipt

    def _invoke(
        self,
        stack: StackDescriptor,
        operation: str,
        cycle_id: str,
        env: dict[str, str],
    ) -> Receipt:
        context = ExecutionContext(
            action=compose_action(stack, operation, cycle_id),
            working_dir=str(stack.directory),
            env=env,
            timeout=self._timeout,
            dry_run=self._dry_run,
        )
        try:
            return self._compose.run(context)
        finally:
            env.clear()
            context.env.clear()

    def teardown(self, plan: DeploymentPlan, cycle_id: str = "") -> DeploymentReport:
        """``compose down`` every stack, dependents first, no secrets.

        A failure is logged and recorded but does not stop the others.
        """
        cycle_id = cycle_id or generate_cycle_id()
        report = DeploymentReport(cycle_id=cycle_id)

        for stack in plan.reversed():
            receipt = self._invoke(stack, "down", cycle_id, {})
            if receipt.failed:
                logger.error("✗ Failed to stop %s: %s", stack.name, receipt.error)
                report.outcomes.append(
                    DeploymentOutcome.failure(
                        stack.name, receipt.error or "docker compose failed", kind="executor"
                    )
                )
            else:
                logger.info("✓ Stopped %s", stack.name)
                report.outcomes.append(
                    DeploymentOutcome.success(stack.name, duration_ms=receipt.duration_ms)
                )
        return report
