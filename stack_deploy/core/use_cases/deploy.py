"""
One-shot use cases — plan, deploy or stop the local stacks once.

These back the `plan`, `deploy` and `stop` commands. They share the
planning and execution code with the controller but run a single pass
over an existing checkout, with no sync and no loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from stack_deploy.adapters.base import Adapter
from stack_deploy.core.config.stack_loader import load_stacks
from stack_deploy.core.engine.executor import DeploymentExecutor
from stack_deploy.core.engine.graph import DeploymentPlan, build_plan
from stack_deploy.core.errors import ConfigError, GraphError, StoreUnlockError
from stack_deploy.core.models.outcome import DeploymentReport
from stack_deploy.core.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Result of a one-shot plan / deploy / stop."""

    host: str = ""
    plan: DeploymentPlan | None = None
    report: DeploymentReport | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        if self.error:
            return False
        return self.report is None or self.report.failed == 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"host": self.host}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            return result

        if self.plan is not None:
            result["plan"] = [
                {
                    "name": s.name,
                    "directory": str(s.directory),
                    "depends_on": sorted(s.depends_on),
                    "secret_env": sorted(s.secret_bindings),
                }
                for s in self.plan
            ]
        if self.report is not None:
            result["report"] = self.report.to_dict()
        return result


def plan_stacks(
    host: str,
    root: Path | None = None,
    files: Sequence[Path] = (),
) -> DeployResult:
    """Load the declarations and compute this host's plan."""
    result = DeployResult(host=host)
    try:
        result.plan = build_plan(load_stacks(root, files), host)
    except ConfigError as e:
        result.error, result.error_kind = str(e), "config"
    except GraphError as e:
        result.error, result.error_kind = str(e), "graph"
    return result


def _compose_ready(compose: Adapter, result: DeployResult) -> bool:
    if compose.is_available():
        return True
    result.error = f"{compose.name} is not available on this host"
    result.error_kind = "executor"
    return False


def deploy_stacks(
    host: str,
    compose: Adapter,
    root: Path | None = None,
    files: Sequence[Path] = (),
    open_store: Callable[[], CredentialStore] | None = None,
    timeout: int = 900,
    dry_run: bool = False,
) -> DeployResult:
    """Plan, open the store if needed, and deploy every local stack once.

    Args:
        open_store: Zero-argument callable returning a CredentialStore,
            called only when some planned stack declares secret_env.
    """
    result = plan_stacks(host, root, files)
    if result.plan is None:
        return result
    if result.plan.requires_secrets and open_store is None:
        result.error = "stacks declare secret_env but no --kdbx store was given"
        result.error_kind = "store"
        return result
    if not dry_run and not _compose_ready(compose, result):
        return result

    store: CredentialStore | None = None
    if open_store is not None and result.plan.requires_secrets:
        try:
            store = open_store()
        except StoreUnlockError as e:
            result.error, result.error_kind = str(e), "store"
            return result

    executor = DeploymentExecutor(compose, timeout=timeout, dry_run=dry_run)
    try:
        result.report = executor.execute(result.plan, store)
    finally:
        if store is not None:
            store.close()
    return result


def stop_stacks(
    host: str,
    compose: Adapter,
    root: Path | None = None,
    files: Sequence[Path] = (),
    timeout: int = 900,
) -> DeployResult:
    """Bring every local stack down, dependents first."""
    result = plan_stacks(host, root, files)
    if result.plan is None or not _compose_ready(compose, result):
        return result

    logger.info("Stopping %d stacks, dependents first", len(result.plan))
    result.report = DeploymentExecutor(compose, timeout=timeout).teardown(result.plan)
    return result
