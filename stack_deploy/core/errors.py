"""
Exception hierarchy for docker-stack-deploy.

All exceptions inherit from StackDeployError (single catch point).
The split mirrors how far each error reaches:

    ConfigError, GraphError   abort planning for the whole cycle
    StoreUnlockError          aborts the cycle before any deployment
    SecretNotFound, ExecutorError
                              scoped to one stack and its dependents
    SyncError                 aborts the cycle, retried on the next tick
    FatalStartupError         terminates the process
"""

from __future__ import annotations


class StackDeployError(Exception):
    """Base exception for all docker-stack-deploy errors."""


class ConfigError(StackDeployError):
    """A stack declaration or agent setting is malformed or duplicated."""


# ── Planning ─────────────────────────────────────────────────────────


class GraphError(StackDeployError):
    """The dependency graph of the local stacks is invalid."""


class UnknownOrCrossHostDependency(GraphError):
    """A depends_on entry names a stack that is not deployed on this host."""

    def __init__(self, stack: str, dependency: str, elsewhere: tuple[str, ...] = ()):
        self.stack = stack
        self.dependency = dependency
        self.elsewhere = elsewhere
        if elsewhere:
            detail = f"{dependency} only runs on {', '.join(elsewhere)}"
        else:
            detail = f"{dependency} is not present in any stack deploy file"
        super().__init__(f"{stack} depends on {dependency}, but {detail}")


class DependencyCycle(GraphError):
    """The local stacks depend on each other in a loop."""

    def __init__(self, stacks: frozenset[str]):
        self.stacks = stacks
        super().__init__(f"Dependency cycle detected between: {', '.join(sorted(stacks))}")


# ── Secrets ──────────────────────────────────────────────────────────


class SecretError(StackDeployError):
    """A secret could not be produced for a deployment."""


class SecretNotFound(SecretError):
    """A secret path does not resolve to a field in the credential store."""

    def __init__(self, path: str, env_var: str = ""):
        self.path = path
        self.env_var = env_var
        prefix = f"secret_env {env_var}: " if env_var else ""
        super().__init__(f"{prefix}{path} was not found in the credential store")


class StoreUnlockError(SecretError):
    """The credential store could not be opened."""


# ── Execution ────────────────────────────────────────────────────────


class ExecutorError(StackDeployError):
    """docker compose exited non-zero (or could not be started)."""


class SyncError(StackDeployError):
    """The repository could not be cloned or updated."""


class FatalStartupError(StackDeployError):
    """The agent cannot run at all (e.g. the store never unlocked)."""
