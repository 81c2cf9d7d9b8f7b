"""
Docker Compose adapter — brings a stack directory up or down.

Uses the docker CLI — never the Docker API directly. Secrets reach
compose only through the child's environment, layered over the
agent's own; they are never written to disk or put on the command line.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

from stack_deploy.adapters.base import Adapter, ExecutionContext
from stack_deploy.core.models.action import Receipt, elapsed_ms

logger = logging.getLogger(__name__)

COMPOSE_ARGS = {
    "up": ["compose", "up", "--remove-orphans", "--detach", "--wait"],
    "down": ["compose", "down", "--remove-orphans"],
}

# Lines of stderr kept in a failure receipt
_ERROR_TAIL = 20


class ComposeAdapter(Adapter):
    """``docker compose up`` / ``down`` in a stack directory.

    Action operations:
        up    up --remove-orphans --detach --wait
        down  down --remove-orphans
    """

    def __init__(self, docker_bin: str = "docker"):
        self._docker = docker_bin

    @property
    def name(self) -> str:
        return "compose"

    def is_available(self) -> bool:
        return shutil.which(self._docker) is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.action.operation
        if operation not in COMPOSE_ARGS:
            valid = ", ".join(sorted(COMPOSE_ARGS))
            return False, f"Unknown operation '{operation}'. Valid: {valid}"

        if not Path(context.working_dir).is_dir():
            return False, f"Stack directory does not exist: {context.working_dir}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        action = context.action
        args = [self._docker, *COMPOSE_ARGS[action.operation]]
        env = {**os.environ, **context.env}
        command = " ".join(args)

        logger.debug("Running %s (cwd=%s)", command, context.working_dir)
        start = time.monotonic()

        try:
            # Own session: a SIGINT/SIGTERM aimed at the agent must not
            # interrupt a half-applied compose run.
            result = subprocess.run(
                args,
                cwd=context.working_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=context.timeout,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"docker compose {action.operation} timed out after {context.timeout}s",
                command=command,
                duration_ms=elapsed_ms(start),
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"failed to run docker compose {action.operation} in {context.working_dir}: {e}",
                command=command,
            )

        stdout = result.stdout.strip()
        if stdout:
            logger.debug("compose %s output:\n%s", action.operation, stdout)

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=action.id,
                output=stdout,
                command=command,
                return_code=0,
                duration_ms=elapsed_ms(start),
            )

        tail = "\n".join(result.stderr.strip().splitlines()[-_ERROR_TAIL:])
        return Receipt.failure(
            adapter=self.name,
            action_id=action.id,
            error=tail or f"exit status is {result.returncode}",
            command=command,
            return_code=result.returncode,
            duration_ms=elapsed_ms(start),
        )
