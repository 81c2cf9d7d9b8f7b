"""
Bootstrap use case — one-time setup of the agent on a host.

Writes a project directory holding the agent's own compose file and
an .env with the git credentials and store passphrase, then starts
the agent with docker compose:

    <project-dir>/
        compose.yml     the agent container (generated)
        .env            credentials, mode 0600
        repo/           checkout, created by the agent on first run

The project directory is bind-mounted at the same path inside the
container so that relative bind mounts in the stacks' compose files
resolve to the same host paths.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from stack_deploy.adapters.base import Adapter, ExecutionContext
from stack_deploy.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "ghcr.io/wez/docker-stack-deploy:latest"
SERVICE_NAME = "docker-stack-deploy"


@dataclass
class BootstrapResult:
    """Files written and how the agent start went."""

    project_dir: Path
    compose_file: Path
    env_file: Path
    receipt: Receipt | None = None

    @property
    def ok(self) -> bool:
        return self.receipt is None or self.receipt.ok


def _env_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_env(values: dict[str, str]) -> str:
    """KEY="value" lines for docker compose's env_file."""
    return "".join(f"{key}={_env_quote(value)}\n" for key, value in values.items())


def render_compose(project_dir: Path, image: str = DEFAULT_IMAGE) -> str:
    """The agent's compose.yml."""
    repo_dir = project_dir / "repo"
    document: dict[str, Any] = {
        "services": {
            SERVICE_NAME: {
                "image": image,
                "restart": "unless-stopped",
                "env_file": [".env"],
                "volumes": [
                    "/var/run/docker.sock:/var/run/docker.sock",
                    f"{project_dir}:{project_dir}",
                ],
                "command": [
                    "run",
                    "--repo-dir",
                    str(repo_dir),
                    "--kdbx",
                    str(repo_dir / ".secrets.kdbx"),
                ],
                "stop_signal": "SIGINT",
            }
        }
    }
    return yaml.safe_dump(document, sort_keys=False)


def bootstrap_project(
    project_dir: Path,
    git_url: str,
    git_token: str,
    kdbx_passphrase: str,
    compose: Adapter | None,
    git_username: str = "oauth2",
    poll_interval: int = 300,
    image: str = DEFAULT_IMAGE,
    hostname: str | None = None,
) -> BootstrapResult:
    """Write the project directory and (unless ``compose`` is None) start it."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    compose_file = project_dir / "compose.yml"
    compose_file.write_text(render_compose(project_dir, image), encoding="utf-8")
    logger.info("Wrote %s", compose_file)

    env_file = project_dir / ".env"
    env_text = render_env(
        {
            "GITHUB_URL": git_url,
            "GITHUB_USERNAME": git_username,
            "GITHUB_TOKEN": git_token,
            "STACK_KDBX_PASS": kdbx_passphrase,
            "POLL_INTERVAL": str(poll_interval),
            "STACK_DEPLOY_HOSTNAME": hostname or socket.gethostname(),
        }
    )
    fd = os.open(env_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with open(fd, "w", encoding="utf-8") as f:
        f.write(env_text)
    env_file.chmod(0o600)
    logger.info("Wrote %s", env_file)

    result = BootstrapResult(project_dir=project_dir, compose_file=compose_file, env_file=env_file)
    if compose is None:
        return result

    context = ExecutionContext(
        action=Action(id="bootstrap:up", adapter=compose.name, operation="up"),
        working_dir=str(project_dir),
    )
    result.receipt = compose.run(context)
    if result.receipt.failed:
        logger.error("Failed to start the agent in %s: %s", project_dir, result.receipt.error)
    return result
