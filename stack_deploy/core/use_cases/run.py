"""
Run use case — wire the controller from agent settings.

    settings ─┬─ repo_url? ──▶ GitRepoSync / LocalRepoSync
              ├─ repo_dir  ──▶ load_stacks(repo_dir)
              ├─ kdbx      ──▶ KeePassOpener (passphrase captured once)
              └─ state_dir ──▶ agent.json + audit.ndjson
"""

from __future__ import annotations

import logging
import socket

from stack_deploy.adapters.base import Adapter
from stack_deploy.adapters.containers.compose import ComposeAdapter
from stack_deploy.adapters.vcs.git import GitRepoSync, LocalRepoSync
from stack_deploy.core.config.loader import AgentSettings
from stack_deploy.core.config.stack_loader import load_stacks
from stack_deploy.core.engine.controller import SyncController
from stack_deploy.core.errors import ConfigError
from stack_deploy.core.models.repo import RepoSync
from stack_deploy.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditWriter
from stack_deploy.core.persistence.state_file import default_state_path
from stack_deploy.core.services.credential_store import KeePassOpener

logger = logging.getLogger(__name__)


def local_hostname(settings: AgentSettings) -> str:
    """Configured hostname, else the machine's."""
    return settings.hostname or socket.gethostname()


def build_controller(
    settings: AgentSettings,
    passphrase: str | None = None,
    git_token: str | None = None,
    wait_for_trigger: bool = False,
    compose: Adapter | None = None,
) -> SyncController:
    """Build a SyncController for ``settings``.

    Raises:
        ConfigError: No repository directory configured.
    """
    if settings.repo_dir is None:
        raise ConfigError("--repo-dir is required")
    repo_dir = settings.repo_dir

    repo_sync: RepoSync
    if settings.repo_url:
        repo_sync = GitRepoSync(
            settings.repo_url,
            repo_dir,
            username=settings.git_username,
            token=git_token,
        )
    else:
        repo_sync = LocalRepoSync(repo_dir)

    kdbx = settings.kdbx_path
    store_opener = KeePassOpener(kdbx, passphrase) if kdbx is not None and passphrase else None

    state_dir = settings.state_path
    host = local_hostname(settings)
    logger.info(
        "Agent for host %s: repo %s (%s), poll every %ss, state in %s",
        host,
        repo_dir,
        settings.repo_url or "local",
        settings.poll_interval,
        state_dir,
    )

    controller = SyncController(
        repo_sync=repo_sync,
        load_descriptors=lambda: load_stacks(repo_dir),
        local_host=host,
        compose=compose or ComposeAdapter(),
        store_opener=store_opener,
        poll_interval=settings.poll_interval,
        cooldown=settings.cooldown,
        wait_for_trigger=wait_for_trigger,
        state_path=default_state_path(state_dir),
        audit=AuditWriter(state_dir / DEFAULT_AUDIT_FILE),
        compose_timeout=settings.compose_timeout,
    )
    controller.agent_state.repo_dir = str(repo_dir)
    return controller
