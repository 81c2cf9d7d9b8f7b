"""
Agent settings — where the agent finds its repo, store and state.

Values come from (highest first):
    CLI flag  >  environment variable  >  stack-deploy.yml  >  default

Click resolves the first two; this module merges the result over the
optional YAML settings file and validates the whole thing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stack_deploy.core.errors import ConfigError

logger = logging.getLogger(__name__)

# Default settings filename (looked up in the project directory)
SETTINGS_FILE = "stack-deploy.yml"

# Store file looked up inside the repository when --kdbx is not given
DEFAULT_KDBX_NAME = ".secrets.kdbx"


class AgentSettings(BaseModel):
    """Validated agent settings."""

    model_config = ConfigDict(extra="forbid")

    repo_dir: Path | None = None
    repo_url: str | None = None
    poll_interval: int = Field(default=300, ge=0)
    kdbx: Path | None = None
    hostname: str | None = None
    git_username: str = "oauth2"
    state_dir: Path | None = None
    cooldown: float = Field(default=5.0, ge=0)
    compose_timeout: int = Field(default=900, gt=0)

    @property
    def kdbx_path(self) -> Path | None:
        """Explicit store path, or <repo-dir>/.secrets.kdbx."""
        if self.kdbx is not None:
            return self.kdbx
        if self.repo_dir is not None:
            return self.repo_dir / DEFAULT_KDBX_NAME
        return None

    @property
    def state_path(self) -> Path:
        """Directory holding agent.json and the audit ledger."""
        if self.state_dir is not None:
            return self.state_dir
        if self.repo_dir is not None:
            return self.repo_dir.resolve().parent / ".state"
        return Path(".state")


def read_settings_file(path: Path) -> dict[str, Any]:
    """Read a stack-deploy.yml mapping.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or not a mapping.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # Accept keys written the CLI way (poll-interval)
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def load_settings(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> AgentSettings:
    """Build AgentSettings from an optional file plus CLI/env overrides.

    ``None`` values in ``overrides`` mean "not given" and never mask
    a value from the file.
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        data.update(read_settings_file(config_path))
        logger.debug("Loaded settings from %s", config_path)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return AgentSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid agent settings: {e}") from e


def find_settings_file(project_dir: Path) -> Path | None:
    """Return <project_dir>/stack-deploy.yml if it exists."""
    candidate = project_dir / SETTINGS_FILE
    return candidate if candidate.is_file() else None
