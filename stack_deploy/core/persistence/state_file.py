"""
Agent state file — <state-dir>/agent.json.

Rewritten after every cycle. The write goes to a temporary file in the
same directory which is then renamed over agent.json, so `status` (or
anything else reading the file) sees either the old or the new state.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from stack_deploy.core.models.state import AgentState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "agent.json"


def default_state_path(state_dir: Path) -> Path:
    return state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> AgentState:
    """Read agent.json; a missing or unreadable file yields a fresh AgentState."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("No agent state at %s", path)
        return AgentState()
    except OSError as e:
        logger.warning("Cannot read agent state %s: %s; starting fresh", path, e)
        return AgentState()

    try:
        return AgentState.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Discarding invalid agent state %s: %s", path, e)
        return AgentState()


def save_state(state: AgentState, path: Path) -> None:
    """Write ``state`` to ``path`` atomically.

    Raises:
        OSError: The directory cannot be created or written.
    """
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(state.model_dump_json(indent=2))
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Agent state saved to %s", path)
