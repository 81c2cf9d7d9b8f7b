"""
Logging configuration — set up once by the CLI group callback.

The agent usually runs as a long-lived container whose stderr is
collected by docker, so the console handler is the primary sink:

    --debug / --verbose / --quiet      (CLI, highest)
    STACK_DEPLOY_LOG_LEVEL             (environment)
    INFO                               (default)

STACK_DEPLOY_LOG_FILE adds a file sink (level STACK_DEPLOY_LOG_FILE_LEVEL,
default: the console level). The file handler reopens the file when it
is rotated away underneath the agent.

Modules log through ``logging.getLogger(__name__)`` and never configure
handlers themselves.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from collections.abc import Mapping

DEFAULT_LEVEL = "INFO"

LEVEL_ENV = "STACK_DEPLOY_LOG_LEVEL"
FILE_ENV = "STACK_DEPLOY_LOG_FILE"
FILE_LEVEL_ENV = "STACK_DEPLOY_LOG_FILE_LEVEL"

# ── Formats ─────────────────────────────────────────────────────────

# (format, datefmt) per console level, most verbose first
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(levelname)-5s %(message)s", "%Y-%m-%dT%H:%M:%S"),
    (sys.maxsize, "%(levelname)s %(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(process)d] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Libraries that chatter at INFO; held at WARNING unless debugging
_NOISY_LOGGERS = ("pykeepass", "urllib3")


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level name from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get(LEVEL_ENV) or DEFAULT_LEVEL


def setup_logging(
    level: str = DEFAULT_LEVEL,
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Replace the root logger's handlers with the agent's console (and file) sinks.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional file path; appended to, never truncated.
        log_file_level: Level for the file sink; defaults to ``level``.
        quiet_third_party: Hold noisy libraries at WARNING unless ``level``
            is DEBUG.
    """
    console_level = _parse_level(level)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    root.addHandler(_console_handler(console_level))
    lowest = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root.addHandler(_file_handler(log_file, file_level))
        lowest = min(lowest, file_level)

    root.setLevel(lowest)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # A closed stderr (detached container) must not kill the agent
    logging.raiseExceptions = False


def setup_from_env(level: str | None = None, environ: Mapping[str, str] | None = None) -> None:
    """setup_logging() with the file sink taken from the environment."""
    env = os.environ if environ is None else environ
    resolved = level or env.get(LEVEL_ENV) or DEFAULT_LEVEL
    setup_logging(
        level=resolved,
        log_file=env.get(FILE_ENV) or None,
        log_file_level=env.get(FILE_LEVEL_ENV) or None,
    )


# ── Handlers ────────────────────────────────────────────────────────


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next((f, d) for limit, f, d in _CONSOLE_FORMATS if level <= limit)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.handlers.WatchedFileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown or empty names mean INFO."""
    numeric = logging.getLevelName(level.upper()) if level else logging.INFO
    return numeric if isinstance(numeric, int) else logging.INFO
