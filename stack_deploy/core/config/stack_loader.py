"""
Stack loader — reads stack-deploy.toml files into StackDescriptors.

Declarations live next to each stack's compose file:

    repo/
        gitea/
            compose.yml
            stack-deploy.toml
        postgres/
            compose.yml
            stack-deploy.toml

Names must be unique across the whole repository, not only among the
stacks assigned to this host; a duplicate is reported before any host
filtering happens.
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from stack_deploy.core.errors import ConfigError
from stack_deploy.core.models.stack import StackDeclaration, StackDescriptor

logger = logging.getLogger(__name__)

DEPLOY_FILE = "stack-deploy.toml"

# Directories never searched for declarations
_SKIP_DIRS = {".git", ".state"}


def find_deploy_files(root: Path) -> list[Path]:
    """Recursively find every stack-deploy.toml under ``root``, sorted."""
    if not root.is_dir():
        raise ConfigError(f"Stack root is not a directory: {root}")

    found = [
        path
        for path in root.rglob(DEPLOY_FILE)
        if path.is_file() and not _SKIP_DIRS.intersection(path.relative_to(root).parts)
    ]
    return sorted(found)


def load_declaration(path: Path) -> StackDescriptor:
    """Load and validate a single stack-deploy.toml.

    Raises:
        ConfigError: If the file cannot be read, is not TOML, or does not
            match the declaration schema.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {path} as toml: {e}") from e

    try:
        declaration = StackDeclaration.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid stack declaration in {path}: {e}") from e

    return declaration.to_descriptor(path.resolve())


def load_stacks(
    root: Path | None = None,
    files: Iterable[Path] = (),
) -> list[StackDescriptor]:
    """Load every stack declaration in the repository.

    Args:
        root: Directory searched recursively for stack-deploy.toml.
        files: Explicit declaration files; when given, ``root`` is not searched.

    Returns:
        Descriptors sorted by name.

    Raises:
        ConfigError: On any invalid file or on duplicate stack names.
    """
    paths = list(files)
    if not paths:
        if root is None:
            raise ConfigError("Either a stack root or explicit deploy files are required")
        paths = find_deploy_files(root)

    by_name: dict[str, StackDescriptor] = {}
    for path in paths:
        descriptor = load_declaration(path)
        existing = by_name.get(descriptor.name)
        if existing is not None:
            raise ConfigError(
                f"multiple stacks have the same name {descriptor.name}: "
                f"{existing.manifest} and {descriptor.manifest}"
            )
        by_name[descriptor.name] = descriptor
        logger.debug("Loaded stack %s from %s", descriptor.name, path)

    logger.info("Loaded %d stack declarations", len(by_name))
    return [by_name[name] for name in sorted(by_name)]
