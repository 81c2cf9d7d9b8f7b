"""
Stack model — what the repository declares about each stack.

A stack is one docker compose project living in its own directory,
next to a stack-deploy.toml file that says which hosts run it, which
other stacks must be up first, and which environment variables are
filled from the credential store.

StackDeclaration mirrors the file. StackDescriptor is the immutable,
validated form the planner and executor work with; a fresh set is
produced on every cycle.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Wildcard host accepted in runs_on
ANY_HOST = "*"

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SecretPath(BaseModel):
    """A reference into the credential store.

    Written as ``Group/Sub Group/Entry Title/field``: one or more group
    segments (the first one is the store's root group), the entry title,
    then the field name. Only the secret resolver interprets it.
    """

    model_config = ConfigDict(frozen=True)

    groups: tuple[str, ...]
    entry: str
    field: str

    @classmethod
    def parse(cls, text: str) -> SecretPath:
        """Parse a ``Group/Entry/field`` string.

        Raises:
            ValueError: If there are fewer than three segments or one is empty.
        """
        segments = text.split("/")
        if len(segments) < 3:
            raise ValueError(
                f"secret path {text!r} must look like 'Group/Entry Title/field'"
            )
        if any(not s.strip() for s in segments):
            raise ValueError(f"secret path {text!r} has an empty segment")
        return cls(groups=tuple(segments[:-2]), entry=segments[-2], field=segments[-1])

    @property
    def segments(self) -> tuple[str, ...]:
        return (*self.groups, self.entry, self.field)

    def __str__(self) -> str:
        return "/".join(self.segments)


class StackDescriptor(BaseModel):
    """Validated, immutable description of one stack."""

    model_config = ConfigDict(frozen=True)

    name: str
    directory: Path                 # where docker compose runs
    manifest: Path | None = None    # the stack-deploy.toml it came from
    runs_on: frozenset[str]
    depends_on: frozenset[str] = frozenset()
    secret_bindings: dict[str, SecretPath] = Field(default_factory=dict)

    def __hash__(self) -> int:
        # Names are unique per repository; equal descriptors share a name
        return hash(self.name)

    def runs_on_host(self, host: str) -> bool:
        """Whether this stack is assigned to ``host``."""
        return host in self.runs_on or ANY_HOST in self.runs_on

    @property
    def requires_secrets(self) -> bool:
        return bool(self.secret_bindings)


class StackDeclaration(BaseModel):
    """The contents of a stack-deploy.toml file."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    runs_on: list[str]
    depends_on: list[str] = Field(default_factory=list)
    secret_env: dict[str, str] = Field(default_factory=dict)

    @field_validator("secret_env")
    @classmethod
    def _check_secret_env(cls, value: dict[str, str]) -> dict[str, str]:
        for env_name, path in value.items():
            if not _ENV_NAME_RE.match(env_name):
                raise ValueError(f"{env_name!r} is not a valid environment variable name")
            SecretPath.parse(path)
        return value

    def to_descriptor(self, manifest: Path) -> StackDescriptor:
        """Build the descriptor for a declaration read from ``manifest``."""
        return StackDescriptor(
            name=self.name,
            directory=manifest.parent,
            manifest=manifest,
            runs_on=frozenset(self.runs_on),
            depends_on=frozenset(self.depends_on),
            secret_bindings={
                env_name: SecretPath.parse(path)
                for env_name, path in sorted(self.secret_env.items())
            },
        )
