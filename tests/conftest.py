"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from stack_deploy.core.models.repo import RepoUpdate
from stack_deploy.core.models.stack import SecretPath, StackDescriptor

# ── Stack declarations ──────────────────────────────────────────────


def write_stack(
    root: Path,
    name: str,
    runs_on: list[str] | None = None,
    depends_on: list[str] | None = None,
    secret_env: dict[str, str] | None = None,
    directory: str | None = None,
) -> Path:
    """Write <root>/<directory or name>/stack-deploy.toml and return its path."""
    stack_dir = root / (directory or name)
    stack_dir.mkdir(parents=True, exist_ok=True)

    lines = [f'name = "{name}"', f"runs_on = {_toml_list(runs_on or ['host1'])}"]
    if depends_on:
        lines.append(f"depends_on = {_toml_list(depends_on)}")
    if secret_env:
        lines.append("")
        lines.append("[secret_env]")
        for env_name, path in secret_env.items():
            lines.append(f'{env_name} = "{path}"')

    manifest = stack_dir / "stack-deploy.toml"
    manifest.write_text("\n".join(lines) + "\n")
    return manifest


def _toml_list(items: list[str]) -> str:
    return "[" + ", ".join(f'"{i}"' for i in items) + "]"


def make_stack(
    name: str,
    runs_on: tuple[str, ...] = ("host1",),
    depends_on: tuple[str, ...] = (),
    secrets: dict[str, str] | None = None,
    directory: Path | None = None,
) -> StackDescriptor:
    """Build a StackDescriptor without touching the filesystem."""
    return StackDescriptor(
        name=name,
        directory=directory or Path("/srv/stacks") / name,
        runs_on=frozenset(runs_on),
        depends_on=frozenset(depends_on),
        secret_bindings={k: SecretPath.parse(v) for k, v in (secrets or {}).items()},
    )


# ── Fake KeePass tree ───────────────────────────────────────────────


def kp_entry(title: str, password: str | None = None, **custom: str) -> SimpleNamespace:
    return SimpleNamespace(
        title=title,
        username="admin",
        password=password,
        url=None,
        notes=None,
        custom_properties=custom,
    )


def kp_group(name: str, subgroups=(), entries=()) -> SimpleNamespace:
    return SimpleNamespace(name=name, subgroups=list(subgroups), entries=list(entries))


class FakeStore:
    """In-memory CredentialStore over a fake KeePass tree."""

    def __init__(self, root_group: SimpleNamespace):
        from stack_deploy.core.services.credential_store import resolve_in_group

        self._resolve = resolve_in_group
        self.root_group = root_group
        self.lookups: list[str] = []
        self.closed = False

    def lookup(self, path: SecretPath) -> str | None:
        self.lookups.append(str(path))
        return self._resolve(self.root_group, path.segments)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def keepass_tree() -> SimpleNamespace:
    """Database/
         Gitea Postgres DB   password=pg-secret
         Services/
           Gitea             password=gitea-secret, API Key=abc123
    """
    return kp_group(
        "Database",
        subgroups=[
            kp_group(
                "Services",
                entries=[kp_entry("Gitea", password="gitea-secret", **{"API Key": "abc123"})],
            )
        ],
        entries=[kp_entry("Gitea Postgres DB", password="pg-secret")],
    )


@pytest.fixture
def fake_store(keepass_tree) -> FakeStore:
    return FakeStore(keepass_tree)


# ── Repository sync ─────────────────────────────────────────────────


class FakeRepoSync:
    """RepoSync returning scripted updates (or raising scripted errors)."""

    def __init__(self, *updates):
        self._updates = list(updates)
        self.calls = 0

    def push(self, update) -> None:
        self._updates.append(update)

    def sync(self) -> RepoUpdate:
        self.calls += 1
        update = self._updates.pop(0) if len(self._updates) > 1 else self._updates[0]
        if isinstance(update, Exception):
            raise update
        return update


@pytest.fixture
def stack_repo(tmp_path: Path) -> Path:
    """A repository directory with an empty stack root."""
    repo = tmp_path / "repo"
    repo.mkdir()
    return repo


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir
