"""
Tests for the stack loader — finding and parsing stack-deploy.toml files.
"""

from pathlib import Path

import pytest

from conftest import write_stack
from stack_deploy.core.config.stack_loader import (
    find_deploy_files,
    load_declaration,
    load_stacks,
)
from stack_deploy.core.errors import ConfigError


class TestFindDeployFiles:
    def test_recursive_and_sorted(self, stack_repo: Path):
        write_stack(stack_repo, "web", directory="apps/web")
        write_stack(stack_repo, "db")
        found = find_deploy_files(stack_repo)
        assert [p.relative_to(stack_repo).as_posix() for p in found] == [
            "apps/web/stack-deploy.toml",
            "db/stack-deploy.toml",
        ]

    def test_skips_git_and_state(self, stack_repo: Path):
        write_stack(stack_repo, "hidden", directory=".git/hidden")
        write_stack(stack_repo, "cached", directory=".state/cached")
        write_stack(stack_repo, "real")
        found = find_deploy_files(stack_repo)
        assert [p.parent.name for p in found] == ["real"]

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not a directory"):
            find_deploy_files(tmp_path / "nope")


class TestLoadDeclaration:
    def test_valid(self, stack_repo: Path):
        manifest = write_stack(
            stack_repo,
            "gitea",
            runs_on=["host1"],
            depends_on=["postgres"],
            secret_env={"DB_PASS": "Database/Gitea Postgres DB/password"},
        )
        descriptor = load_declaration(manifest)
        assert descriptor.name == "gitea"
        assert descriptor.directory == manifest.parent.resolve()
        assert descriptor.depends_on == frozenset({"postgres"})
        assert set(descriptor.secret_bindings) == {"DB_PASS"}

    def test_invalid_toml(self, stack_repo: Path):
        bad = stack_repo / "stack-deploy.toml"
        bad.write_text("name = \n")
        with pytest.raises(ConfigError, match="as toml"):
            load_declaration(bad)

    def test_schema_violation(self, stack_repo: Path):
        bad = stack_repo / "stack-deploy.toml"
        bad.write_text('name = "x"\n')  # runs_on missing
        with pytest.raises(ConfigError, match="Invalid stack declaration"):
            load_declaration(bad)

    def test_unreadable(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_declaration(tmp_path / "missing.toml")


class TestLoadStacks:
    def test_sorted_by_name(self, stack_repo: Path):
        write_stack(stack_repo, "zeta")
        write_stack(stack_repo, "alpha")
        names = [d.name for d in load_stacks(stack_repo)]
        assert names == ["alpha", "zeta"]

    def test_duplicate_names(self, stack_repo: Path):
        write_stack(stack_repo, "web", directory="one")
        write_stack(stack_repo, "web", directory="two", runs_on=["host2"])
        with pytest.raises(ConfigError, match="multiple stacks have the same name web"):
            load_stacks(stack_repo)

    def test_explicit_files_skip_search(self, stack_repo: Path):
        chosen = write_stack(stack_repo, "chosen")
        write_stack(stack_repo, "ignored")
        names = [d.name for d in load_stacks(stack_repo, files=[chosen])]
        assert names == ["chosen"]

    def test_requires_root_or_files(self):
        with pytest.raises(ConfigError):
            load_stacks()

    def test_empty_repo(self, stack_repo: Path):
        assert load_stacks(stack_repo) == []
