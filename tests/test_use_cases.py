"""
Tests for the one-shot use cases and controller wiring.
"""

from pathlib import Path

import pytest

from conftest import FakeStore, write_stack
from stack_deploy.adapters.mock import MockAdapter
from stack_deploy.adapters.vcs.git import GitRepoSync, LocalRepoSync
from stack_deploy.core.config.loader import AgentSettings
from stack_deploy.core.engine.controller import Trigger
from stack_deploy.core.errors import StoreUnlockError
from stack_deploy.core.use_cases.deploy import deploy_stacks, plan_stacks, stop_stacks
from stack_deploy.core.use_cases.run import build_controller, local_hostname
from stack_deploy.core.use_cases.status import get_status

HOST = "host1"
PG_PATH = "Database/Gitea Postgres DB/password"


@pytest.fixture
def repo(stack_repo: Path) -> Path:
    write_stack(stack_repo, "postgres", secret_env={"POSTGRES_PASSWORD": PG_PATH})
    write_stack(stack_repo, "gitea", depends_on=["postgres"])
    write_stack(stack_repo, "remote", runs_on=["host2"])
    return stack_repo


class TestPlanStacks:
    def test_plan(self, repo: Path):
        result = plan_stacks(HOST, repo)
        assert result.plan.names == ["postgres", "gitea"]
        data = result.to_dict()
        assert data["plan"][0]["secret_env"] == ["POSTGRES_PASSWORD"]
        assert data["plan"][1]["depends_on"] == ["postgres"]

    def test_config_error(self, stack_repo: Path):
        write_stack(stack_repo, "dup", directory="a")
        write_stack(stack_repo, "dup", directory="b")
        result = plan_stacks(HOST, stack_repo)
        assert result.error_kind == "config"
        assert result.to_dict()["error"].startswith("multiple stacks")

    def test_graph_error(self, stack_repo: Path):
        write_stack(stack_repo, "c", depends_on=["d"])
        write_stack(stack_repo, "d", runs_on=["host2"])
        result = plan_stacks(HOST, stack_repo)
        assert result.error_kind == "graph"
        assert not result.ok


class TestDeployStacks:
    def test_deploy(self, repo: Path, fake_store: FakeStore):
        compose = MockAdapter()
        result = deploy_stacks(HOST, compose, repo, open_store=lambda: fake_store)

        assert result.ok
        assert compose.stacks_called == ["postgres", "gitea"]
        assert compose.calls[0].env == {"POSTGRES_PASSWORD": "pg-secret"}
        assert fake_store.closed

    def test_secrets_without_store(self, repo: Path):
        compose = MockAdapter()
        result = deploy_stacks(HOST, compose, repo)
        assert result.error_kind == "store"
        assert compose.call_count == 0

    def test_unlock_failure(self, repo: Path):
        def opener():
            raise StoreUnlockError("Wrong passphrase for x.kdbx")

        result = deploy_stacks(HOST, MockAdapter(), repo, open_store=opener)
        assert result.error == "Wrong passphrase for x.kdbx"

    def test_partial_failure_not_ok(self, repo: Path, fake_store: FakeStore):
        compose = MockAdapter()
        compose.set_failure("postgres")
        result = deploy_stacks(HOST, compose, repo, open_store=lambda: fake_store)
        assert not result.ok
        assert result.report.get("gitea").causing_stack == "postgres"

    def test_missing_compose_fails_before_store_is_opened(self, repo: Path):
        opened = []
        compose = MockAdapter(available=False)
        result = deploy_stacks(HOST, compose, repo, open_store=lambda: opened.append(1))

        assert result.error_kind == "executor"
        assert "not available" in result.error
        assert opened == []
        assert compose.call_count == 0

    def test_dry_run_does_not_need_compose(self, repo: Path, fake_store: FakeStore):
        result = deploy_stacks(
            HOST, MockAdapter(available=False), repo, open_store=lambda: fake_store, dry_run=True
        )
        assert result.ok
        assert result.report.skipped == 2


class TestStopStacks:
    def test_reverse_order(self, repo: Path):
        compose = MockAdapter()
        result = stop_stacks(HOST, compose, repo)
        assert result.ok
        assert compose.stacks_called == ["gitea", "postgres"]

    def test_missing_compose(self, repo: Path):
        compose = MockAdapter(available=False)
        result = stop_stacks(HOST, compose, repo)
        assert not result.ok
        assert compose.call_count == 0


class TestStatus:
    def test_no_state(self, tmp_state_dir: Path):
        result = get_status(tmp_state_dir)
        assert not result.found
        assert result.to_dict()["error"] == "No agent state found"

    def test_after_cycle(self, repo: Path, tmp_path: Path):
        settings = AgentSettings(repo_dir=repo, state_dir=tmp_path / "state", poll_interval=0, hostname=HOST)
        controller = build_controller(settings, compose=MockAdapter())
        controller.run_cycle(Trigger.STARTUP)

        result = get_status(tmp_path / "state")
        assert result.found
        assert result.state.repo_dir == str(repo)
        assert len(result.recent) == 1
        assert result.to_dict()["state"]["hostname"] == HOST


class TestBuildController:
    def test_requires_repo_dir(self):
        from stack_deploy.core.errors import ConfigError

        with pytest.raises(ConfigError, match="--repo-dir"):
            build_controller(AgentSettings())

    def test_local_repo(self, repo: Path, tmp_path: Path):
        settings = AgentSettings(repo_dir=repo, state_dir=tmp_path / "state", hostname=HOST)
        controller = build_controller(settings, compose=MockAdapter())
        assert isinstance(controller._repo_sync, LocalRepoSync)
        assert controller._store_opener is None

    def test_git_repo_with_store(self, tmp_path: Path):
        settings = AgentSettings(
            repo_dir=tmp_path / "repo",
            repo_url="https://github.com/example/infra.git",
            state_dir=tmp_path / "state",
        )
        controller = build_controller(settings, passphrase="pw", git_token="tok", compose=MockAdapter())
        assert isinstance(controller._repo_sync, GitRepoSync)
        assert controller._store_opener.path == tmp_path / "repo" / ".secrets.kdbx"

    def test_local_hostname(self):
        assert local_hostname(AgentSettings(hostname="pi")) == "pi"
        assert local_hostname(AgentSettings())
