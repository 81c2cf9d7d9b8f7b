"""
Tests for agent settings — YAML file, overrides and derived paths.
"""

from pathlib import Path

import pytest

from stack_deploy.core.config.loader import (
    AgentSettings,
    find_settings_file,
    load_settings,
    read_settings_file,
)
from stack_deploy.core.errors import ConfigError


@pytest.fixture
def settings_yml(tmp_path: Path) -> Path:
    path = tmp_path / "stack-deploy.yml"
    path.write_text(
        "repo-dir: /srv/agent/repo\n"
        "repo_url: https://github.com/example/infra.git\n"
        "poll-interval: 60\n"
        "hostname: host1\n"
    )
    return path


class TestAgentSettings:
    def test_defaults(self):
        settings = AgentSettings()
        assert settings.poll_interval == 300
        assert settings.git_username == "oauth2"
        assert settings.kdbx_path is None
        assert settings.state_path == Path(".state")

    def test_kdbx_defaults_into_repo(self):
        settings = AgentSettings(repo_dir=Path("/srv/agent/repo"))
        assert settings.kdbx_path == Path("/srv/agent/repo/.secrets.kdbx")

    def test_explicit_kdbx_wins(self):
        settings = AgentSettings(repo_dir=Path("/srv/repo"), kdbx=Path("/keys/s.kdbx"))
        assert settings.kdbx_path == Path("/keys/s.kdbx")

    def test_state_dir_next_to_repo(self, tmp_path: Path):
        settings = AgentSettings(repo_dir=tmp_path / "repo")
        assert settings.state_path == tmp_path.resolve() / ".state"

    def test_negative_poll_interval_rejected(self):
        with pytest.raises(ValueError):
            AgentSettings(poll_interval=-1)


class TestLoadSettings:
    def test_file_values(self, settings_yml: Path):
        settings = load_settings(settings_yml)
        assert settings.repo_dir == Path("/srv/agent/repo")
        assert settings.poll_interval == 60
        assert settings.hostname == "host1"

    def test_overrides_win(self, settings_yml: Path):
        settings = load_settings(settings_yml, {"poll_interval": 0, "hostname": None})
        assert settings.poll_interval == 0
        assert settings.hostname == "host1"

    def test_no_file(self):
        assert load_settings(None, {"repo_dir": "/x"}).repo_dir == Path("/x")

    def test_unknown_key(self, tmp_path: Path):
        path = tmp_path / "stack-deploy.yml"
        path.write_text("colour: blue\n")
        with pytest.raises(ConfigError, match="Invalid agent settings"):
            load_settings(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "stack-deploy.yml"
        path.write_text("repo_dir: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            read_settings_file(path)

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "stack-deploy.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            read_settings_file(path)

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "stack-deploy.yml"
        path.write_text("")
        assert read_settings_file(path) == {}

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Cannot read"):
            read_settings_file(tmp_path / "nope.yml")


class TestFindSettingsFile:
    def test_found(self, settings_yml: Path):
        assert find_settings_file(settings_yml.parent) == settings_yml

    def test_not_found(self, tmp_path: Path):
        assert find_settings_file(tmp_path) is None
