"""
Tests for logging setup.
"""

import logging
import logging.handlers

import pytest

from stack_deploy.core.observability.logging_config import (
    _parse_level,
    resolve_level,
    setup_from_env,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLevels:
    @pytest.mark.parametrize(
        "name,expected",
        [("debug", logging.DEBUG), ("WARNING", logging.WARNING), (None, logging.INFO), ("loud", logging.INFO)],
    )
    def test_parse(self, name, expected):
        assert _parse_level(name) == expected

    def test_flags_beat_environment(self):
        env = {"STACK_DEPLOY_LOG_LEVEL": "WARNING"}
        assert resolve_level(debug=True, environ=env) == "DEBUG"
        assert resolve_level(quiet=True, environ=env) == "ERROR"
        assert resolve_level(environ=env) == "WARNING"
        assert resolve_level(environ={}) == "INFO"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("WARNING")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

    def test_file_handler_lowers_root(self, tmp_path):
        log_file = tmp_path / "agent.log"
        setup_logging("ERROR", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        logging.getLogger("stack_deploy.test").debug("hello file")
        for handler in root.handlers:
            handler.flush()
        assert "hello file" in log_file.read_text()

    def test_third_party_quieted(self):
        setup_logging("INFO")
        assert logging.getLogger("pykeepass").level == logging.WARNING

    def test_from_env(self, tmp_path):
        log_file = tmp_path / "agent.log"
        setup_from_env(
            "ERROR",
            environ={"STACK_DEPLOY_LOG_FILE": str(log_file), "STACK_DEPLOY_LOG_FILE_LEVEL": "INFO"},
        )
        handlers = logging.getLogger().handlers
        assert any(isinstance(h, logging.handlers.WatchedFileHandler) for h in handlers)
        assert logging.getLogger().level == logging.INFO
