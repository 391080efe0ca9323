"""
Unit tests for the shared logging setup.
"""

import logging
import logging.handlers

import pytest

from src.core.logging_config import LOG_LEVEL_ENV, QUIET_LOGGERS, resolve_level, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestSetupLogging:
    def test_file_handler_rotates(self, root_logger, tmp_path, monkeypatch):
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        log_file = tmp_path / "logs" / "web.log"

        setup_logging(log_level="DEBUG", log_file=str(log_file), log_to_console=False)

        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0], logging.handlers.RotatingFileHandler)
        assert log_file.exists()

    def test_client_libraries_are_quieted(self, root_logger, monkeypatch):
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)

        setup_logging(log_level="DEBUG")

        assert logging.getLogger("uvicorn.access").level == QUIET_LOGGERS["uvicorn.access"]
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_environment_overrides_level(self, root_logger, monkeypatch):
        monkeypatch.setenv(LOG_LEVEL_ENV, "warning")

        setup_logging(log_level="DEBUG")

        assert root_logger.level == logging.WARNING


class TestResolveLevel:
    def test_unknown_name_falls_back_to_info(self, monkeypatch):
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)

        assert resolve_level("chatty") == logging.INFO
