"""Tests for the logger module."""

import logging
from logging.handlers import RotatingFileHandler

import pytest
from rich.logging import RichHandler

from store_workflows.core.config import LoggingConfig
from store_workflows.core.logger import get_logger, log_exception, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    """Fixture to reset logging configuration before and after each test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level

    yield

    for handler in logging.root.handlers:
        if handler not in original_handlers:
            handler.close()
    logging.root.handlers = original_handlers
    logging.root.setLevel(original_level)
    logging.getLogger("store_workflows").setLevel(logging.NOTSET)

    from store_workflows.core import logger

    for lg in logger._loggers.values():
        lg.setLevel(logging.INFO)
    logger._current_level = logging.INFO


class TestGetLogger:
    """Tests for the get_logger function."""

    def test_get_logger_returns_namespaced_logger(self):
        """Test that loggers live under the package namespace."""
        logger = get_logger("test_name")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "store_workflows.test_name"

    def test_get_logger_is_cached(self):
        """Test that multiple calls with the same name return the same instance."""
        assert get_logger("cached_name") is get_logger("cached_name")


class TestSetupLogging:
    """Tests for the setup_logging function."""

    def test_setup_logging_levels(self):
        """Test that setup_logging sets the package and cached logger levels."""
        cached = get_logger("level_test")

        setup_logging(LoggingConfig(level="DEBUG"))
        assert logging.getLogger("store_workflows").level == logging.DEBUG
        assert cached.level == logging.DEBUG

        setup_logging(LoggingConfig(level="WARNING"))
        assert cached.level == logging.WARNING

    def test_setup_logging_handlers(self, tmp_path):
        """Test that the console handler is Rich and the file handler rotates."""
        setup_logging(LoggingConfig(log_file=None))
        root_handlers = logging.getLogger().handlers
        assert len(root_handlers) == 1
        assert isinstance(root_handlers[0], RichHandler)

        setup_logging(LoggingConfig(log_file=str(tmp_path / "logs" / "engine.log")))
        root_handlers = logging.getLogger().handlers
        assert len(root_handlers) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in root_handlers)

    def test_file_logging_writes_to_file(self, tmp_path):
        """Test that file logging writes plain-text records."""
        log_file = tmp_path / "engine.log"
        setup_logging(LoggingConfig(level="INFO", log_file=str(log_file)))

        get_logger("file_test").info("Workflow wf-1 executed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = log_file.read_text()
        assert "store_workflows.file_test - INFO - Workflow wf-1 executed" in content

    def test_log_exception_helper(self, caplog):
        """Test the log_exception helper function."""
        logger = get_logger("exception_test")

        try:
            raise ValueError("A test exception")
        except ValueError as e:
            log_exception(logger, e, context="During testing")

        record = caplog.records[-1]
        assert record.levelname == "ERROR"
        assert "During testing: A test exception" in record.message
        assert record.exc_info is not None
