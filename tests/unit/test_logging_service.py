"""Tests for logging service configuration."""

import logging
import tempfile
from pathlib import Path

from covenant.services.logging import get_log_level, setup_server_logging


class TestServerLogging:
    """Test server logging configuration."""

    def setup_method(self):
        """Save original handlers before each test."""
        self.root_logger = logging.getLogger()
        self.original_handlers = self.root_logger.handlers.copy()
        self.original_level = self.root_logger.level

    def teardown_method(self):
        """Restore original handlers after each test."""
        self.root_logger = logging.getLogger()
        for handler in self.root_logger.handlers[:]:
            handler.close()
            self.root_logger.removeHandler(handler)
        for handler in self.original_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.original_level)

    def test_setup_server_logging_creates_log_directory(self) -> None:
        """Verify setup_server_logging creates logs directory if missing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "test_logs" / "covenant.log"
            assert not log_file.parent.exists()

            setup_server_logging(str(log_file))

            assert log_file.parent.exists()

    def test_setup_server_logging_creates_handlers(self) -> None:
        """Verify setup_server_logging creates both stdout and file handlers."""
        with tempfile.TemporaryDirectory() as temp_dir:
            setup_server_logging(str(Path(temp_dir) / "covenant.log"))

            assert len(self.root_logger.handlers) == 2

    def test_explicit_level_overrides_environment(self, monkeypatch) -> None:
        """Verify level_name wins over LOG_LEVEL."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        with tempfile.TemporaryDirectory() as temp_dir:
            setup_server_logging(str(Path(temp_dir) / "covenant.log"), "DEBUG")

            assert self.root_logger.level == logging.DEBUG

    def test_messages_written_to_file(self) -> None:
        """Verify records reach the log file in the expected format."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "covenant.log"
            setup_server_logging(str(log_file), "INFO")

            logging.getLogger("covenant.test").info("Overdue sweep processed 2 of 2 bills")
            for handler in self.root_logger.handlers:
                handler.flush()

            content = log_file.read_text()
            assert "covenant.test - INFO - Overdue sweep processed 2 of 2 bills" in content


def test_get_log_level_falls_back_to_info(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert get_log_level() == logging.INFO
    assert get_log_level("verbose") == logging.INFO
    assert get_log_level("warning") == logging.WARNING
