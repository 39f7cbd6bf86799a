"""Tests for logging module."""

import logging
import re

from sessiond.config import Config
from sessiond.logging import mask_subject, reset_logging, setup_logging


class TestSetupLogging:
    """Test logging setup."""

    def test_setup_logging_returns_logger(self):
        """Setup returns the package logger."""
        logger = setup_logging(Config())

        assert isinstance(logger, logging.Logger)
        assert logger.name == "sessiond"

    def test_setup_logging_creates_log_file(self, tmp_path):
        """Logging setup creates the log file and its directory."""
        log_file = tmp_path / "subdir" / "test.log"
        logger = setup_logging(Config(log_file=str(log_file)))

        logger.info("test message")

        assert log_file.exists()
        assert "test message" in log_file.read_text()

    def test_log_levels_respected(self, tmp_path):
        """Only logs at configured level and above."""
        log_file = tmp_path / "test.log"
        logger = setup_logging(Config(log_file=str(log_file), log_level="WARNING"))

        logger.info("info message")
        logger.warning("warning message")

        content = log_file.read_text()
        assert "info message" not in content
        assert "warning message" in content

    def test_log_format(self, tmp_path):
        """Lines carry a timestamp and level."""
        log_file = tmp_path / "test.log"
        logger = setup_logging(Config(log_file=str(log_file)))

        logger.error("boom")

        line = log_file.read_text().strip()
        assert re.match(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[ERROR\] boom", line)

    def test_module_loggers_inherit(self, tmp_path):
        """Module loggers write through the package handlers."""
        log_file = tmp_path / "test.log"
        setup_logging(Config(log_file=str(log_file)))

        logging.getLogger("sessiond.pairing.orchestrator").info("from module")

        assert "from module" in log_file.read_text()

    def test_setup_is_idempotent(self):
        """Repeated setup keeps one set of handlers."""
        first = setup_logging(Config())
        second = setup_logging(Config(log_level="DEBUG"))

        assert first is second
        assert len(first.handlers) == 1

    def test_reset_allows_reconfiguration(self):
        setup_logging(Config())
        reset_logging()

        logger = setup_logging(Config(log_level="DEBUG"))

        assert logger.level == logging.DEBUG


class TestMaskSubject:
    """Test subject masking for log output."""

    def test_keeps_last_four(self):
        assert mask_subject("254700111222") == "********1222"

    def test_short_values_fully_masked(self):
        assert mask_subject("1234") == "****"
        assert mask_subject("") == ""
