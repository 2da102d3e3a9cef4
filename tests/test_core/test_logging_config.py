"""
Tests for Logging Configuration

Tests for storyframe/core/logging_config.py
"""

import logging

from storyframe.core.logging_config import LogContext, LogLevel, get_logger, setup_logging


class TestLogging:
    """Tests for logger setup and namespacing."""

    def test_namespaced_loggers(self):
        logger = get_logger("core.reference_store")

        assert logger.name == "storyframe.core.reference_store"
        assert get_logger("storyframe.core.reference_store") is logger

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level=LogLevel.DEBUG, log_file=log_file, console_output=False)
        try:
            get_logger("test.file").info("batch started")
        finally:
            root = logging.getLogger("storyframe")
            for handler in list(root.handlers):
                handler.close()
            setup_logging(level=LogLevel.INFO, console_output=False)

        text = log_file.read_text(encoding="utf-8")
        assert "storyframe.test.file" in text
        assert "batch started" in text

    def test_log_context_restores_level(self):
        logger = get_logger("test.context")
        logger.setLevel(logging.WARNING)

        with LogContext(logger, LogLevel.DEBUG) as scoped:
            assert scoped.level == logging.DEBUG

        assert logger.level == logging.WARNING
