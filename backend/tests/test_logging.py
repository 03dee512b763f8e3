"""Tests for core/logging.py - Logging configuration."""
import logging


class TestLogging:
    """Test the logging module."""

    def test_get_logger_uses_module_name(self):
        """get_logger should return the named Logger."""
        from deep_research.core.logging import get_logger

        logger = get_logger("deep_research.services.research.gatherer")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "deep_research.services.research.gatherer"

    def test_multiple_get_logger_calls_same_name(self):
        """Multiple calls with same name should return same logger."""
        from deep_research.core.logging import get_logger

        assert get_logger("same_name") is get_logger("same_name")

    def test_setup_logging_sets_level(self):
        """setup_logging should set the root level and one handler."""
        from deep_research.core.logging import LOG_FORMAT, setup_logging

        setup_logging(level="WARNING")
        root = logging.getLogger()

        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert root.handlers[0].formatter._fmt == LOG_FORMAT
        setup_logging(level="INFO")

    def test_unknown_level_falls_back_to_info(self):
        """An unknown level name should configure INFO."""
        from deep_research.core.logging import setup_logging

        setup_logging(level="chatty")

        assert logging.getLogger().level == logging.INFO

    def test_noisy_loggers_are_quieted(self):
        """HTTP client loggers should be raised to WARNING."""
        from deep_research.core.logging import NOISY_LOGGERS, setup_logging

        setup_logging(level="DEBUG")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING
        setup_logging(level="INFO")
