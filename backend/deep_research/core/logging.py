"""
Logging Configuration

One place to configure log output for the research service.
Every module asks for its logger through get_logger(__name__).
"""
import logging
import os
import sys


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that flood DEBUG/INFO with per-request lines
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "pypdf")


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module (usually called with __name__)."""
    return logging.getLogger(name)


setup_logging(os.environ.get("LOG_LEVEL", "INFO"))
