"""Logging configuration for sessiond."""

import logging
from pathlib import Path

from sessiond.config import Config

LOGGER_NAME = "sessiond"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logger: logging.Logger | None = None


def setup_logging(config: Config) -> logging.Logger:
    """Configure the package logger from config.

    Idempotent: the first call wins until reset_logging() is called.

    Args:
        config: Configuration object with log settings.

    Returns:
        The configured "sessiond" logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers:
            handler.close()
        _logger.handlers.clear()
        _logger.propagate = True
        _logger = None


def mask_subject(subject_id: str) -> str:
    """Mask a subject identifier for log output, keeping the last 4 digits."""
    if len(subject_id) <= 4:
        return "*" * len(subject_id)
    return "*" * (len(subject_id) - 4) + subject_id[-4:]
