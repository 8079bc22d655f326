"""Structured logging configuration for the application."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.utils.environment import is_debug

LOGGER_NAME = "quota-engine"


def setup_logger(
    name: str = LOGGER_NAME,
    log_file: str | None = None,
    log_level: str | None = None,
) -> logging.Logger:
    """Configure and return the application logger.

    Module loggers created with ``logging.getLogger("app....")`` are attached
    to the same handlers, so service modules keep using ``__name__``.

    Args:
        name: Logger name
        log_file: Path to log file (default: from LOG_FILE env, empty disables)
        log_level: Log level (default: from LOG_LEVEL env or DEBUG for local, INFO otherwise)

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "DEBUG" if is_debug() else "INFO")

    level = getattr(logging, log_level.upper(), logging.INFO)

    log = logging.getLogger(name)
    log.setLevel(level)

    # Prevent duplicate handlers
    if log.handlers:
        return log

    log_format = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(log_format)
    handlers.append(console_handler)

    if log_file is None:
        log_file = os.getenv("LOG_FILE", "")

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            # Rotating file handler (10MB max, keep 5 backups)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(log_format)
            handlers.append(file_handler)
        except OSError as e:
            log.warning(f"Failed to create file handler for {log_file}: {e}")

    for handler in handlers:
        log.addHandler(handler)

    # Service modules log under "app.*"; route them through the same handlers
    app_log = logging.getLogger("app")
    app_log.setLevel(level)
    if not app_log.handlers:
        for handler in handlers:
            app_log.addHandler(handler)
        app_log.propagate = False

    # Prevent propagation to root logger
    log.propagate = False

    return log


# Global logger instance
logger = setup_logger()
