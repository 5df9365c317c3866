"""Process-level logging for ShopInspect.

Library modules only create module loggers with ``logging.getLogger(__name__)``.
The process entry point (the Celery worker) attaches handlers once to the
``shopinspect`` package logger, and every module logger propagates to it.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import List, Optional

PACKAGE_LOGGER = "shopinspect"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def parse_level(level: str) -> int:
    """Numeric logging level for a level name, case-insensitive."""
    name = str(level).strip().upper()
    if name not in LEVELS:
        raise ValueError(f"Invalid log level {level!r}, expected one of {', '.join(LEVELS)}")
    return getattr(logging, name)


def _build_handlers(
    name: str,
    log_dir: Optional[str],
    console: bool,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, f"{name}.log"),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )
    if console:
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logger(
    name: str = PACKAGE_LOGGER,
    log_dir: Optional[str] = None,
    level: str = "INFO",
    console_logging: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Set the level of logger ``name`` and attach its handlers.

    Handlers are attached only on the first call; later calls just change the
    level, so repeated worker signals do not duplicate output.

    Args:
        name: Logger to configure
        log_dir: Directory for ``<name>.log``; no file output when None
        level: Level name
        console_logging: Also write to stderr
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep

    Raises:
        ValueError: If ``level`` is not a logging level name
    """
    logger = logging.getLogger(name)
    logger.setLevel(parse_level(level))
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _build_handlers(name, log_dir, console_logging, max_bytes, backup_count):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def configure_from_settings(settings, console_logging: bool = True) -> logging.Logger:
    """Configure the package logger from application settings."""
    return setup_logger(
        PACKAGE_LOGGER,
        log_dir=settings.log_dir,
        level=settings.log_level,
        console_logging=console_logging,
    )
