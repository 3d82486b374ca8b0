"""
Centralized logging configuration.

Handlers live on the package root logger ('batch_engine'); every module
logger obtained through get_logger(__name__) is a child of it and propagates.
"""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union
from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT
)

ROOT_LOGGER_NAME = 'batch_engine'


def setup_logger(
    level: Optional[str] = None,
    log_file: Optional[str] = LOG_FILE,
) -> logging.Logger:
    """
    Configure the package root logger once.

    Usage:
        from config.logging_config import setup_logger
        setup_logger(level="DEBUG", log_file=None)

    Args:
        level: Root level name. Defaults to LOG_LEVEL.
        log_file: Rotating log file path, or None for console only.

    Returns:
        The root 'batch_engine' logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    # Avoid adding handlers multiple times
    if root.handlers:
        return root

    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper()))

    # Console handler - INFO level
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    # File handler with rotation - DEBUG level
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT,
            encoding='utf-8',
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    return root


def get_logger(name: str = None) -> logging.Logger:
    """
    Logger for a module, placed under the 'batch_engine' hierarchy.

    Usage:
        from config.logging_config import get_logger
        logger = get_logger(__name__)
    """
    root = setup_logger()
    if not name or name == ROOT_LOGGER_NAME:
        return root
    if not name.startswith(ROOT_LOGGER_NAME + '.'):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_console_level(level: Union[int, str]):
    """Change what reaches the console (e.g. DEBUG for --verbose)."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    root = setup_logger()
    if level < root.level:
        root.setLevel(level)
    for handler in root.handlers:
        if not isinstance(handler, logging.handlers.RotatingFileHandler):
            handler.setLevel(level)


# Singleton logger for quick imports
# Usage: from config.logging_config import logger
logger = setup_logger()
