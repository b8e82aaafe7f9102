"""
Logging setup for AdaptiveHandtracker.

Console output plus an optional rotating file in
~/.adaptive_handtracker/logs/ (override with ADAPTIVE_HANDTRACKER_LOG_DIR).
The file format carries the thread name since the detector and vision
engines log from their own worker threads.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import LOG_FILENAME, LOG_MAX_BYTES, LOG_BACKUP_COUNT

APP_LOGGER_NAME = "AdaptiveHandtracker"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s.%(funcName)s:%(lineno)d | %(message)s"


def get_log_directory() -> Path:
    """Return the log directory, creating it if needed."""
    override = os.environ.get("ADAPTIVE_HANDTRACKER_LOG_DIR")
    log_dir = Path(override) if override else Path.home() / ".adaptive_handtracker" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_logging(debug: bool = False, log_to_file: bool = True) -> logging.Logger:
    """
    Configure and return the application logger.

    Calling it again replaces the previous handlers.

    Args:
        debug: Log at DEBUG level instead of INFO.
        log_to_file: Also write to the rotating log file (always at DEBUG).

    Returns:
        The application logger.
    """
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger(APP_LOGGER_NAME)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console_handler)

    if log_to_file:
        log_path = get_log_directory() / LOG_FILENAME
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)
        logger.debug(f"Logging to file: {log_path}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child logger for one component, e.g. get_logger("RegionTracker")."""
    return logging.getLogger(APP_LOGGER_NAME).getChild(name)
