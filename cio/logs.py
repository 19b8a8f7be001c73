"""
Logging setup for the commit image optimizer.

Console output carries the human-readable per-file lines; the log file
(rotated) keeps a timestamped, levelled record of every status transition.
Failing to open the log file never stops a run: we fall back to console only.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "cio"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONSOLE_FORMAT = "%(message)s"


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    log_level: str = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    Configure the package logger with console and rotating file output.

    Args:
        log_file: Path to the log file. None disables file logging.
        log_level: Level for the file handler (console is always INFO+).
        console: Attach a stdout handler.

    Returns:
        The configured "cio" logger.
    """
    level = getattr(logging, log_level.upper())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(level, logging.INFO))
    logger.propagate = False

    # Clear existing handlers to prevent duplicates on repeated setup
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    if log_file is None:
        return logger

    log_path = Path(log_file).expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

        logger.debug("Logging configured - Level: %s, File: %s", log_level, log_path)
    except OSError as e:
        logger.warning("Failed to set up file logging to %s: %s", log_path, e)
        logger.warning("Continuing with console logging only")

    return logger
