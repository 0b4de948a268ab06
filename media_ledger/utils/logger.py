"""
Logging Setup

All media-ledger loggers hang below the 'media_ledger' logger. The CLI
attaches a rotating log file (plain text or JSON lines) and, with
--verbose, a colored stderr handler; stdout is left to previews and
summaries.

Author: media-ledger Project
License: MIT
"""

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger
from typing import Optional


ROOT_LOGGER_NAME = "media_ledger"

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s - %(name)s - %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)s - %(name)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s'
JSON_FORMAT = '%(asctime)s %(name)s %(levelname)s %(module)s %(funcName)s %(lineno)d %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Level names in ANSI colors, for terminals."""

    LEVEL_COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        # Work on a copy; the file handler sees the same record
        record = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelname)
        if color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _formatter(json_format: bool, console: bool) -> logging.Formatter:
    if json_format:
        return jsonlogger.JsonFormatter(JSON_FORMAT)
    if console:
        return ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT)
    return logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = True,
    log_file_path: Optional[str] = None,
    log_rotation_size: int = 10485760,  # 10MB
    log_retention_count: int = 5,
    json_format: bool = False,
    console: bool = True
) -> logging.Logger:
    """
    Configure the media_ledger logger.

    Calling it again replaces the handlers of the previous call.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_to_file: Write to log_file_path
        log_file_path: Log file (ignored unless log_to_file is set)
        log_rotation_size: Bytes before the file is rotated
        log_retention_count: Rotated files to keep
        json_format: One JSON object per record
        console: Also log to stderr

    Returns:
        The media_ledger logger
    """
    level = getattr(logging, str(log_level).upper())

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = []
    if console:
        handlers.append((logging.StreamHandler(sys.stderr), True))

    if log_to_file and log_file_path:
        log_path = Path(log_file_path).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            str(log_path),
            maxBytes=log_rotation_size,
            backupCount=log_retention_count,
            encoding='utf-8'
        )
        handlers.append((rotating, False))

    for handler, is_console in handlers:
        handler.setLevel(level)
        handler.setFormatter(_formatter(json_format, is_console))
        logger.addHandler(handler)

    # Records stop here; the root logger belongs to the host application
    logger.propagate = False

    if log_to_file and log_file_path:
        logger.debug(f"Logging at {log_level} to {log_file_path}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Logger below the media_ledger hierarchy.

    Args:
        name: Usually __name__; names outside the package are nested under it

    Returns:
        Logger instance
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
