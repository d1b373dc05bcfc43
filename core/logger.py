# =============================================================================
# core/logger.py — Centralized Logging Utility
#
# Every module logs through get_logger(__name__): one console handler and
# one dated file under logs/. The console follows DEBUG_MODE (and
# set_console_level() from the CLI); the file always records DEBUG.
#
# Decision-log severities ("info" / "warning" / "critical") map onto the
# stdlib levels via level_for(), so a LogStream entry and its console line
# carry the same weight.
# =============================================================================

import logging
import os
from datetime import datetime

from config import (
    DEBUG_MODE, LOGS_DIR, LOG_DATE_FORMAT, LOG_FILE_PATTERN, LOG_FORMAT,
)

_SEVERITY_LEVELS = {
    "info":     logging.INFO,
    "warning":  logging.WARNING,
    "critical": logging.CRITICAL,
}

_formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if DEBUG_MODE else logging.INFO)
    handler.setFormatter(_formatter)
    return handler


def _file_handler() -> logging.Handler:
    path = os.path.join(LOGS_DIR, datetime.now().strftime(LOG_FILE_PATTERN))
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter)
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Returns a named logger that writes to both console and a dated log file.
    Usage:  from core.logger import get_logger
            log = get_logger(__name__)
            log.info("Message")
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # Already configured

    logger.setLevel(logging.DEBUG)
    logger.addHandler(_console_handler())
    logger.addHandler(_file_handler())
    return logger


def level_for(severity: str) -> int:
    """stdlib level for a decision-log severity; unknown values log as INFO."""
    return _SEVERITY_LEVELS.get(str(getattr(severity, "value", severity)), logging.INFO)


def set_console_level(level: int) -> None:
    """Adjust the console handler of every logger created by get_logger()."""
    for logger in logging.Logger.manager.loggerDict.values():
        if not isinstance(logger, logging.Logger):
            continue
        for handler in logger.handlers:
            # FileHandler subclasses StreamHandler; leave the file at DEBUG
            if type(handler) is logging.StreamHandler:
                handler.setLevel(level)
