"""
Logging Utility
================

Every module gets its logger the same way:

    from matrixvoice.utils.logger import setup_logger

    logger = setup_logger(__name__)

    logger.debug("Interim transcript: hey mat")      # Only in debug mode
    logger.info("Wake phrase detected")             # Normal operations
    logger.warning("Speech synthesis unavailable")  # Degraded, still running
    logger.error("Failed to persist interaction")   # Actual failures

The engine never uses print() for diagnostics. Failures that must not
reach the user (persistence errors, broken callbacks) are reported here.

LEARNING POINT: Level From the Environment
--------------------------------------------
Loggers are created at import time, long before configuration is read,
so the starting level comes from MATRIX_LOG_LEVEL. Once the config is
loaded, `set_level()` adjusts every Matrix logger at once.
"""

import logging
import os
import sys
from pathlib import Path


ROOT_LOGGER = "matrixvoice"
LEVEL_ENV = "MATRIX_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
DATE_FORMAT = "%H:%M:%S"


def parse_level(value: str | int | None, default: int = logging.DEBUG) -> int:
    """'info' / 'INFO' / 20 → 20. Unknown names fall back to `default`."""
    if isinstance(value, int):
        return value
    if not value:
        return default
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else default


def setup_logger(
    name: str,
    level: int | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """
    Return the logger for `name`, attaching handlers on first use.

    Args:
        name: Logger name (typically __name__ of the calling module)
        level: Minimum level; defaults to MATRIX_LOG_LEVEL, else DEBUG
        log_file: Optional file path to also write logs to
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = parse_level(os.environ.get(LEVEL_ENV))
    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColorFormatter(LOG_FORMAT, DATE_FORMAT, use_color=sys.stdout.isatty()))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def set_level(level: str | int) -> None:
    """Apply `level` to every logger created under the matrixvoice package."""
    resolved = parse_level(level, default=logging.INFO)
    for name, logger in logging.root.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and (name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + ".")):
            logger.setLevel(resolved)


class ColorFormatter(logging.Formatter):
    """
    Colours the level name with ANSI codes when writing to a terminal.

    The record is copied before colouring, so other handlers that see the
    same record still print a plain level name.
    """

    COLORS = {
        logging.DEBUG:    "\033[36m",    # Cyan
        logging.INFO:     "\033[32m",    # Green
        logging.WARNING:  "\033[33m",    # Yellow
        logging.ERROR:    "\033[31m",    # Red
        logging.CRITICAL: "\033[1;31m",  # Bold Red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str, use_color: bool = True):
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)
        color = self.COLORS.get(record.levelno, self.RESET)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)
