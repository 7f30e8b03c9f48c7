"""Logging for the event reminder engine.

Everything logs through the "event_reminders" logger. Records go to a
dated file under LOG_DIR and, when attached to a terminal, to stdout.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import LOG_DIR, LOG_LEVEL

LOGGER_NAME = "event_reminders"

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"


def _file_handler(log_dir: Path, level: str) -> logging.Handler:
    """One file per day, e.g. 2026-03-14.log."""
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / f"{datetime.now():%Y-%m-%d}.log", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(level: str) -> Optional[logging.Handler]:
    # Skipped when running detached (service, pythonw, redirected output)
    if sys.stdout is None or not sys.stdout.isatty():
        return None
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    return handler


def setup_logging(log_dir: Optional[Path] = None, level: Optional[str] = None) -> logging.Logger:
    """Configure the engine logger.

    Safe to call again (e.g. from a host that changes LOG_DIR); existing
    handlers are closed and replaced.

    Args:
        log_dir: Directory for dated log files (default from config)
        level: Log level name (default from config)
    """
    level = level or LOG_LEVEL
    engine_logger = logging.getLogger(LOGGER_NAME)
    engine_logger.setLevel(level)

    for handler in list(engine_logger.handlers):
        engine_logger.removeHandler(handler)
        handler.close()

    engine_logger.addHandler(_file_handler(Path(log_dir or LOG_DIR), level))
    console = _console_handler(level)
    if console is not None:
        engine_logger.addHandler(console)

    return engine_logger


logger = setup_logging()
