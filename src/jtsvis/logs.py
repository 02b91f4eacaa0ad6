"""Logging setup for jtsvis.

Probe diagnostics and viewer messages go through the ``jtsvis`` logger
hierarchy. Output goes to stderr unless a log file is configured, so that
stdout stays reserved for the record stream.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> logging.Logger:
    """Configure the ``jtsvis`` logger.

    Args:
        level: Log level name.
        log_file: Optional path to a rotating log file. Defaults to stderr.

    Returns:
        The configured package logger.
    """
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))

    logger = logging.getLogger("jtsvis")
    logger.setLevel(level.upper())
    # Replace handlers from a previous call instead of stacking them
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    return logger
