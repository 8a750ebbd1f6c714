"""
Configure logging for the trainer.

All modules log through ``logging.getLogger(__name__)`` under the
``nback_trainer`` namespace; this sets up the one console handler they share.
"""

from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "nback_trainer"
LOG_LEVEL_ENV = "NBACK_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a stderr handler to the package logger and return it."""

    name = (level or os.environ.get(LOG_LEVEL_ENV, "INFO")).strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolved)

    # Remove existing handlers if any
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    logger.propagate = False
    logger.debug("Logging configured at %s", logging.getLevelName(resolved))
    return logger
