"""Logging setup for relay.

All modules import the shared loguru ``logger`` from here so that sinks are
configured in exactly one place.
"""

from __future__ import annotations

import os
import sys

from loguru import logger

__all__ = ["logger", "configure_console_logging"]

_CONSOLE_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Library default: silent until the CLI (or an embedding app) asks for output.
logger.remove()


def configure_console_logging(verbose: bool = False) -> None:
    """Install the console sink, plus a file sink when RELAY_LOG_FILE is set.

    Args:
        verbose: Log DEBUG and above instead of WARNING and above.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=_CONSOLE_FORMAT,
        colorize=None,
    )

    log_file = os.getenv("RELAY_LOG_FILE")
    if log_file:
        logger.add(log_file, level="DEBUG", format=_FILE_FORMAT, rotation="10 MB")
