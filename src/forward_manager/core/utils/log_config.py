"""Logging configuration for the forward manager.

This module provides centralized logging configuration using Loguru.
Importing it replaces Loguru's default handler with a formatted stderr
handler; ``configure_logging`` raises the level and adds a rotating log file
when asked to. The process runs in the foreground under an external
supervisor, so stderr is the primary destination.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level: <8} | "
    "{name}:{function}:{line} - "
    "{message}"
)

# Configure loguru
logger.remove()  # Remove default handler
logger.add(sys.stderr, format=CONSOLE_FORMAT, level="INFO", backtrace=True, diagnose=False)


def configure_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """Reconfigure handlers for a run.

    Args:
        debug: Log at DEBUG instead of INFO
        log_file: Also write logs to this file, rotated at 10 MB
    """
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, backtrace=True, diagnose=debug)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="10 MB",
            retention="1 week",
            compression="zip",
            format=FILE_FORMAT,
            level="DEBUG" if debug else "INFO",
            backtrace=True,
            diagnose=debug,
            enqueue=True,
        )


__all__ = ["logger", "configure_logging"]
