"""Loguru sink configuration for the CLI."""

import os
import sys
from pathlib import Path

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)
LOG_FILE_NAME = "dbhelper.log"


def default_log_file() -> Path | None:
    """Log file under ``$LOG_DIR`` when that variable is set."""
    log_dir = os.getenv("LOG_DIR")
    return Path(log_dir) / LOG_FILE_NAME if log_dir else None


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Replace loguru's default sink.

    Console output stays quiet (warnings and errors only) so it does not
    interleave with the rich progress output; ``verbose`` lowers it to
    DEBUG. The file sink, when configured, always records DEBUG.

    Args:
        verbose: Log debug messages to stderr
        log_file: Path of a rotating log file; ``$LOG_DIR/dbhelper.log`` if None
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=LOG_FORMAT,
        colorize=True,
    )

    path = log_file or default_log_file()
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
        logger.debug(f"Logging to {path}")
