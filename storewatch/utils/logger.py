"""Loguru sinks for Storewatch."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import get_config

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(log_level: Optional[str] = None, log_file: Optional[str] = None):
    """Replace loguru's default sink with the configured ones.

    Args:
        log_level: Minimum level, defaults to ``logging.level``
        log_file: Log file path, defaults to ``logging.file``; an empty
            string keeps output on stderr only
    """
    settings = get_config().logging
    level = (log_level or settings.level).upper()
    if log_file is None:
        log_file = settings.file

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level=level,
            rotation=settings.rotation,
            retention=settings.retention,
            compression="zip",
            serialize=settings.serialize,
        )

    logger.info(f"Logging initialized at {level} level")
