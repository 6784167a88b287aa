"""Centralized logging configuration using loguru."""

import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def configure_logging(level: Optional[str] = None, log_dir: Optional[Path] = None) -> None:
    """
    (Re)install the console and JSON file sinks.

    Args:
        level: Console level. Defaults to the LOG_LEVEL environment variable, then INFO.
        log_dir: Directory for the rotating JSON log. Defaults to REGINTEL_LOG_DIR, then ./logs.
    """
    target_dir = log_dir or Path(os.getenv("REGINTEL_LOG_DIR", "logs"))
    target_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()

    # Sink 1: Stderr (Console)
    logger.add(sys.stderr, level=level or os.getenv("LOG_LEVEL", "INFO"), format=CONSOLE_FORMAT)

    # Sink 2: File (JSON). Build/refresh diagnostics land here at DEBUG.
    logger.add(
        target_dir / "regintel.log",
        rotation="500 MB",
        retention="10 days",
        serialize=True,
        enqueue=True,
        level="DEBUG",
    )


configure_logging()

__all__ = ["configure_logging", "logger"]
