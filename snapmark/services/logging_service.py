"""
Logging service for SnapMark.

This module provides centralized logging configuration with console and file output.
Log files are stored in ~/.local/share/snapmark/logs/ by default.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional


# Default log directory following XDG Base Directory Specification
DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "snapmark" / "logs"

# Environment override for the log level, e.g. SNAPMARK_LOG_LEVEL=DEBUG
LOG_LEVEL_ENV = "SNAPMARK_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Module-level flag to track if logging has been set up
_logging_initialized = False


def _resolve_level(log_level: int) -> int:
    """Apply the environment override to the requested level, if one is set."""
    override = os.environ.get(LOG_LEVEL_ENV)
    if not override:
        return log_level

    level = logging.getLevelName(override.strip().upper())
    if isinstance(level, int):
        return level
    return log_level


def setup_logging(
    log_level: int = logging.INFO,
    log_to_file: bool = True,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure the logging system for SnapMark.

    Args:
        log_level: The logging level (e.g., logging.DEBUG, logging.INFO).
        log_to_file: Whether to also log to a file.
        log_dir: Directory for log files. Defaults to ~/.local/share/snapmark/logs/

    This function should be called once at application startup. Library use
    of the engine never calls it; hosts decide how records are emitted.
    """
    global _logging_initialized

    if _logging_initialized:
        return

    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    log_level = _resolve_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # Console handler - always enabled
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_to_file:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)

            log_filename = f"snapmark_{datetime.now().strftime('%Y%m%d')}.log"
            log_path = log_dir / log_filename

            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            root_logger.addHandler(file_handler)

        except (OSError, PermissionError) as e:
            # If we can't create the log file, just log to console
            console_handler.setLevel(logging.WARNING)
            root_logger.warning(f"Could not create log file: {e}. Logging to console only.")

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: The name for the logger, typically __name__ of the calling module.

    Returns:
        A configured Logger instance.

    Usage:
        from snapmark.services.logging_service import get_logger
        logger = get_logger(__name__)
        logger.info("Crop applied")
    """
    return logging.getLogger(name)
