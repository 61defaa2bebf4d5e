"""Utility functions for the self-update engine."""
import logging
import logging.handlers
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse


LOGGER_NAME = 'selfupdate_engine'
TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'


class LocatorKind(str, Enum):
    """How an update locator is resolved."""
    REMOTE = "remote"
    LOCAL = "local"
    INVALID = "invalid"


def timestamp(moment: Optional[datetime] = None) -> str:
    """Format a moment as yyyymmddHHMMSS (local time)."""
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


def is_remote_url(locator: str) -> bool:
    """Return True if locator is an absolute, well-formed http(s) URL."""
    try:
        parsed = urlparse(locator.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in ('http', 'https') and bool(parsed.netloc)


def classify_locator(locator: Optional[str], allow_directory: bool = True) -> LocatorKind:
    """Classify an update locator.

    Args:
        locator: URL or filesystem path
        allow_directory: Whether an existing directory counts as a local source

    Returns:
        REMOTE for http(s) URLs, LOCAL for existing paths, INVALID otherwise
    """
    if not locator or not locator.strip():
        return LocatorKind.INVALID

    if is_remote_url(locator):
        return LocatorKind.REMOTE

    path = Path(locator)
    if path.is_file() or (allow_directory and path.is_dir()):
        return LocatorKind.LOCAL

    return LocatorKind.INVALID


def resolve_path(path: Union[str, Path], base_dir: Path) -> Path:
    """Resolve a possibly relative path against base_dir into absolute form."""
    path = Path(path).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return Path(os.path.abspath(path))


def folder_has_content(folder: Path) -> bool:
    """Check whether a folder exists and contains at least one entry."""
    if not folder.is_dir():
        return False
    return any(folder.iterdir())


def ensure_directories(*directories: Path) -> None:
    """Create directories that don't exist yet."""
    logger = logging.getLogger(LOGGER_NAME)
    for directory in directories:
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Directory created: {directory}")


def setup_logging(log_file: Optional[Path] = None, level: int = logging.INFO,
                  max_bytes: int = 1024 * 1024, backup_count: int = 7) -> logging.Logger:
    """Setup logging configuration.

    Args:
        log_file: Optional path to log file
        level: Logging level
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated log files to keep

    Returns:
        Configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Format with timestamp
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Rotating file handler if specified
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
