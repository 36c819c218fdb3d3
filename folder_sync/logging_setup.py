"""Logging setup for the sync service."""

import getpass
import logging
import logging.handlers
from pathlib import Path
from typing import Iterable, Optional

LOGGER_NAME = "folder_sync"

SEVERITY_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SeverityFilter(logging.Filter):
    """Drops records of individually muted severities.

    Unlike a level threshold, each severity can be muted on its own, so a
    sink can keep errors and informations while silencing warnings.
    """

    def __init__(self, muted_levels: Optional[Iterable[int]] = None):
        """Initialize the filter.

        Args:
            muted_levels: Logging levels (e.g. logging.WARNING) to suppress
        """
        super().__init__()
        self.muted_levels = set(muted_levels or [])

    def mute(self, level: int) -> None:
        """Stop emitting records of the given level."""
        self.muted_levels.add(level)

    def unmute(self, level: int) -> None:
        """Resume emitting records of the given level."""
        self.muted_levels.discard(level)

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno not in self.muted_levels


def parse_severities(names: Iterable[str]) -> set:
    """Convert severity names ("info", "warning", "error") to logging levels.

    Raises:
        ValueError: If a name is not a known severity
    """
    levels = set()
    for name in names:
        key = str(name).strip().lower()
        if key not in SEVERITY_LEVELS:
            raise ValueError(f"Unknown log severity: {name}")
        levels.add(SEVERITY_LEVELS[key])
    return levels


def setup_logging(
    log_file: Optional[str],
    log_level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    rotation_enabled: bool = True,
    console: bool = True,
    muted_levels: Optional[Iterable[int]] = None,
) -> logging.Logger:
    """Set up logging with file and console handlers.

    Args:
        log_file: Path to log file, or None to log to the console only
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        max_bytes: Max size of log file before rotation (in bytes)
        backup_count: Number of backup files to keep
        rotation_enabled: Whether to enable log rotation
        console: Whether to also log to stderr
        muted_levels: Levels to suppress on every handler

    Returns:
        Configured logger instance
    """
    level = getattr(logging, log_level.upper())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    try:
        username = getpass.getuser()
    except Exception:
        username = "unknown"

    formatter = logging.Formatter(
        f"%(asctime)s - %(name)s - %(levelname)s - [{username}] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    severity_filter = SeverityFilter(muted_levels)

    handlers = []
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if rotation_enabled:
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    log_file,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    if console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(severity_filter)
        logger.addHandler(handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the configured sync logger."""
    return logging.getLogger(LOGGER_NAME)
