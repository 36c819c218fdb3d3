"""Configuration loader for the sync service."""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from folder_sync.logging_setup import parse_severities


class ConfigError(Exception):
    """Raised when config validation fails."""

    pass


class SyncMode(Enum):
    """Which root has priority and whether the other root is watched."""

    ONE_WAY = "OneWay"
    TWO_WAY_SOURCE_FIRST = "TwoWaySourceFirst"
    TWO_WAY_DEST_FIRST = "TwoWayDestFirst"

    @property
    def is_two_way(self) -> bool:
        return self is not SyncMode.ONE_WAY

    @classmethod
    def parse(cls, value: Union[str, "SyncMode"]) -> "SyncMode":
        """Parse a mode from its value ("TwoWaySourceFirst") or member name.

        Raises:
            ConfigError: If the value names no known mode
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip()
            for mode in cls:
                if text == mode.value or text.upper() == mode.name:
                    return mode
        raise ConfigError(
            f"Unknown sync mode: {value!r} (expected one of "
            f"{', '.join(m.value for m in cls)})"
        )


class Config:
    """Configuration object for the sync service."""

    def __init__(self, config_dict: Dict[str, Any]):
        """Initialize config from dictionary."""
        self._config = config_dict
        self._validate()

    def _validate(self) -> None:
        """Validate required configuration fields."""
        required_keys = ["folder1", "folder2"]
        for key in required_keys:
            if key not in self._config:
                raise ConfigError(f"Missing required config key: {key}")

            path = self._config[key]
            if not isinstance(path, str):
                raise ConfigError(f"Config key '{key}' must be a string")
            if not path.strip():
                raise ConfigError(f"Config key '{key}' must not be blank")

        SyncMode.parse(self._config.get("sync_mode", SyncMode.ONE_WAY.value))

        positive = {
            "busy_file.timeout_seconds": self.busy_timeout_seconds,
            "busy_file.retry_interval_seconds": self.busy_retry_interval_seconds,
            "worker.poll_interval_seconds": self.poll_interval_seconds,
            "worker.interrupt_poll_interval_seconds": self.interrupt_poll_interval_seconds,
            "watcher.buffer_size": self.buffer_size,
            "watcher.echo_window_seconds": self.echo_window_seconds,
        }
        for key, value in positive.items():
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"Config key '{key}' must be a positive number")

        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            raise ConfigError("Config key 'retry.max_retries' must be a non-negative integer")

        try:
            parse_severities(self.log_mute)
        except ValueError as e:
            raise ConfigError(f"Invalid logging.mute entry: {e}") from e

    def _section(self, name: str) -> Dict[str, Any]:
        return self._config.get(name) or {}

    @property
    def folder1(self) -> str:
        """Get the first configured folder."""
        return self._config["folder1"]

    @property
    def folder2(self) -> str:
        """Get the second configured folder."""
        return self._config["folder2"]

    @property
    def sync_mode(self) -> SyncMode:
        """Get the sync mode (defaults to OneWay)."""
        return SyncMode.parse(self._config.get("sync_mode", SyncMode.ONE_WAY.value))

    @property
    def max_retries(self) -> int:
        """Get how many times a failing change is retried before it is parked."""
        return self._section("retry").get("max_retries", 3)

    @property
    def busy_timeout_seconds(self) -> float:
        """Get how long to wait for a busy file before giving up."""
        return self._section("busy_file").get("timeout_seconds", 60.0)

    @property
    def busy_retry_interval_seconds(self) -> float:
        """Get the delay between two attempts to open a busy file."""
        return self._section("busy_file").get("retry_interval_seconds", 0.2)

    @property
    def compare_before_copy(self) -> bool:
        """Check if identical files are skipped instead of rewritten."""
        return bool(self._config.get("compare_before_copy", True))

    @property
    def poll_interval_seconds(self) -> float:
        """Get the worker sleep when the queue is empty."""
        return self._section("worker").get("poll_interval_seconds", 0.1)

    @property
    def interrupt_poll_interval_seconds(self) -> float:
        """Get the poll interval while waiting for the worker to acknowledge."""
        return self._section("worker").get("interrupt_poll_interval_seconds", 0.2)

    @property
    def buffer_size(self) -> int:
        """Get the maximum number of pending changes."""
        return self._section("watcher").get("buffer_size", 10000)

    @property
    def echo_window_seconds(self) -> float:
        """Get how long notifications for a path we just wrote count as our own echo."""
        return self._section("watcher").get("echo_window_seconds", 1.0)

    @property
    def ignore_extensions(self) -> List[str]:
        """Get extensions to ignore."""
        items = self._section("ignore").get("extensions", [])
        return [i for i in (items or []) if i]

    @property
    def ignore_filenames_prefix(self) -> List[str]:
        """Get filename prefixes to ignore."""
        items = self._section("ignore").get("filenames_prefix", [])
        return [i for i in (items or []) if i]

    @property
    def ignore_filenames_exact(self) -> List[str]:
        """Get exact filenames to ignore."""
        items = self._section("ignore").get("filenames_exact", [])
        return [i for i in (items or []) if i]

    @property
    def ignore_directories(self) -> List[str]:
        """Get directory names to ignore."""
        items = self._section("ignore").get("directories", [])
        return [i for i in (items or []) if i]

    @property
    def log_file_path(self) -> Optional[str]:
        """Get log file path (None logs to the console only)."""
        return self._section("logging").get("file_path", "folder_sync.log")

    @property
    def log_level(self) -> str:
        """Get log level."""
        return self._section("logging").get("level", "INFO")

    @property
    def log_console(self) -> bool:
        """Check if logs are also written to the console."""
        return self._section("logging").get("console", True)

    @property
    def log_rotation_enabled(self) -> bool:
        """Check if log rotation is enabled."""
        return self._section("logging").get("rotation_enabled", True)

    @property
    def log_max_size_mb(self) -> int:
        """Get log file size before rotation in MB."""
        return self._section("logging").get("max_size_mb", 10)

    @property
    def log_backup_count(self) -> int:
        """Get number of rotated log files to keep."""
        return self._section("logging").get("backup_count", 5)

    @property
    def log_mute(self) -> List[str]:
        """Get the severities muted on every log sink."""
        return list(self._section("logging").get("mute", []) or [])

    def to_dict(self) -> Dict[str, Any]:
        """Return config as dictionary."""
        return self._config.copy()


def load_config(config_path: str) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config.yaml file

    Returns:
        Config object

    Raises:
        ConfigError: If config file doesn't exist or is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f) or {}

    if not isinstance(config_dict, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    return Config(config_dict)


def load_config_from_env(env_var: str = "FOLDER_SYNC_CONFIG") -> Config:
    """Load configuration from environment variable.

    Args:
        env_var: Name of environment variable containing config path

    Returns:
        Config object

    Raises:
        ConfigError: If environment variable not set or config invalid
    """
    config_path = os.getenv(env_var)
    if not config_path:
        raise ConfigError(f"Environment variable {env_var} not set")

    return load_config(config_path)
