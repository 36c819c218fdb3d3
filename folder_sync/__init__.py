"""Folder synchronization service modules."""

from folder_sync.change_queue import Change, ChangeQueue, ChangeType
from folder_sync.config_loader import Config, ConfigError, SyncMode, load_config
from folder_sync.file_ops import (
    BusyTimeoutError,
    FileAction,
    FileOps,
    FileOpsError,
    OperationCancelledError,
)
from folder_sync.logging_setup import get_logger, setup_logging
from folder_sync.sync_service import FileSyncService, ServiceState, StartupError

__all__ = [
    "BusyTimeoutError",
    "Change",
    "ChangeQueue",
    "ChangeType",
    "Config",
    "ConfigError",
    "FileAction",
    "FileOps",
    "FileOpsError",
    "FileSyncService",
    "OperationCancelledError",
    "ServiceState",
    "StartupError",
    "SyncMode",
    "get_logger",
    "load_config",
    "setup_logging",
]
