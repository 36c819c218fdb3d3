"""Filesystem notification source bound to one synchronized root.

Wraps a watchdog Observer scheduled recursively on the root and turns its
events into Change records handed to a callback. Delivery can be switched
off and on without tearing down the subscription. The switch is checked
when watchdog dispatches an event, which can be well after the write that
caused it.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional, Union

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from folder_sync.change_queue import Change, ChangeType
from folder_sync.logging_setup import get_logger

ChangeCallback = Callable[[Change], None]


def _as_str(path: Union[str, bytes]) -> str:
    if isinstance(path, bytes):
        return os.fsdecode(path)
    return path


class ChangeEventHandler(FileSystemEventHandler):
    """Converts watchdog events into Change records."""

    def __init__(
        self,
        root: Path,
        callback: ChangeCallback,
        logger: logging.Logger,
    ) -> None:
        super().__init__()
        self._root = root
        self._callback = callback
        self._logger = logger
        self._enabled = threading.Event()
        self._enabled.set()

    @property
    def enabled(self) -> bool:
        return self._enabled.is_set()

    def set_enabled(self, value: bool) -> None:
        if value:
            self._enabled.set()
        else:
            self._enabled.clear()

    def _relative_name(self, path: str) -> str:
        try:
            return str(Path(path).relative_to(self._root))
        except ValueError:
            return os.path.basename(path)

    def _to_change(self, event: FileSystemEvent) -> Optional[Change]:
        src_path = _as_str(event.src_path)

        if isinstance(event, (FileCreatedEvent, DirCreatedEvent)):
            change_type = ChangeType.CREATED
        elif isinstance(event, FileModifiedEvent):
            change_type = ChangeType.MODIFIED
        elif isinstance(event, (FileDeletedEvent, DirDeletedEvent)):
            change_type = ChangeType.DELETED
        elif isinstance(event, (FileMovedEvent, DirMovedEvent)):
            dest_path = _as_str(event.dest_path)
            return Change(
                change_type=ChangeType.RENAMED,
                full_path=dest_path,
                name=self._relative_name(dest_path),
                old_full_path=src_path,
                old_name=self._relative_name(src_path),
            )
        else:
            # Directory modifications, opened and closed events carry no content change
            return None

        return Change(
            change_type=change_type,
            full_path=src_path,
            name=self._relative_name(src_path),
        )

    def _deliver(self, event: FileSystemEvent) -> None:
        if not self._enabled.is_set():
            return
        try:
            change = self._to_change(event)
            if change is not None:
                self._callback(change)
        except Exception as e:
            self._logger.error(f"[WatcherError] {self._root}: {e}")

    def on_created(self, event: FileSystemEvent) -> None:
        self._deliver(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._deliver(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._deliver(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._deliver(event)


class WatchAdapter:
    """Watches one root directory, including subdirectories."""

    def __init__(
        self,
        root: Union[str, Path],
        callback: ChangeCallback,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            root: Directory to watch; must exist when start() is called
            callback: Receives each Change, on the observer thread
            logger: Logger for notification source errors
        """
        self._root = Path(root)
        self._logger = logger or get_logger()
        self._handler = ChangeEventHandler(self._root, callback, self._logger)
        self._observer = None
        self._disposed = False

    @property
    def root(self) -> Path:
        return self._root

    @property
    def is_enabled(self) -> bool:
        return self._handler.enabled

    @property
    def is_running(self) -> bool:
        """Whether the observer and every emitter thread are still alive.

        Emitters stop on their own when the watched root disappears or the
        platform source fails, while the observer thread keeps running.
        """
        observer = self._observer
        if observer is None or not observer.is_alive():
            return False
        return all(emitter.is_alive() for emitter in observer.emitters)

    def start(self) -> None:
        """Arm the subscription and start delivering notifications.

        Raises:
            OSError: If the platform notification source cannot be set up
        """
        if self._observer is not None:
            return
        if not self._root.is_dir():
            raise FileNotFoundError(f"Watched directory does not exist: {self._root}")

        observer = Observer()
        observer.schedule(self._handler, str(self._root), recursive=True)
        observer.start()
        self._observer = observer
        self._handler.set_enabled(True)
        self._logger.debug(f"Watching {self._root}")

    def enable(self) -> None:
        """Resume delivery."""
        if not self._disposed:
            self._handler.set_enabled(True)

    def disable(self) -> None:
        """Suspend delivery; notifications raised meanwhile are discarded."""
        self._handler.set_enabled(False)

    def restart(self, timeout: float = 5.0) -> None:
        """Tear down a failed subscription and arm a fresh one.

        Raises:
            OSError: If the root is gone or the source cannot be set up
        """
        if self._disposed:
            return
        self._shutdown_observer(timeout)
        self.start()

    def dispose(self, timeout: float = 5.0) -> None:
        """Tear down the subscription."""
        self._disposed = True
        self._handler.set_enabled(False)
        if self._shutdown_observer(timeout):
            self._logger.debug(f"Stopped watching {self._root}")

    def _shutdown_observer(self, timeout: float) -> bool:
        observer, self._observer = self._observer, None
        if observer is None:
            return False
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=timeout)
        return True
