"""Pending change records and the lock-protected queue that holds them."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from folder_sync.filesystem_utils import is_within


class ChangeType(Enum):
    """Kind of filesystem change reported by a watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass
class Change:
    """A single filesystem change waiting to be replayed on the other root."""

    change_type: ChangeType
    full_path: str
    name: str
    old_full_path: Optional[str] = None
    old_name: Optional[str] = None
    retry_count: int = 0

    def __str__(self) -> str:
        if self.change_type is ChangeType.RENAMED:
            return f"{self.old_full_path} -> {self.full_path} ({self.change_type.value})"
        return f"{self.full_path} ({self.change_type.value})"


class ChangeQueue:
    """FIFO of pending changes shared by the watcher threads and the worker.

    Every mutation happens under one lock. Critical sections only touch the
    list, never the filesystem.
    """

    def __init__(self, max_size: int = 10000):
        """Initialize the queue.

        Args:
            max_size: Maximum number of changes accepted through put()
        """
        self.max_size = max_size
        self._changes: List[Change] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._changes)

    def put(self, change: Change) -> bool:
        """Append a new change.

        Returns:
            False if the queue is full and the change was dropped
        """
        with self._lock:
            if len(self._changes) >= self.max_size:
                return False
            self._changes.append(change)
            return True

    def requeue(self, change: Change) -> None:
        """Append a change that failed, regardless of the size bound."""
        with self._lock:
            self._changes.append(change)

    def pop(self) -> Optional[Change]:
        """Remove and return the oldest change, or None if empty."""
        with self._lock:
            if not self._changes:
                return None
            return self._changes.pop(0)

    def clear(self) -> None:
        with self._lock:
            self._changes.clear()

    def snapshot(self) -> List[Change]:
        """Return a copy of the pending changes, oldest first."""
        with self._lock:
            return list(self._changes)

    def coalesce(self, change: Change, is_directory: bool = False) -> int:
        """Drop queued changes made redundant by the change about to run.

        - A modification collapses repeated modifications: only the first
          queued MODIFIED per (path, name) is kept.
        - Creating a directory makes queued creations and modifications
          below it redundant, since the whole tree is copied.
        - Creating a file makes queued modifications of that file redundant.

        Surviving entries keep their FIFO order; the queue is never re-sorted
        by path, so changes still replay in the order they happened.

        Args:
            change: The change just dequeued
            is_directory: Whether change.full_path is currently a directory

        Returns:
            Number of queued changes removed
        """
        with self._lock:
            before = len(self._changes)

            if change.change_type is ChangeType.MODIFIED:
                seen = set()
                kept = []
                for queued in self._changes:
                    if queued.change_type is ChangeType.MODIFIED:
                        key = (queued.full_path, queued.name)
                        if key in seen:
                            continue
                        seen.add(key)
                    kept.append(queued)
                self._changes = kept

            elif change.change_type is ChangeType.CREATED and is_directory:
                self._changes = [
                    queued
                    for queued in self._changes
                    if not (
                        queued.change_type in (ChangeType.CREATED, ChangeType.MODIFIED)
                        and queued.full_path != change.full_path
                        and is_within(queued.full_path, change.full_path)
                    )
                ]

            elif change.change_type is ChangeType.CREATED:
                self._changes = [
                    queued
                    for queued in self._changes
                    if not (
                        queued.change_type is ChangeType.MODIFIED
                        and queued.full_path == change.full_path
                    )
                ]

            return before - len(self._changes)
