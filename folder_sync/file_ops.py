"""File operations layer: single-file actions and recursive tree walks."""

import logging
import os
import shutil
import sys
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Optional

from folder_sync.ignore import IgnoreRules
from folder_sync.logging_setup import get_logger

CHUNK_SIZE = 1024 * 1024


class FileOpsError(Exception):
    """Raised when file operation fails."""

    pass


class BusyTimeoutError(FileOpsError):
    """Raised when a file stays locked by another process for too long."""

    pass


class OperationCancelledError(FileOpsError):
    """Raised when a busy-file wait is interrupted by pause or stop."""

    pass


class FileAction(Enum):
    """Primitive applied to one file."""

    COPY = "COPY"
    DELETE = "DELETE"
    MOVE = "MOVE"


def _try_exclusive_access(path: str) -> bool:
    """Try to get exclusive access to a file without blocking.

    Returns:
        True if the file could be opened exclusively, False if it is busy

    Raises:
        OSError: For any failure other than the file being held elsewhere
    """
    if sys.platform == "win32":
        # Windows refuses the open itself with a sharing violation
        try:
            with open(path, "rb"):
                return True
        except PermissionError:
            return False

    import fcntl

    with open(path, "rb") as handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    return True


class FileOps:
    """Handles copy, move and delete of files and directory trees."""

    def __init__(
        self,
        busy_timeout: float = 60.0,
        busy_retry_interval: float = 0.2,
        compare_before_copy: bool = True,
        ignore_rules: Optional[IgnoreRules] = None,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize file operations handler.

        Args:
            busy_timeout: Seconds to wait for a locked file before failing
            busy_retry_interval: Seconds between two attempts on a locked file
            compare_before_copy: Skip copies whose destination is already identical
            ignore_rules: Names excluded from copy_tree and remove_orphans
            cancel_event: When set, pending busy-file waits are abandoned
            logger: Logger to report to (defaults to the package logger)
        """
        self.busy_timeout = busy_timeout
        self.busy_retry_interval = busy_retry_interval
        self.compare_before_copy = compare_before_copy
        self.ignore_rules = ignore_rules or IgnoreRules()
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger or get_logger()

    def wait_if_busy(self, source: Optional[str], destination: Optional[str] = None) -> None:
        """Block until every existing file among source and destination is free.

        Args:
            source: First file to check (skipped when None or missing)
            destination: Second file to check (skipped when None or missing)

        Raises:
            BusyTimeoutError: If a file is still locked after busy_timeout
            OperationCancelledError: If cancel_event is set while waiting
            FileOpsError: If a file cannot be opened for another reason
        """
        pending = [p for p in (source, destination) if p and os.path.isfile(p)]
        deadline = time.monotonic() + self.busy_timeout

        while pending:
            still_busy = []
            for path in pending:
                try:
                    if not _try_exclusive_access(path):
                        still_busy.append(path)
                except FileNotFoundError:
                    # Vanished while waiting: nothing left to protect
                    continue
                except OSError as e:
                    raise FileOpsError(f"Cannot open {path}: {e}") from e

            pending = still_busy
            if not pending:
                return

            if time.monotonic() >= deadline:
                raise BusyTimeoutError(
                    f"Timed out after {self.busy_timeout}s waiting for {', '.join(pending)}"
                )

            self.logger.debug(f"Unable to open {', '.join(pending)}, retrying ...")
            if self.cancel_event.wait(self.busy_retry_interval):
                raise OperationCancelledError(
                    f"Interrupted while waiting for {', '.join(pending)}"
                )

    def files_identical(self, file1: str, file2: str) -> bool:
        """Check if two files are identical byte for byte.

        Returns:
            False if either file is missing, lengths differ or any byte differs
        """
        try:
            if not os.path.isfile(file1) or not os.path.isfile(file2):
                return False
            if os.path.getsize(file1) != os.path.getsize(file2):
                return False

            with open(file1, "rb") as f1, open(file2, "rb") as f2:
                while True:
                    chunk1 = f1.read(CHUNK_SIZE)
                    chunk2 = f2.read(CHUNK_SIZE)
                    if chunk1 != chunk2:
                        return False
                    if not chunk1:
                        return True
        except OSError as e:
            raise FileOpsError(f"Error while comparing {file1} and {file2}: {e}") from e

    def apply_file_action(
        self, source: str, destination: Optional[str], action: FileAction
    ) -> bool:
        """Apply one action to one file.

        Args:
            source: File to copy, move or delete
            destination: Target path (ignored for DELETE)
            action: FileAction to perform

        Returns:
            True if the filesystem was changed, False if the copy was skipped
            because the destination is already identical

        Raises:
            FileOpsError: If the operation fails
        """
        if action is not FileAction.DELETE and not destination:
            raise ValueError(f"{action.value} needs a destination")

        self.wait_if_busy(source, None if action is FileAction.DELETE else destination)

        try:
            if action is FileAction.COPY:
                if os.path.isdir(destination):
                    raise FileOpsError(f"Destination is a directory: {destination}")
                if self.compare_before_copy and self.files_identical(source, destination):
                    self.logger.debug(f"Skipped copy; files are identical: {source}")
                    return False
                Path(destination).parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
                self.logger.info(f"Copied file: {source} -> {destination}")

            elif action is FileAction.DELETE:
                Path(source).unlink()
                self.logger.info(f"Deleted file: {source}")

            elif action is FileAction.MOVE:
                Path(destination).parent.mkdir(parents=True, exist_ok=True)
                Path(source).replace(destination)
                self.logger.info(f"Moved file: {source} -> {destination}")

            return True
        except (OSError, shutil.Error) as e:
            self.logger.error(f"Failed to {action.value.lower()} file {source}: {e}")
            raise FileOpsError(f"{action.value.capitalize()} failed for {source}: {e}") from e

    def ensure_directory(self, path: str) -> None:
        """Ensure directory exists.

        Raises:
            FileOpsError: If creation fails
        """
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Failed to create directory {path}: {e}")
            raise FileOpsError(f"Directory creation failed: {e}") from e

    def _remove_directory(self, path: str) -> None:
        try:
            os.rmdir(path)
        except OSError as e:
            self.logger.error(f"Failed to remove directory {path}: {e}")
            raise FileOpsError(f"Directory removal failed for {path}: {e}") from e

    def _list_entries(self, path: str):
        try:
            with os.scandir(path) as it:
                return sorted(it, key=lambda entry: entry.name)
        except OSError as e:
            raise FileOpsError(f"Cannot list directory {path}: {e}") from e

    def copy_tree(
        self,
        source: str,
        destination: str,
        _root: Optional[str] = None,
        overwrite: bool = True,
    ) -> int:
        """Copy a directory tree, creating each directory before descending.

        Identical files are left alone, so running it twice writes nothing
        the second time. With overwrite=False, files that already exist in
        destination are never replaced.

        Returns:
            Number of files written
        """
        root = _root or source
        self.ensure_directory(destination)
        written = 0

        for entry in self._list_entries(source):
            if self.ignore_rules and self.ignore_rules.should_ignore(
                os.path.relpath(entry.path, root)
            ):
                self.logger.debug(f"Ignoring {entry.path}")
                continue

            target = os.path.join(destination, entry.name)
            if entry.is_dir(follow_symlinks=False):
                written += self.copy_tree(entry.path, target, root, overwrite)
            elif entry.is_file():
                if not overwrite and os.path.lexists(target):
                    continue
                if self.apply_file_action(entry.path, target, FileAction.COPY):
                    written += 1
            else:
                self.logger.debug(f"Skipping special entry {entry.path}")

        return written

    def move_tree(self, source: str, destination: str) -> int:
        """Move a directory tree, removing each source directory once emptied.

        Returns:
            Number of files moved
        """
        self.ensure_directory(destination)
        moved = 0

        for entry in self._list_entries(source):
            target = os.path.join(destination, entry.name)
            if entry.is_dir(follow_symlinks=False):
                moved += self.move_tree(entry.path, target)
            else:
                self.apply_file_action(entry.path, target, FileAction.MOVE)
                moved += 1

        self._remove_directory(source)
        self.logger.info(f"Moved directory: {source} -> {destination}")
        return moved

    def delete_tree(self, path: str) -> int:
        """Delete a directory tree, children first.

        Returns:
            Number of files deleted
        """
        deleted = 0

        for entry in self._list_entries(path):
            if entry.is_dir(follow_symlinks=False):
                deleted += self.delete_tree(entry.path)
            else:
                self.apply_file_action(entry.path, None, FileAction.DELETE)
                deleted += 1

        self._remove_directory(path)
        self.logger.info(f"Deleted directory: {path}")
        return deleted

    def remove_orphans(self, source: str, destination: str, _root: Optional[str] = None) -> int:
        """Delete entries of destination that have no counterpart in source.

        A counterpart must be of the same kind: a destination file facing a
        source directory of the same name is an orphan, and vice versa.

        Returns:
            Number of orphan files and directories removed
        """
        root = _root or destination
        removed = 0

        for entry in self._list_entries(destination):
            if self.ignore_rules and self.ignore_rules.should_ignore(
                os.path.relpath(entry.path, root)
            ):
                continue

            counterpart = os.path.join(source, entry.name)
            if entry.is_dir(follow_symlinks=False):
                if os.path.isdir(counterpart):
                    removed += self.remove_orphans(counterpart, entry.path, root)
                else:
                    self.delete_tree(entry.path)
                    removed += 1
            elif not os.path.isfile(counterpart):
                self.apply_file_action(entry.path, None, FileAction.DELETE)
                removed += 1

        return removed
