"""Folder synchronization service: watchers, change queue and worker."""

import logging
import math
import os
import threading
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from folder_sync.change_queue import Change, ChangeQueue, ChangeType
from folder_sync.config_loader import Config, ConfigError, SyncMode
from folder_sync.file_ops import FileAction, FileOps, OperationCancelledError
from folder_sync.filesystem_utils import is_within, mirror_path, validate_roots
from folder_sync.ignore import IgnoreRules
from folder_sync.logging_setup import get_logger
from folder_sync.watcher import WatchAdapter

# Signature placeholder while a write is still in progress
_WRITING = object()


def _signature(path: str) -> Optional[Tuple[int, int]]:
    """Return (mtime_ns, size) of path, or None if it does not exist."""
    try:
        stat = os.lstat(path)
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size


def _deadline(entry) -> float:
    return entry[0] if isinstance(entry, tuple) else entry


class StartupError(Exception):
    """Raised when the service cannot start."""

    pass


class ServiceState(Enum):
    """Lifecycle state of the service."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class Side(Enum):
    """Which root a path belongs to."""

    INPUT = "input"
    OUTPUT = "output"


class FileSyncService:
    """Keeps an output folder in sync with an input folder.

    The input folder has priority. In two-way modes the output folder is
    watched too, but changes made there are only accepted when they add
    content; anything else is reverted from the input folder.
    """

    def __init__(
        self,
        folder1: Union[str, os.PathLike],
        folder2: Union[str, os.PathLike],
        sync_mode: Union[str, SyncMode] = SyncMode.ONE_WAY,
        *,
        logger: Optional[logging.Logger] = None,
        file_ops: Optional[FileOps] = None,
        ignore_rules: Optional[IgnoreRules] = None,
        max_retries: int = 3,
        poll_interval: float = 0.1,
        interrupt_poll_interval: float = 0.2,
        buffer_size: int = 10000,
        busy_timeout: float = 60.0,
        busy_retry_interval: float = 0.2,
        compare_before_copy: bool = True,
        echo_window: float = 1.0,
        watch_check_interval: float = 1.0,
    ):
        """Initialize the service.

        Args:
            folder1: First folder; the input folder unless mode is TwoWayDestFirst
            folder2: Second folder
            sync_mode: SyncMode or its name ("OneWay", "TwoWaySourceFirst", ...)
            logger: Logger receiving lifecycle, change and error messages
            file_ops: Operation engine to use instead of building one
            ignore_rules: Names never synchronized
            max_retries: Failed attempts tolerated before a change is parked
            poll_interval: Worker sleep when there is nothing to do
            interrupt_poll_interval: Poll interval of pause/stop while waiting
                for the worker to acknowledge
            buffer_size: Maximum number of pending changes
            busy_timeout: Seconds to wait for a locked file
            busy_retry_interval: Seconds between two attempts on a locked file
            compare_before_copy: Skip copies whose destination is identical
            echo_window: Seconds during which notifications for a path the
                service just wrote are treated as its own echo
            watch_check_interval: Seconds between two liveness checks of
                the watchers

        Raises:
            ConfigError: If a folder is blank, the folders overlap or the
                mode is unknown
        """
        self._mode = SyncMode.parse(sync_mode)
        root1, root2 = validate_roots(folder1, folder2)
        if self._mode is SyncMode.TWO_WAY_DEST_FIRST:
            self._input_root, self._output_root = root2, root1
        else:
            self._input_root, self._output_root = root1, root2

        if max_retries < 0:
            raise ConfigError("max_retries must not be negative")

        self._logger = logger or get_logger()
        self._ignore_rules = ignore_rules or IgnoreRules()
        self._cancel = threading.Event()
        if file_ops is None:
            file_ops = FileOps(
                busy_timeout=busy_timeout,
                busy_retry_interval=busy_retry_interval,
                compare_before_copy=compare_before_copy,
                ignore_rules=self._ignore_rules,
                cancel_event=self._cancel,
                logger=self._logger,
            )
        else:
            file_ops.cancel_event = self._cancel
        self._file_ops = file_ops

        self._max_retries = max_retries
        self._poll_interval = poll_interval
        self._interrupt_poll_interval = interrupt_poll_interval
        self._echo_window = echo_window
        self._watch_check_interval = watch_check_interval
        self._next_watch_check = 0.0

        self._queue = ChangeQueue(max_size=buffer_size)
        self._lock = threading.Lock()
        # path -> deadline after which its echoes are no longer expected;
        # file entries also keep the signature the write left behind
        self._ignored_folders: Dict[str, float] = {}
        self._ignored_files: Dict[str, Tuple[float, object]] = {}
        self._dead_letters: List[Change] = []

        self._watchers: Dict[Side, WatchAdapter] = {}
        self._failed_watchers: Set[Side] = set()
        self._worker: Optional[threading.Thread] = None
        self._should_interrupt = threading.Event()
        self._interrupted = threading.Event()
        self._stop_requested = threading.Event()
        self._state = ServiceState.STOPPED
        self._state_lock = threading.RLock()

    @classmethod
    def from_config(
        cls, config: Config, logger: Optional[logging.Logger] = None
    ) -> "FileSyncService":
        """Build a service from a loaded configuration."""
        return cls(
            config.folder1,
            config.folder2,
            config.sync_mode,
            logger=logger,
            ignore_rules=IgnoreRules.from_config(config),
            max_retries=config.max_retries,
            poll_interval=config.poll_interval_seconds,
            interrupt_poll_interval=config.interrupt_poll_interval_seconds,
            buffer_size=config.buffer_size,
            busy_timeout=config.busy_timeout_seconds,
            busy_retry_interval=config.busy_retry_interval_seconds,
            compare_before_copy=config.compare_before_copy,
            echo_window=config.echo_window_seconds,
        )

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def input_root(self) -> Path:
        return self._input_root

    @property
    def output_root(self) -> Path:
        return self._output_root

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def pending_count(self) -> int:
        """Number of changes waiting for the worker."""
        return len(self._queue)

    @property
    def dead_letters(self) -> List[Change]:
        """Changes abandoned after exhausting their retries."""
        with self._lock:
            return list(self._dead_letters)

    # Lifecycle

    def start(self) -> None:
        """Reconcile both folders, then start the worker and the watchers.

        Raises:
            StartupError: If a folder cannot be created, the initial
                reconciliation fails or a watcher cannot be armed
        """
        with self._state_lock:
            if self._state is not ServiceState.STOPPED:
                self._logger.warning(f"Start ignored: service is {self._state.value}")
                return

            self._logger.info("Starting service...")
            try:
                os.makedirs(self._input_root, exist_ok=True)
                os.makedirs(self._output_root, exist_ok=True)
            except OSError as e:
                self._logger.error(f"Unable to create input or output folder: {e}")
                raise StartupError(f"Unable to create input or output folder: {e}") from e

            self._cancel.clear()
            try:
                self.reconcile()
            except Exception as e:
                self._logger.error(f"Unable to sync directories: {e}")
                raise StartupError(f"Unable to sync directories: {e}") from e

            self._queue.clear()
            self._clear_ignore_sets()
            with self._lock:
                self._dead_letters.clear()
            self._should_interrupt.clear()
            self._interrupted.clear()
            self._stop_requested.clear()
            self._failed_watchers.clear()
            self._next_watch_check = time.monotonic() + self._watch_check_interval

            self._worker = threading.Thread(
                target=self._process_events, name="folder-sync-worker", daemon=True
            )
            self._worker.start()

            try:
                self._arm_watchers()
            except Exception as e:
                self._logger.error(f"Unable to watch folders: {e}")
                self._dispose_watchers()
                self._halt_worker()
                raise StartupError(f"Unable to watch folders: {e}") from e

            self._state = ServiceState.RUNNING
            self._logger.info(
                f"Service started ({self._mode.value}): "
                f"{self._input_root} -> {self._output_root}"
            )

    def pause(self) -> None:
        """Stop replaying changes and discard the pending backlog."""
        with self._state_lock:
            if self._state is not ServiceState.RUNNING:
                self._logger.warning(f"Pause ignored: service is {self._state.value}")
                return

            self._interrupt_worker()
            for watcher in self._watchers.values():
                watcher.disable()
            self._queue.clear()
            self._clear_ignore_sets()
            self._state = ServiceState.PAUSED
            self._logger.info("Service paused.")

    def continue_(self) -> None:
        """Resume after pause(); the discarded backlog is not replayed."""
        with self._state_lock:
            if self._state is not ServiceState.PAUSED:
                self._logger.warning(f"Continue ignored: service is {self._state.value}")
                return

            self._cancel.clear()
            self._should_interrupt.clear()
            for watcher in self._watchers.values():
                watcher.enable()
            self._state = ServiceState.RUNNING
            self._logger.info("Service resumed.")

    def stop(self) -> None:
        """Dispose the watchers and stop the worker."""
        with self._state_lock:
            if self._state is ServiceState.STOPPED:
                self._logger.warning("Stop ignored: service is already stopped")
                return

            self._dispose_watchers()
            self._halt_worker()
            self._queue.clear()
            self._clear_ignore_sets()
            self._state = ServiceState.STOPPED
            self._logger.info("Service stopped.")

    def reconcile(self) -> None:
        """One-shot full sync between the two folders.

        OneWay copies input to output and deletes output-only entries.
        Two-way modes copy input to output, then output-only entries back to
        input, and never delete anything.

        Raises:
            FileOpsError: If any file operation fails
        """
        self._logger.info(f"Reconciling {self._input_root} and {self._output_root}")
        written = self._file_ops.copy_tree(str(self._input_root), str(self._output_root))

        if self._mode.is_two_way:
            written += self._file_ops.copy_tree(
                str(self._output_root), str(self._input_root), overwrite=False
            )
            removed = 0
        else:
            removed = self._file_ops.remove_orphans(str(self._input_root), str(self._output_root))

        self._logger.info(f"Reconciliation done: {written} files copied, {removed} orphans removed")

    # Watchers

    def _arm_watchers(self) -> None:
        sides = [Side.INPUT, Side.OUTPUT] if self._mode.is_two_way else [Side.INPUT]
        for side in sides:
            watcher = WatchAdapter(self._root_of(side), self._on_change, logger=self._logger)
            self._watchers[side] = watcher
            watcher.start()

    def _dispose_watchers(self) -> None:
        for watcher in self._watchers.values():
            watcher.dispose()
        self._watchers = {}

    def _on_change(self, change: Change) -> None:
        """Watcher callback: filter then enqueue; never touches the trees."""
        if self._is_ignored(change.full_path):
            return

        side = self._side_of(change.full_path)
        if side is not None and self._ignore_rules:
            root = self._root_of(side)
            if self._ignore_rules.should_ignore(os.path.relpath(change.full_path, root)):
                if change.change_type is not ChangeType.RENAMED or not change.old_full_path:
                    return
                if self._ignore_rules.should_ignore(os.path.relpath(change.old_full_path, root)):
                    return
                # Renamed to an ignored name: the old name is gone as far as we care
                change = Change(
                    change_type=ChangeType.DELETED,
                    full_path=change.old_full_path,
                    name=change.old_name or os.path.basename(change.old_full_path),
                )

        if not self._queue.put(change):
            self._logger.warning(
                f"[WatcherError] Change buffer full ({self._queue.max_size}), "
                f"dropping {change}"
            )

    def _is_ignored(self, path: str) -> bool:
        """Check if a notification is the echo of one of our own writes.

        A file entry only matches while the file still looks the way we left
        it, so a user edit right after our write is not mistaken for an echo.
        """
        now = time.monotonic()
        with self._lock:
            entry = self._ignored_files.get(path)
            if entry is not None and entry[0] < now:
                del self._ignored_files[path]
                entry = None
            if any(
                deadline >= now and is_within(path, folder)
                for folder, deadline in self._ignored_folders.items()
            ):
                return True
        if entry is None:
            return False
        return entry[1] is _WRITING or entry[1] == _signature(path)

    def _clear_ignore_sets(self) -> None:
        with self._lock:
            self._ignored_folders.clear()
            self._ignored_files.clear()

    def _purge_expired(self, now: float) -> None:
        for table in (self._ignored_files, self._ignored_folders):
            for path in [p for p, entry in table.items() if _deadline(entry) < now]:
                del table[path]

    @contextmanager
    def _suppress_echo(
        self,
        side: Side,
        files: Iterable[str] = (),
        folders: Iterable[str] = (),
    ) -> Iterator[None]:
        """Hide the notifications our own write on one root would raise.

        Single-file writes also mute that root's watcher for the duration.
        Tree writes keep it live and only ignore the folders being written.
        Watchdog delivers after the fact, so the entries outlive the write
        by echo_window instead of being dropped when it returns.
        """
        files = list(files)
        folders = list(folders)
        watcher = self._watchers.get(side)
        mute_watcher = watcher is not None and not folders

        with self._lock:
            self._purge_expired(time.monotonic())
            for path in files:
                self._ignored_files[path] = (math.inf, _WRITING)
            for folder in folders:
                self._ignored_folders[folder] = math.inf
        if mute_watcher:
            watcher.disable()
        try:
            yield
        finally:
            signatures = {path: _signature(path) for path in files}
            deadline = time.monotonic() + self._echo_window
            with self._lock:
                for path in files:
                    self._ignored_files[path] = (deadline, signatures[path])
                for folder in folders:
                    self._ignored_folders[folder] = deadline
            if mute_watcher and self._state is not ServiceState.PAUSED:
                watcher.enable()

    def _check_watchers(self) -> None:
        """Log and re-arm watchers whose notification source died."""
        now = time.monotonic()
        if now < self._next_watch_check:
            return
        self._next_watch_check = now + self._watch_check_interval

        # Lifecycle calls hold the lock while waiting on this thread
        if not self._state_lock.acquire(blocking=False):
            return
        try:
            if self._state is not ServiceState.RUNNING:
                return
            for side, watcher in self._watchers.items():
                if watcher.is_running:
                    self._failed_watchers.discard(side)
                    continue
                if side not in self._failed_watchers:
                    self._failed_watchers.add(side)
                    self._logger.error(
                        f"[WatcherError] {watcher.root}: watcher stopped, re-arming"
                    )
                try:
                    watcher.restart()
                except OSError as e:
                    self._logger.debug(f"Unable to re-arm watcher on {watcher.root}: {e}")
                    continue
                self._failed_watchers.discard(side)
                self._logger.info(f"Watcher re-armed on {watcher.root}")
        finally:
            self._state_lock.release()

    # Worker

    def _interrupt_worker(self) -> None:
        self._interrupted.clear()
        self._should_interrupt.set()
        self._cancel.set()
        worker = self._worker
        while worker is not None and worker.is_alive():
            if self._interrupted.wait(self._interrupt_poll_interval):
                break

    def _halt_worker(self) -> None:
        self._stop_requested.set()
        self._interrupt_worker()
        if self._worker is not None:
            self._worker.join(timeout=max(5.0, self._interrupt_poll_interval * 10))
            self._worker = None

    def _process_events(self) -> None:
        while not self._stop_requested.is_set():
            if self._should_interrupt.is_set():
                self._interrupted.set()
                time.sleep(self._interrupt_poll_interval)
                continue

            self._interrupted.clear()
            self._check_watchers()
            change = self._queue.pop()
            if change is None:
                time.sleep(self._poll_interval)
                continue
            self._handle_change(change)

        self._interrupted.set()

    def _handle_change(self, change: Change) -> None:
        """Coalesce the backlog, apply one change and schedule a retry on failure."""
        removed = self._queue.coalesce(change, is_directory=os.path.isdir(change.full_path))
        if removed:
            self._logger.debug(f"Dropped {removed} redundant changes after {change}")

        try:
            self.process_change(change)
        except OperationCancelledError as e:
            self._logger.warning(f"Processing of {change} interrupted: {e}")
        except Exception as e:
            self._logger.error(
                f"Error while processing {change.full_path} ({change.change_type.value}): {e}"
            )
            change.retry_count += 1
            if change.retry_count > self._max_retries:
                with self._lock:
                    self._dead_letters.append(change)
                self._logger.error(
                    f"Giving up on {change} after {change.retry_count} attempts"
                )
            else:
                self._queue.requeue(change)

    # Dispatch

    def _root_of(self, side: Side) -> Path:
        return self._input_root if side is Side.INPUT else self._output_root

    def _side_of(self, path: str) -> Optional[Side]:
        if is_within(path, self._input_root):
            return Side.INPUT
        if is_within(path, self._output_root):
            return Side.OUTPUT
        return None

    def _to_output(self, path: str) -> str:
        return mirror_path(path, self._input_root, self._output_root)

    def _to_input(self, path: str) -> str:
        return mirror_path(path, self._output_root, self._input_root)

    def process_change(self, change: Change) -> None:
        """Replay one change onto the other folder.

        Raises:
            ValueError: If the change lies outside both folders
            FileOpsError: If a file operation fails
        """
        side = self._side_of(change.full_path)
        if side is None:
            raise ValueError(f"Path is outside the synchronized folders: {change.full_path}")
        if side is Side.OUTPUT and not self._mode.is_two_way:
            self._logger.debug(f"Ignoring output change in one-way mode: {change}")
            return
        if Path(change.full_path) == self._root_of(side):
            self._logger.warning(f"Ignoring change of a synchronized root itself: {change}")
            return

        handlers = {
            ChangeType.CREATED: self._on_created,
            ChangeType.MODIFIED: self._on_modified,
            ChangeType.RENAMED: self._on_renamed,
            ChangeType.DELETED: self._on_deleted,
        }
        handlers[change.change_type](change, side)

    def _copy_entry(
        self, source: str, destination: str, target_side: Side, overwrite: bool = True
    ) -> None:
        if os.path.isdir(source):
            with self._suppress_echo(target_side, folders=[destination]):
                self._file_ops.copy_tree(source, destination, overwrite=overwrite)
        else:
            with self._suppress_echo(target_side, files=[destination]):
                self._file_ops.apply_file_action(source, destination, FileAction.COPY)

    def _on_created(self, change: Change, side: Side) -> None:
        source = change.full_path
        if side is Side.INPUT:
            destination, target = self._to_output(source), Side.OUTPUT
        else:
            destination, target = self._to_input(source), Side.INPUT

        if os.path.isdir(source):
            self._logger.info(f"Processing directory {source} (created)")
        elif os.path.isfile(source):
            self._logger.info(f"Processing file {source} (created)")
        else:
            self._logger.debug(f"Skipping {source} (created): no longer exists")
            return

        if side is Side.OUTPUT and os.path.lexists(destination):
            self._restore_from_input(destination, source)
            return
        self._copy_entry(source, destination, target)

    def _restore_from_input(self, input_path: str, output_path: str) -> None:
        """Handle an output entry that already exists on input: input wins.

        Files are recovered from input. Directories are recovered from input
        and only entries missing on input are copied back.
        """
        if os.path.isdir(input_path) and os.path.isdir(output_path):
            self._copy_entry(input_path, output_path, Side.OUTPUT)
            self._copy_entry(output_path, input_path, Side.INPUT, overwrite=False)
        elif os.path.isfile(input_path) and os.path.isfile(output_path):
            self._copy_entry(input_path, output_path, Side.OUTPUT)
        else:
            self._logger.warning(
                f"Not syncing {output_path}: {input_path} exists as a different kind of entry"
            )

    def _on_modified(self, change: Change, side: Side) -> None:
        if side is Side.INPUT:
            source, destination = change.full_path, self._to_output(change.full_path)
        else:
            source, destination = self._to_input(change.full_path), change.full_path

        if not os.path.isfile(source):
            return
        if side is Side.INPUT:
            self._logger.info(f"Processing file {source} (changed)")
        else:
            self._logger.info(f"Processing file {destination} (changed), recovering from {source}")
        with self._suppress_echo(Side.OUTPUT, files=[destination]):
            self._file_ops.apply_file_action(source, destination, FileAction.COPY)

    def _on_renamed(self, change: Change, side: Side) -> None:
        old_full_path = change.old_full_path or change.full_path

        if side is Side.INPUT:
            source = self._to_output(old_full_path)
            destination = self._to_output(change.full_path)
        else:
            # Only revert renames the input does not explain
            if not os.path.exists(self._to_input(old_full_path)) or os.path.exists(
                self._to_input(change.full_path)
            ):
                self._logger.debug(f"Not reverting {change}: input already matches")
                return
            source, destination = change.full_path, old_full_path

        if os.path.isdir(source) or os.path.isfile(source):
            kind = "directory" if os.path.isdir(source) else "file"
            if side is Side.INPUT:
                self._logger.info(
                    f"Processing {kind} {old_full_path} (renamed), renaming {destination}"
                )
            else:
                self._logger.info(f"Processing {kind} {source} (renamed), reverting")

            if kind == "directory":
                with self._suppress_echo(Side.OUTPUT, folders=[source, destination]):
                    self._file_ops.move_tree(source, destination)
            else:
                with self._suppress_echo(Side.OUTPUT, files=[source, destination]):
                    self._file_ops.apply_file_action(source, destination, FileAction.MOVE)

        elif side is Side.INPUT and os.path.exists(change.full_path):
            self._logger.info(
                f"Processing {change.full_path} (renamed), {source} missing, copying instead"
            )
            self._copy_entry(change.full_path, destination, Side.OUTPUT)

    def _on_deleted(self, change: Change, side: Side) -> None:
        if side is Side.INPUT:
            target = self._to_output(change.full_path)
            if os.path.isdir(target):
                self._logger.info(
                    f"Processing directory {change.full_path} (deleted), deleting {target}"
                )
                with self._suppress_echo(Side.OUTPUT, folders=[target]):
                    self._file_ops.delete_tree(target)
            elif os.path.lexists(target):
                self._logger.info(
                    f"Processing file {change.full_path} (deleted), deleting {target}"
                )
                with self._suppress_echo(Side.OUTPUT, files=[target]):
                    self._file_ops.apply_file_action(target, None, FileAction.DELETE)
            return

        # Deletions on the output side are not authoritative: resurrect from input
        source = self._to_input(change.full_path)
        if not os.path.exists(source):
            return
        kind = "directory" if os.path.isdir(source) else "file"
        self._logger.info(
            f"Processing {kind} {change.full_path} (deleted), recovering from {source}"
        )
        self._copy_entry(source, change.full_path, Side.OUTPUT)
