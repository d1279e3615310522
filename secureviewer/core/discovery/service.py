"""
Discovery Service
=================

Single owner of the ArchiveIndex. Every read-modify-write of the index
happens on one worker thread that drains a command queue; scan requests,
incremental ticks and watch notifications are all messages.

While an incremental scan runs, the worker processes one directory every
``tick_interval_ms``, between commands if the queue is busy.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Optional

from secureviewer.core.discovery.archive_index import ArchiveIndex, normalize_path
from secureviewer.core.discovery.scanner import IncrementalScanner, ScanProgress, ScanState
from secureviewer.core.discovery.watcher import IndexWatcher


DEFAULT_TICK_INTERVAL_MS: Final[int] = 100
_STOP: Final[str] = "stop"

logger = logging.getLogger(__name__)


@dataclass
class _Command:
    name: str
    args: tuple[Any, ...] = ()
    future: Optional[Future] = field(default=None, repr=False)


class DiscoveryService:
    """
    Message-driven archive discovery.

    Usage:
        service = DiscoveryService(index)
        service.start()
        archives = service.scan(Path.home())       # blocking, cache-aware
        service.start_incremental(Path.home())     # returns immediately
        print(service.progress)                    # "Scanning... (12/40)"
        service.stop()

    Without start(), commands queue up until run_pending() drains them on
    the calling thread.
    """

    def __init__(
        self,
        index: ArchiveIndex,
        tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS,
        watch_enabled: bool = True,
        watcher: Optional[IndexWatcher] = None,
    ) -> None:
        self._index = index
        self._tick_interval = tick_interval_ms / 1000.0
        self._queue: queue.Queue[_Command] = queue.Queue()
        self._scanner: Optional[IncrementalScanner] = None
        self._root: Optional[Path] = None
        self._known_dirs: set[Path] = set()
        self._progress = ScanProgress()
        self._progress_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        if watcher is None and watch_enabled:
            watcher = IndexWatcher(
                self.file_changed,
                self.directory_changed,
                archive_extension=index.archive_extension,
            )
        self._watcher = watcher

        self._handlers: dict[str, Callable[..., None]] = {
            "scan": self._handle_scan,
            "start_incremental": self._handle_start_incremental,
            "tick": self._handle_tick,
            "file_changed": self._handle_file_changed,
            "directory_changed": self._handle_directory_changed,
            "clear": self._handle_clear,
        }

    @property
    def index(self) -> ArchiveIndex:
        return self._index

    @property
    def watcher(self) -> Optional[IndexWatcher]:
        return self._watcher

    @property
    def progress(self) -> ScanProgress:
        with self._progress_lock:
            return self._progress

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def discovered(self) -> list[Path]:
        """Indexed archives under the current root (all entries if none)."""
        if self._root is None:
            return self._index.paths()
        return [entry.path for entry in self._index.entries_under(self._root)]

    # Commands

    def scan(self, root: Path | str, use_cache: bool = True) -> list[Path]:
        """Blocking scan through the worker; see ArchiveIndex.scan."""
        future: Future = Future()
        self._post("scan", normalize_path(root), use_cache, future=future)
        if not self.is_running:
            self.run_pending()
        return future.result()

    def start_incremental(self, root: Path | str) -> None:
        self._post("start_incremental", normalize_path(root))

    def tick(self) -> None:
        self._post("tick")

    def file_changed(self, path: Path | str) -> None:
        self._post("file_changed", normalize_path(path))

    def directory_changed(self, path: Path | str) -> None:
        self._post("directory_changed", normalize_path(path))

    def clear(self) -> None:
        self._post("clear")

    def _post(self, name: str, *args: Any, future: Optional[Future] = None) -> None:
        self._queue.put(_Command(name, args, future))

    # Worker

    def start(self) -> None:
        if self.is_running:
            return
        self._thread = threading.Thread(
            target=self._run, name="secureviewer-discovery", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is not None:
            self._queue.put(_Command(_STOP))
            self._thread.join(timeout)
            self._thread = None
        if self._watcher is not None:
            self._watcher.stop()

    def run_pending(self) -> int:
        """
        Process queued commands on the calling thread.

        Only valid while the worker thread is not running.

        Returns:
            Number of commands processed
        """
        if self.is_running:
            raise RuntimeError("run_pending() cannot be used while the worker runs")

        processed = 0
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                return processed
            if command.name != _STOP:
                self._dispatch(command)
            processed += 1

    def run_until_idle(self, max_ticks: Optional[int] = None) -> None:
        """Drain the queue and tick inline until no incremental scan is running."""
        ticks = 0
        self.run_pending()
        while self._scanner is not None and self._scanner.is_running:
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._handle_tick()
            ticks += 1
            self.run_pending()

    def _run(self) -> None:
        next_tick: Optional[float] = None
        while True:
            timeout = None
            if self._scanner is not None and self._scanner.is_running:
                now = time.monotonic()
                if next_tick is None:
                    next_tick = now + self._tick_interval
                if now >= next_tick:
                    # Ticks run on schedule however busy the queue is
                    self._handle_tick()
                    next_tick = time.monotonic() + self._tick_interval
                    continue
                timeout = next_tick - now
            else:
                next_tick = None

            try:
                command = self._queue.get(timeout=timeout)
            except queue.Empty:
                continue
            if command.name == _STOP:
                return
            self._dispatch(command)

    def _dispatch(self, command: _Command) -> None:
        handler = self._handlers[command.name]
        if command.future is not None:
            if not command.future.set_running_or_notify_cancel():
                return
            try:
                command.future.set_result(handler(*command.args))
            except Exception as e:
                command.future.set_exception(e)
            return

        try:
            handler(*command.args)
        except Exception:
            logger.exception("Discovery command %s failed", command.name)

    # Handlers (worker thread only)

    def _set_progress(self, progress: ScanProgress) -> None:
        with self._progress_lock:
            self._progress = progress

    def _handle_scan(self, root: Path, use_cache: bool) -> list[Path]:
        self._root = root
        return self._index.scan(root, use_cache=use_cache)

    def _handle_start_incremental(self, root: Path) -> None:
        if self._scanner is not None:
            self._scanner.cancel()
        self._root = root
        self._scanner = IncrementalScanner(self._index, root)
        self._set_progress(self._scanner.progress)
        logger.info("Incremental scan of %s started", root)

    def _handle_tick(self) -> None:
        scanner = self._scanner
        if scanner is None or not scanner.is_running:
            return

        scanner.tick()
        self._set_progress(scanner.progress)

        if scanner.is_complete:
            self._known_dirs.update(scanner.scanned_directories())
        if scanner.is_complete and self._watcher is not None:
            self._watcher.watch_all(scanner.scanned_directories())
            self._watcher.start()

    def _handle_file_changed(self, path: Path) -> None:
        if not os.path.lexists(path) or not self._index.is_archive_name(path.name):
            self._index.remove(path)
        else:
            self._index.upsert(path)
        self._index.commit()

    def _handle_directory_changed(self, directory: Path) -> None:
        for entry in self._index.entries_under(directory):
            if not entry.path.exists():
                self._index.remove(entry.path)
        self._known_dirs = {
            known for known in self._known_dirs
            if not known.is_relative_to(directory) or known.is_dir()
        }

        # Subdirectories seen for the first time are walked in full: a moved-in
        # tree, or files written before its watch existed, raise no events
        pending = deque([directory]) if directory.is_dir() else deque()
        self._known_dirs.update(pending)
        while pending:
            current = pending.popleft()
            subdirs, archives = self._index.list_directory(current)
            for archive in archives:
                if archive not in self._index:
                    self._index.upsert(archive)
            for subdir in subdirs:
                if subdir not in self._known_dirs:
                    self._known_dirs.add(subdir)
                    pending.append(subdir)
            if self._watcher is not None:
                self._watcher.watch_all(subdirs)

        self._index.commit()

    def _handle_clear(self) -> None:
        if self._scanner is not None:
            self._scanner.cancel()
        self._scanner = None
        self._known_dirs.clear()
        self._set_progress(ScanProgress())
        self._index.clear()
