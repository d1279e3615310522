"""Filesystem change subscription for the archive index, built on watchdog."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

from secureviewer.core.discovery.archive_index import normalize_path
from secureviewer.utils.paths import has_extension


logger = logging.getLogger(__name__)

PathCallback = Callable[[Path], None]


class ArchiveEventHandler(FileSystemEventHandler):
    """
    Translate watchdog events into index notifications.

    The handler runs on the observer thread and never touches the index:
    it only calls the two callbacks, which are expected to post messages
    to the index owner.
    """

    def __init__(
        self,
        on_file_changed: PathCallback,
        on_directory_changed: PathCallback,
        archive_extension: str,
    ) -> None:
        super().__init__()
        self._on_file_changed = on_file_changed
        self._on_directory_changed = on_directory_changed
        self._extension = archive_extension

    def _file(self, path: str | bytes) -> None:
        path = os.fsdecode(path)
        if has_extension(path, self._extension):
            self._on_file_changed(normalize_path(path))

    def _directory(self, path: str | bytes) -> None:
        self._on_directory_changed(normalize_path(os.fsdecode(path)))

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            # The parent listing picks up the new directory and watches it
            self._directory(os.path.dirname(os.fsdecode(event.src_path)))
        else:
            self._file(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._directory(event.src_path)
        else:
            self._file(event.src_path)

    def on_closed(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._file(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._directory(os.path.dirname(os.fsdecode(event.src_path)))
        else:
            self._file(event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            self._directory(os.path.dirname(os.fsdecode(event.src_path)))
            self._directory(os.path.dirname(os.fsdecode(event.dest_path)))
        else:
            self._file(event.src_path)
            self._file(event.dest_path)


class IndexWatcher:
    """
    Non-recursive watches on individual directories.

    Each directory is scheduled at most once. The observer starts lazily
    on the first start() call and cannot be restarted after stop().

    Usage:
        watcher = IndexWatcher(service.file_changed, service.directory_changed)
        watcher.watch(Path.home() / "Documents")
        watcher.start()
    """

    def __init__(
        self,
        on_file_changed: PathCallback,
        on_directory_changed: PathCallback,
        archive_extension: str = ".senc",
        observer: Optional[Observer] = None,
    ) -> None:
        self._handler = ArchiveEventHandler(on_file_changed, on_directory_changed, archive_extension)
        self._observer = observer if observer is not None else Observer()
        self._watched: set[Path] = set()
        self._lock = threading.Lock()
        self._started = False
        self._stopped = False

    @property
    def watched(self) -> frozenset[Path]:
        with self._lock:
            return frozenset(self._watched)

    @property
    def is_running(self) -> bool:
        return self._started and self._observer.is_alive()

    def watch(self, directory: Path | str) -> bool:
        """
        Schedule a non-recursive watch on ``directory``.

        Returns:
            True if a new watch was installed
        """
        directory = normalize_path(directory)
        with self._lock:
            if directory in self._watched:
                return False
            if not directory.is_dir():
                return False
            try:
                self._observer.schedule(self._handler, str(directory), recursive=False)
            except OSError as e:
                logger.warning("Cannot watch %s: %s", directory, e)
                return False
            self._watched.add(directory)
        logger.debug("Watching %s", directory)
        return True

    def watch_all(self, directories) -> int:
        return sum(1 for directory in directories if self.watch(directory))

    def start(self) -> None:
        with self._lock:
            if self._started or self._stopped:
                return
            self._observer.start()
            self._started = True
        logger.info("Archive watcher started on %d directories", len(self._watched))

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self._started:
                return
            self._started = False
            self._stopped = True
        self._observer.stop()
        self._observer.join(timeout)
        logger.info("Archive watcher stopped")
