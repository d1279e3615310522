"""Tick-driven directory walk that feeds the archive index one directory at a time."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from secureviewer.core.discovery.archive_index import ArchiveIndex, normalize_path


logger = logging.getLogger(__name__)


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class ScanProgress:
    """Directories processed so far out of directories discovered so far."""

    scanned: int = 0
    total: int = 0
    state: ScanState = ScanState.IDLE

    def __str__(self) -> str:
        if self.state is ScanState.SCANNING:
            return f"Scanning... ({self.scanned}/{self.total})"
        if self.state is ScanState.COMPLETE:
            return "Complete"
        return "Idle"


class IncrementalScanner:
    """
    Breadth-first walk of ``root`` sliced into single-directory ticks.

    ``total`` grows as subdirectories are found, so progress is only a
    lower bound until the queue drains. The index is persisted once, when
    the last directory has been processed.

    Usage:
        scanner = IncrementalScanner(index, Path.home())
        while scanner.tick():
            ...  # let other work run between ticks
        archives = scanner.discovered()
    """

    def __init__(self, index: ArchiveIndex, root: Path | str) -> None:
        self._index = index
        self._root = normalize_path(root)
        self._queue: deque[Path] = deque([self._root])
        self._total = 1
        self._scanned = 0
        self._state = ScanState.SCANNING
        self._discovered: dict[Path, None] = {}
        self._scanned_dirs: list[Path] = []

    @property
    def root(self) -> Path:
        return self._root

    @property
    def progress(self) -> ScanProgress:
        return ScanProgress(self._scanned, self._total, self._state)

    @property
    def is_complete(self) -> bool:
        return self._state is ScanState.COMPLETE

    @property
    def is_running(self) -> bool:
        return self._state is ScanState.SCANNING

    def tick(self) -> bool:
        """
        Process exactly one queued directory.

        Returns:
            True while more directories remain
        """
        if self._state is not ScanState.SCANNING:
            return False

        directory = self._queue.popleft()
        self._scanned += 1
        self._scanned_dirs.append(directory)

        subdirs, archives = self._index.list_directory(directory)
        self._queue.extend(subdirs)
        self._total += len(subdirs)

        for archive in archives:
            if self._index.upsert(archive) is not None:
                self._discovered[archive] = None

        if not self._queue:
            self._state = ScanState.COMPLETE
            self._index.commit()
            logger.info(
                "Incremental scan of %s complete: %d directories, %d archives",
                self._root,
                self._scanned,
                len(self._discovered),
            )
            return False
        return True

    def cancel(self) -> None:
        """Drop the remaining queue; the scanner goes idle."""
        self._queue.clear()
        self._state = ScanState.IDLE

    def discovered(self) -> list[Path]:
        """Archives found so far, without duplicates, in discovery order."""
        return list(self._discovered)

    def scanned_directories(self) -> list[Path]:
        return list(self._scanned_dirs)
