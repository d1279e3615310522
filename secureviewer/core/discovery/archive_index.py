"""
Archive Index
=============

Fingerprint index of archive files on disk, persisted as a JSON snapshot.

An entry is valid while the file still exists with exactly the recorded
modification time and size. Snapshots older than ``max_cache_age_days``
are discarded wholesale; fresh snapshots keep only entries that are
still valid.

Snapshot format:
    {"timestamp": <epoch seconds>,
     "entries": [{"path": ..., "lastModified": <epoch seconds>, "size": ...}]}
"""

from __future__ import annotations

import json
import logging
import os
import stat
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Final, Iterable, Optional

from secureviewer.utils.paths import has_extension, is_hidden_name, random_suffix


SECONDS_PER_DAY: Final[int] = 24 * 60 * 60
DEFAULT_MAX_CACHE_AGE_DAYS: Final[int] = 7

logger = logging.getLogger(__name__)


def normalize_path(path: Path | str) -> Path:
    """Absolute, normalized path without resolving symlinks."""
    return Path(os.path.abspath(os.fspath(path)))


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """Fingerprint of one archive file."""

    path: Path
    last_modified: float
    size: int

    @classmethod
    def from_path(cls, path: Path | str) -> "IndexEntry":
        """
        Fingerprint a file as it is now.

        Raises:
            OSError: If the file cannot be stat'ed
        """
        path = normalize_path(path)
        st = path.stat()
        return cls(path=path, last_modified=st.st_mtime, size=st.st_size)

    def is_valid(self) -> bool:
        """True iff the file exists with the recorded mtime and size."""
        try:
            st = self.path.stat()
        except OSError:
            return False
        return (
            stat.S_ISREG(st.st_mode)
            and st.st_mtime == self.last_modified
            and st.st_size == self.size
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "lastModified": self.last_modified,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            path=normalize_path(data["path"]),
            last_modified=float(data["lastModified"]),
            size=int(data["size"]),
        )


class ArchiveIndex:
    """
    In-memory archive index with snapshot persistence.

    Mutations are expected from a single writer (the discovery service);
    the internal lock only keeps concurrent readers consistent.

    Usage:
        index = ArchiveIndex(cache_file=Path("~/.cache/secureviewer/file_cache.json"))
        index.load()
        archives = index.scan(Path.home())
    """

    def __init__(
        self,
        cache_file: Optional[Path | str] = None,
        archive_extension: str = ".senc",
        excluded_dirs: Iterable[str] = (),
        max_cache_age_days: int = DEFAULT_MAX_CACHE_AGE_DAYS,
    ) -> None:
        self._cache_file = Path(cache_file) if cache_file is not None else None
        self._extension = archive_extension
        self._max_age_seconds = max_cache_age_days * SECONDS_PER_DAY
        self._entries: dict[Path, IndexEntry] = {}
        self._listeners: list[Callable[[], None]] = []
        self._lock = threading.RLock()

        self._excluded_paths: set[str] = set()
        self._excluded_names: set[str] = set()
        for item in excluded_dirs:
            if os.path.isabs(item):
                self._excluded_paths.add(os.path.normpath(item))
            elif item:
                self._excluded_names.add(item)

    @property
    def archive_extension(self) -> str:
        return self._extension

    @property
    def cache_file(self) -> Optional[Path]:
        return self._cache_file

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        with self._lock:
            return normalize_path(path) in self._entries

    def get(self, path: Path | str) -> Optional[IndexEntry]:
        with self._lock:
            return self._entries.get(normalize_path(path))

    def paths(self) -> list[Path]:
        with self._lock:
            return sorted(self._entries)

    def entries_under(self, root: Path | str) -> list[IndexEntry]:
        """Entries whose path lies under ``root`` (by path containment)."""
        root = normalize_path(root)
        with self._lock:
            return [
                entry for path, entry in sorted(self._entries.items())
                if path.is_relative_to(root)
            ]

    def is_archive_name(self, name: str) -> bool:
        return not is_hidden_name(name) and has_extension(name, self._extension)

    def upsert(self, path: Path | str) -> Optional[IndexEntry]:
        """
        Fingerprint ``path`` and store it.

        A path that no longer exists, or is not a regular file, is removed
        instead and None is returned.
        """
        path = normalize_path(path)
        try:
            st = path.stat()
        except OSError:
            self.remove(path)
            return None

        if not stat.S_ISREG(st.st_mode):
            self.remove(path)
            return None

        entry = IndexEntry(path=path, last_modified=st.st_mtime, size=st.st_size)
        with self._lock:
            self._entries[path] = entry
        return entry

    def remove(self, path: Path | str) -> bool:
        with self._lock:
            return self._entries.pop(normalize_path(path), None) is not None

    def clear(self) -> None:
        """Drop every entry and delete the snapshot file."""
        with self._lock:
            self._entries.clear()
        if self._cache_file is not None:
            try:
                self._cache_file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not delete cache snapshot %s: %s", self._cache_file, e)
        self.notify_listeners()

    def commit(self) -> bool:
        """Persist the snapshot and notify listeners."""
        saved = self.save()
        self.notify_listeners()
        return saved

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback run whenever the index is committed or cleared."""
        with self._lock:
            self._listeners.append(callback)

    def notify_listeners(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback()
            except Exception:
                logger.exception("Archive index listener failed")

    def load(self) -> int:
        """
        Replace the in-memory entries with the persisted snapshot.

        Stale snapshots are ignored entirely; entries that no longer match
        their file are dropped. Unreadable or malformed snapshots are
        logged and ignored.

        Returns:
            Number of entries loaded
        """
        with self._lock:
            self._entries.clear()

        if self._cache_file is None or not self._cache_file.exists():
            return 0

        try:
            data = json.loads(self._cache_file.read_text(encoding="utf-8"))
            timestamp = float(data["timestamp"])
            raw_entries = data["entries"]
            entries = [IndexEntry.from_dict(item) for item in raw_entries]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable cache snapshot %s: %s", self._cache_file, e)
            return 0

        age = time.time() - timestamp
        if age > self._max_age_seconds:
            logger.info("Discarding cache snapshot older than %d days", self._max_age_seconds // SECONDS_PER_DAY)
            return 0

        valid = [entry for entry in entries if entry.is_valid()]
        with self._lock:
            for entry in valid:
                self._entries[entry.path] = entry

        logger.debug("Loaded %d of %d cached archive entries", len(valid), len(entries))
        return len(valid)

    def save(self) -> bool:
        """
        Write the snapshot atomically with owner-only permissions.

        Returns:
            False if there is no cache file or writing failed (logged)
        """
        if self._cache_file is None:
            return False

        with self._lock:
            payload = {
                "timestamp": time.time(),
                "entries": [entry.to_dict() for _, entry in sorted(self._entries.items())],
            }

        target = self._cache_file
        tmp = target.with_name(f".{target.name}.{random_suffix(8)}.tmp")
        try:
            target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except OSError as e:
            logger.warning("Could not write cache snapshot %s: %s", target, e)
            if tmp.exists():
                tmp.unlink()
            return False
        return True

    def should_skip_directory(self, path: Path | str) -> bool:
        """
        Whether a directory below the scan root is left out of the walk.

        Skips hidden directories, deny-listed ones (absolute path or bare
        name), and anything the process cannot both read and traverse.
        """
        path = normalize_path(path)
        if is_hidden_name(path.name):
            return True
        if str(path) in self._excluded_paths or path.name in self._excluded_names:
            return True
        return not os.access(path, os.R_OK | os.X_OK)

    def scan(self, root: Path | str, use_cache: bool = True) -> list[Path]:
        """
        Find every archive under ``root``.

        With ``use_cache``, valid cached entries under ``root`` are returned
        without touching the disk. Otherwise the tree is walked with an
        explicit stack (symlinks not followed), found archives are
        upserted, vanished ones under ``root`` are dropped, and the snapshot
        is persisted.

        Returns:
            Sorted archive paths
        """
        root = normalize_path(root)

        if use_cache:
            cached = [entry.path for entry in self.entries_under(root) if entry.is_valid()]
            if cached:
                logger.debug("Serving %d archives under %s from cache", len(cached), root)
                return sorted(cached)

        found: set[Path] = set()
        stack = [root]
        while stack:
            subdirs, archives = self.list_directory(stack.pop())
            stack.extend(subdirs)
            for archive in archives:
                if self.upsert(archive) is not None:
                    found.add(archive)

        for entry in self.entries_under(root):
            if entry.path not in found:
                self.remove(entry.path)

        self.commit()
        logger.info("Scan of %s found %d archives", root, len(found))
        return sorted(found)

    def list_directory(self, directory: Path | str) -> tuple[list[Path], list[Path]]:
        """
        (subdirectories to descend into, archive files) directly inside
        ``directory``. An unreadable directory yields two empty lists.
        """
        subdirs: list[Path] = []
        archives: list[Path] = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if not self.should_skip_directory(entry.path):
                                subdirs.append(normalize_path(entry.path))
                        elif entry.is_file(follow_symlinks=False) and self.is_archive_name(entry.name):
                            archives.append(normalize_path(entry.path))
                    except OSError as e:
                        logger.debug("Skipping %s: %s", entry.path, e)
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
        return subdirs, archives
