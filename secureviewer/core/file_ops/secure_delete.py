"""
Secure Deletion Module
======================

Overwrite-then-remove deletion for ephemeral plaintext.

Security Properties:
- Full-length overwrite in fixed-size chunks before any unlink
- flush + fsync so the overwrite reaches the device before removal
- Directory wipes are best-effort: a file that cannot be wiped is
  logged and reported, and the rest of the tree is still processed

Limitations:
    Copy-on-write and journaling filesystems, and SSD wear levelling,
    may keep old blocks around. The overwrite only helps on storage
    that writes in place.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final


DEFAULT_OVERWRITE_PASSES: Final[int] = 1
BLOCK_SIZE: Final[int] = 4096

logger = logging.getLogger(__name__)


class SecureDeleteError(Exception):
    """Raised when secure deletion fails."""
    pass


@dataclass
class WipeReport:
    """Outcome of a best-effort directory wipe."""

    files_wiped: int = 0
    failures: list[tuple[Path, str]] = field(default_factory=list)
    directories_removed: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: "WipeReport") -> None:
        self.files_wiped += other.files_wiped
        self.failures.extend(other.failures)
        self.directories_removed.extend(other.directories_removed)


def _pass_pattern(pass_num: int) -> bytes | None:
    # Pass 1: zeros, pass 2: ones, pass 3+: random (generated per block)
    if pass_num == 0:
        return b"\x00" * BLOCK_SIZE
    if pass_num == 1:
        return b"\xff" * BLOCK_SIZE
    return None


def wipe_file(
    path: Path | str,
    passes: int = DEFAULT_OVERWRITE_PASSES,
) -> int:
    """
    Overwrite a regular file's full length in place without removing it.

    The first pass always writes zeros, so with the default single pass
    the file ends up all zero bytes.

    Args:
        path: File to overwrite
        passes: Number of overwrite passes

    Returns:
        Number of bytes overwritten per pass

    Raises:
        SecureDeleteError: If the path is not a regular file or I/O fails
    """
    path = Path(path)

    try:
        st = path.lstat()
    except OSError as e:
        raise SecureDeleteError(f"Cannot stat {path}: {e}") from e

    if not stat.S_ISREG(st.st_mode):
        raise SecureDeleteError(f"Not a regular file: {path}")

    file_size = st.st_size

    try:
        # Staged archives may have been left read-only
        if not st.st_mode & stat.S_IWUSR:
            path.chmod(st.st_mode | stat.S_IWUSR)

        with open(path, "r+b") as f:
            for pass_num in range(passes):
                f.seek(0)
                pattern = _pass_pattern(pass_num)

                bytes_written = 0
                while bytes_written < file_size:
                    chunk_size = min(BLOCK_SIZE, file_size - bytes_written)
                    if pattern is None:
                        data = secrets.token_bytes(chunk_size)
                    else:
                        data = pattern[:chunk_size]
                    f.write(data)
                    bytes_written += chunk_size

                f.flush()
                os.fsync(f.fileno())
    except OSError as e:
        raise SecureDeleteError(f"Overwrite failed for {path}: {e}") from e

    return file_size


def secure_delete(
    path: Path | str,
    passes: int = DEFAULT_OVERWRITE_PASSES,
    verify: bool = True,
) -> None:
    """
    Securely delete a single file: overwrite, then unlink.

    Args:
        path: Path to file to delete
        passes: Number of overwrite passes
        verify: Whether to check that the file is gone afterwards

    Raises:
        SecureDeleteError: If deletion fails
    """
    path = Path(path)

    if not path.exists() and not path.is_symlink():
        return  # Already deleted

    if path.is_symlink():
        # Never overwrite through a link; drop the link itself
        path.unlink()
        return

    wipe_file(path, passes=passes)

    try:
        path.unlink()
    except OSError as e:
        raise SecureDeleteError(f"Unlink failed for {path}: {e}") from e

    if verify and path.exists():
        raise SecureDeleteError(f"File still exists after deletion: {path}")


def secure_delete_directory(
    path: Path | str,
    passes: int = DEFAULT_OVERWRITE_PASSES,
) -> WipeReport:
    """
    Wipe every regular file under a directory, then remove the whole tree.

    Wiping finishes for all files before anything is removed. Failures
    are logged and collected in the report instead of aborting.

    Args:
        path: Directory path
        passes: Number of overwrite passes

    Returns:
        WipeReport describing what happened
    """
    path = Path(path)
    report = WipeReport()

    if not path.exists():
        return report

    if not path.is_dir() or path.is_symlink():
        raise SecureDeleteError(f"Not a directory: {path}")

    for root, _dirs, files in os.walk(path, followlinks=False):
        for name in files:
            item = Path(root) / name
            if item.is_symlink():
                continue
            try:
                wipe_file(item, passes=passes)
                report.files_wiped += 1
            except SecureDeleteError as e:
                logger.warning("Could not wipe %s: %s", item, e)
                report.failures.append((item, str(e)))

    def _on_remove_error(func, failed_path, exc) -> None:
        logger.warning("Could not remove %s: %s", failed_path, exc)
        report.failures.append((Path(failed_path), str(exc)))

    shutil.rmtree(path, onexc=_on_remove_error)

    if not path.exists():
        report.directories_removed.append(path)

    return report
