"""
Path Utilities
==============

OS-aware path handling utilities with security considerations.
"""

from __future__ import annotations

import os
import platform
import secrets
import string
from pathlib import Path
from typing import Final

RANDOM_ALPHABET: Final[str] = string.ascii_lowercase + string.digits
DEFAULT_SUFFIX_LENGTH: Final[int] = 12
_MAX_CREATE_ATTEMPTS: Final[int] = 16


def random_suffix(length: int = DEFAULT_SUFFIX_LENGTH) -> str:
    """Random lowercase alphanumeric string from the OS CSPRNG."""
    return "".join(secrets.choice(RANDOM_ALPHABET) for _ in range(length))


def create_private_directory(
    parent: Path,
    prefix: str,
    suffix_length: int = DEFAULT_SUFFIX_LENGTH,
) -> Path:
    """
    Create a fresh owner-only (0700) directory with a random name.

    Args:
        parent: Directory to create it in
        prefix: Name prefix, e.g. "secview_"
        suffix_length: Number of random characters after the prefix

    Returns:
        Path to the new directory

    Raises:
        PermissionError: If the parent is not writable
        FileExistsError: If no unused name was found
    """
    for _ in range(_MAX_CREATE_ATTEMPTS):
        candidate = parent / f"{prefix}{random_suffix(suffix_length)}"
        try:
            candidate.mkdir(mode=0o700)
        except FileExistsError:
            continue

        # mkdir mode is filtered by umask
        if platform.system().lower() != "windows":
            candidate.chmod(0o700)
        return candidate

    raise FileExistsError(f"Could not allocate a unique directory under {parent}")


def is_path_within_directory(path: Path, directory: Path) -> bool:
    """
    Check if a path is safely within a directory (prevents path traversal).

    Args:
        path: The path to check
        directory: The containing directory

    Returns:
        True if path is the directory itself or lies beneath it
    """
    try:
        resolved_path = Path(path).resolve()
        resolved_dir = Path(directory).resolve()
        return resolved_path.is_relative_to(resolved_dir)
    except (ValueError, RuntimeError, OSError):
        return False


def is_hidden_name(name: str) -> bool:
    """Dot-prefixed names are hidden on every platform we scan."""
    return name.startswith(".")


def has_extension(path: Path | str, extension: str) -> bool:
    """Case-insensitive suffix check, e.g. has_extension("a.SENC", ".senc")."""
    return os.fspath(path).lower().endswith(extension.lower())

