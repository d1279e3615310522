"""
Validation Utilities
====================

Input validation functions with security focus.
"""

from __future__ import annotations

from pathlib import Path
from secureviewer.core.errors import (
    InvalidPasswordError,
    PasswordMismatchError,
)


class ValidationError(ValueError):
    """Raised when validation fails."""
    pass


def validate_new_password(
    password: str,
    confirmation: str,
    min_length: int = 6,
) -> str:
    """
    Validate a password chosen for a new archive.

    The password is later fed to the archive's self-extractor as one
    line on stdin, so line breaks and NUL bytes are refused.

    Raises:
        InvalidPasswordError: Too short or containing forbidden characters
        PasswordMismatchError: Confirmation differs
    """
    if not isinstance(password, str) or len(password) < min_length:
        raise InvalidPasswordError(
            f"Password must be at least {min_length} characters."
        )

    if any(ch in password for ch in ("\n", "\r", "\x00")):
        raise InvalidPasswordError("Password cannot contain line breaks or NUL bytes.")

    if password != confirmation:
        raise PasswordMismatchError()

    return password


def validate_path_safe(
    path: str | Path,
    must_exist: bool = False,
    allow_symlinks: bool = False,
) -> Path:
    """
    Resolve a user-supplied path after symlink and existence checks.

    Args:
        path: The path to validate
        must_exist: If True, path must exist
        allow_symlinks: If False, symlinks are rejected

    Returns:
        Validated, absolute Path object

    Raises:
        ValidationError: If validation fails
    """
    raw = Path(path)

    # Symlink check must look at the unresolved path
    if not allow_symlinks and raw.is_symlink():
        raise ValidationError("Symlinks are not allowed")

    try:
        validated_path = raw.resolve()
    except (ValueError, RuntimeError, OSError) as e:
        raise ValidationError(f"Invalid path: {e}") from e

    if must_exist and not validated_path.exists():
        raise ValidationError(f"Path does not exist: {validated_path}")

    return validated_path
