"""Error taxonomy for vault operations.

Every error here is recoverable at the operation boundary: it ends the
current decrypt/encrypt attempt and leaves prior state intact.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base exception for vault operations."""

    default_message = "Vault operation failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class ArchiveError(VaultError):
    """Base for archive format errors."""

    default_message = "Archive error."


class ArchiveEncodeError(ArchiveError):
    """Raised when an archive cannot be built from the given input."""

    default_message = "Failed to build archive."


class MalformedArchiveError(ArchiveError):
    """Raised when the marker line is missing or repeated, or the payload is unusable."""

    default_message = "Archive is malformed."


class WrongPasswordOrCorruptError(ArchiveError):
    """
    Raised when the ciphertext does not decrypt.

    A wrong password and damaged ciphertext look the same from here,
    so both end up as this one error.
    """

    default_message = "Wrong password or corrupted archive."


class EmptyPayloadError(ArchiveError):
    """Raised when an archive carries no ciphertext or an empty payload."""

    default_message = "Archive payload is empty."


class DecryptionFailedError(VaultError):
    """Raised when the decrypt pipeline cannot produce a viewable file."""

    default_message = "Decryption failed."

    def __init__(self, message: str | None = None, output: str = ""):
        super().__init__(message)
        self.output = output


class NoDecryptedOutputFoundError(DecryptionFailedError):
    """Raised when extraction reported success but no output file appeared."""

    default_message = "No decrypted file found."


class PasswordError(VaultError):
    """Base for rejected new passwords."""

    default_message = "Invalid password."


class InvalidPasswordError(PasswordError):
    """Raised when a new password does not meet the policy."""

    default_message = "Invalid password."


class PasswordMismatchError(PasswordError):
    """Raised when the confirmation does not match the password."""

    default_message = "Passwords do not match."


class PermissionDeniedError(VaultError):
    """Raised when the workspace or archive is not accessible."""

    default_message = "Permission denied."


class IOFailureError(VaultError):
    """Raised on generic read/write/copy failures."""

    default_message = "I/O failure."
