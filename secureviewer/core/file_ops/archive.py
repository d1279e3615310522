"""
Self-Decrypting Archive Format
==============================

One encrypted file plus its original name, wrapped so the archive can
decrypt itself when run with ``sh``.

File Format:
    1. Bootstrap preamble (a POSIX sh script, text)
    2. Marker line ``__ENCRYPTED_DATA_BELOW__\\n``
    3. Ciphertext (raw bytes, never parsed as text)

The marker counts only at the very start of the file or right after a
newline, and must appear exactly once. Everything after it belongs to
the cipher.

Plaintext payload:
    original_filename (UTF-8) + b"\\n" + content
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional

from secureviewer.core.crypto.cipher import AesCbcCipher, CipherBackend, CipherError
from secureviewer.core.errors import (
    ArchiveEncodeError,
    EmptyPayloadError,
    IOFailureError,
    MalformedArchiveError,
    PermissionDeniedError,
    WrongPasswordOrCorruptError,
)


ARCHIVE_EXTENSION: Final[str] = ".senc"
MARKER_LINE: Final[bytes] = b"__ENCRYPTED_DATA_BELOW__\n"

# Exit codes of the self-extracting preamble
EXIT_OK: Final[int] = 0
EXIT_MALFORMED: Final[int] = 2
EXIT_WRONG_PASSWORD: Final[int] = 3
EXIT_EMPTY_PAYLOAD: Final[int] = 4

_MAX_ENCODE_ATTEMPTS: Final[int] = 8
_FORBIDDEN_NAMES: Final[frozenset[str]] = frozenset({"", ".", ".."})

logger = logging.getLogger(__name__)


# The embedded program must not contain single quotes: it sits inside
# one sh single-quoted word. The marker is assembled from pieces so the
# preamble never contains a marker line of its own.
BOOTSTRAP_PREAMBLE: Final[bytes] = r'''#!/bin/sh
# SecureViewer self-decrypting archive.
# Usage: sh <archive>   (password is read from stdin, one line)
exec "${SECUREVIEWER_PYTHON:-python3}" -c '
import hashlib, hmac, os, struct, sys

MARK = b"__ENCRYPTED_DATA" + b"_BELOW__" + b"\n"

def fail(code, message):
    sys.stderr.write(message + "\n")
    sys.exit(code)

src = os.path.abspath(sys.argv[1])
with open(src, "rb") as fh:
    data = fh.read()

found = data.count(b"\n" + MARK) + (1 if data.startswith(MARK) else 0)
if found != 1:
    fail(2, "Archive is malformed.")
start = 0 if data.startswith(MARK) else data.index(b"\n" + MARK) + 1
blob = data[start + len(MARK):]
if not blob:
    fail(4, "Archive payload is empty.")

password = sys.stdin.readline().rstrip("\r\n")
if not password or len(blob) < 8 + 16 + 16 + 32 or blob[:4] != b"SVC1":
    fail(3, "Wrong password or corrupted archive.")
rounds = struct.unpack(">I", blob[4:8])[0]
body, tag = blob[:-32], blob[-32:]
encrypted = body[24:]
if not 1000 <= rounds <= 10000000 or len(encrypted) % 16:
    fail(3, "Wrong password or corrupted archive.")

keys = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), blob[8:24], rounds, 80)
if not hmac.compare_digest(hmac.new(keys[48:], body, "sha256").digest(), tag):
    fail(3, "Wrong password or corrupted archive.")

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

try:
    dec = Cipher(algorithms.AES(keys[:32]), modes.CBC(keys[32:48])).decryptor()
    unpadder = padding.PKCS7(128).unpadder()
    plain = unpadder.update(dec.update(encrypted) + dec.finalize()) + unpadder.finalize()
except ValueError:
    fail(3, "Wrong password or corrupted archive.")

if not plain:
    fail(4, "Archive payload is empty.")
name, sep, content = plain.partition(b"\n")
try:
    name = os.path.basename(name.decode("utf-8"))
except UnicodeDecodeError:
    fail(2, "Archive is malformed.")
target = os.path.join(os.path.dirname(src), name)
if not sep or name in ("", ".", "..") or os.path.abspath(target) == src:
    fail(2, "Archive is malformed.")

with open(target, "wb") as fh:
    fh.write(content)
print("Decrypted: " + target)
' "$0"
'''.encode("ascii")


def _marker_offsets(data: bytes) -> list[int]:
    """Offsets of every marker line that starts a line."""
    offsets = []
    if data.startswith(MARKER_LINE):
        offsets.append(0)
    needle = b"\n" + MARKER_LINE
    pos = data.find(needle)
    while pos != -1:
        offsets.append(pos + 1)
        pos = data.find(needle, pos + 1)
    return offsets


def _check_filename(filename: str) -> bool:
    return (
        isinstance(filename, str)
        and filename not in _FORBIDDEN_NAMES
        and not any(ch in filename for ch in ("\n", "\r", "\x00", "/", "\\"))
    )


@dataclass(frozen=True, slots=True)
class PlaintextPayload:
    """Decrypted archive contents: the original name and the raw bytes."""

    filename: str
    content: bytes

    def to_bytes(self) -> bytes:
        return self.filename.encode("utf-8") + b"\n" + self.content

    @classmethod
    def from_bytes(cls, data: bytes) -> "PlaintextPayload":
        """
        Split a decrypted payload at its first newline.

        Raises:
            EmptyPayloadError: Nothing was decrypted
            MalformedArchiveError: No newline, or an unusable filename
        """
        if not data:
            raise EmptyPayloadError()

        raw_name, sep, content = data.partition(b"\n")
        if not sep:
            raise MalformedArchiveError("Archive payload has no filename line.")

        try:
            filename = raw_name.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedArchiveError("Archive filename is not valid UTF-8.") from e

        if not _check_filename(filename):
            raise MalformedArchiveError("Archive filename is unusable.")

        return cls(filename=filename, content=content)

    def __repr__(self) -> str:
        return f"PlaintextPayload(filename={self.filename!r}, size={len(self.content)})"


class ArchiveCodec:
    """
    Builds and parses self-decrypting archives.

    Usage:
        codec = ArchiveCodec()
        data = codec.encode("report.txt", b"Q3 numbers", "hunter22")
        payload = codec.decode(data, "hunter22")
        assert payload.filename == "report.txt"

    encode() and decode() are pure transforms; read() and extract()
    add the file I/O around them.
    """

    __slots__ = ("_cipher",)

    def __init__(self, cipher: Optional[CipherBackend] = None) -> None:
        self._cipher = cipher if cipher is not None else AesCbcCipher()

    @property
    def cipher(self) -> CipherBackend:
        return self._cipher

    @staticmethod
    def is_archive(path: Path | str) -> bool:
        """Whether the path carries the archive extension (case-insensitive)."""
        return str(path).lower().endswith(ARCHIVE_EXTENSION)

    def encode(self, original_filename: str, content: bytes, password: str) -> bytes:
        """
        Encrypt one file into archive bytes.

        Args:
            original_filename: Name restored on decryption (no directories)
            content: Raw file bytes
            password: Archive password

        Returns:
            preamble + marker line + ciphertext

        Raises:
            ArchiveEncodeError: Bad filename, empty password or cipher failure
        """
        if not _check_filename(original_filename):
            raise ArchiveEncodeError(f"Unusable filename: {original_filename!r}")
        if not password:
            raise ArchiveEncodeError("Password cannot be empty.")

        payload = PlaintextPayload(original_filename, bytes(content)).to_bytes()

        for _ in range(_MAX_ENCODE_ATTEMPTS):
            try:
                ciphertext = self._cipher.encrypt(payload, password)
            except (CipherError, ValueError) as e:
                raise ArchiveEncodeError(f"Encryption failed: {e}") from e

            archive = BOOTSTRAP_PREAMBLE + MARKER_LINE + ciphertext
            # A fresh salt changes every ciphertext byte
            if len(_marker_offsets(archive)) == 1:
                return archive
            logger.debug("Ciphertext contained a marker line, retrying with a new salt")

        raise ArchiveEncodeError("Could not produce an unambiguous archive.")

    def split(self, archive_bytes: bytes) -> tuple[bytes, bytes]:
        """
        Split an archive into (preamble, ciphertext).

        Raises:
            MalformedArchiveError: Marker missing or repeated
        """
        offsets = _marker_offsets(archive_bytes)
        if not offsets:
            raise MalformedArchiveError("Archive marker not found.")
        if len(offsets) > 1:
            raise MalformedArchiveError("Archive marker appears more than once.")

        start = offsets[0]
        return archive_bytes[:start], archive_bytes[start + len(MARKER_LINE):]

    def decode(self, archive_bytes: bytes, password: str) -> PlaintextPayload:
        """
        Recover the original filename and content.

        Raises:
            MalformedArchiveError: Marker missing/repeated or bad payload layout
            EmptyPayloadError: No ciphertext, or it decrypts to nothing
            WrongPasswordOrCorruptError: The ciphertext does not decrypt
        """
        _, ciphertext = self.split(archive_bytes)
        if not ciphertext:
            raise EmptyPayloadError()

        try:
            plaintext = self._cipher.decrypt(ciphertext, password)
        except CipherError as e:
            raise WrongPasswordOrCorruptError() from e

        return PlaintextPayload.from_bytes(plaintext)

    def read(self, path: Path | str, password: str) -> PlaintextPayload:
        """Decode an archive file from disk."""
        path = Path(path)
        try:
            data = path.read_bytes()
        except PermissionError as e:
            raise PermissionDeniedError(f"Cannot read {path}") from e
        except OSError as e:
            raise IOFailureError(f"Cannot read {path}: {e.strerror}") from e
        return self.decode(data, password)

    def extract(
        self,
        archive_path: Path | str,
        password: str,
        output_dir: Optional[Path | str] = None,
    ) -> Path:
        """
        Decrypt an archive and write the content under its original name.

        Args:
            archive_path: Archive to open
            password: Archive password
            output_dir: Destination directory (defaults to the archive's own)

        Returns:
            Path of the written file

        Raises:
            MalformedArchiveError: Also raised if the name would replace the archive
        """
        archive_path = Path(archive_path)
        payload = self.read(archive_path, password)

        destination = Path(output_dir) if output_dir is not None else archive_path.parent
        target = destination / payload.filename
        if target.resolve() == archive_path.resolve():
            raise MalformedArchiveError("Archive would overwrite itself.")

        try:
            target.write_bytes(payload.content)
        except PermissionError as e:
            raise PermissionDeniedError(f"Cannot write {target}") from e
        except OSError as e:
            raise IOFailureError(f"Cannot write {target}: {e.strerror}") from e

        logger.info("Extracted archive %s to %s", archive_path.name, target)
        return target
