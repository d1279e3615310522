"""
Password-Based Archive Cipher
=============================

AES-256-CBC with a PBKDF2-HMAC-SHA256 derived key and IV, plus an
HMAC-SHA256 tag over the whole blob (encrypt-then-MAC).

Blob layout:
    MAGIC (4) | ITERATIONS (4, big-endian) | SALT (16) | CIPHERTEXT | TAG (32)

PBKDF2(password, salt, iterations) yields 80 bytes, split as
AES key (32) | IV (16) | MAC key (32). A fresh salt per encryption
means a fresh key and IV per archive.

Security Notes:
    - decrypt() reports every failure with the same generic CipherError;
      callers cannot tell a wrong password from damaged data
    - The iteration count travels in the header so archives written
      with older settings still open
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass
from typing import Final, Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.hmac import HMAC
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


MAGIC: Final[bytes] = b"SVC1"
HEADER_FORMAT: Final[str] = ">4sI"
HEADER_SIZE: Final[int] = struct.calcsize(HEADER_FORMAT)

SALT_SIZE: Final[int] = 16
AES_KEY_SIZE: Final[int] = 32  # 256 bits
IV_SIZE: Final[int] = 16  # one AES block
MAC_KEY_SIZE: Final[int] = 32
TAG_SIZE: Final[int] = 32  # HMAC-SHA256
BLOCK_SIZE_BITS: Final[int] = 128

DEFAULT_ITERATIONS: Final[int] = 600_000
MIN_ITERATIONS: Final[int] = 1_000
MAX_ITERATIONS: Final[int] = 10_000_000

_MIN_BLOB_SIZE: Final[int] = HEADER_SIZE + SALT_SIZE + IV_SIZE + TAG_SIZE


class CipherError(Exception):
    """Raised when encryption or decryption fails."""
    pass


class CipherBackend(Protocol):
    """Password-based symmetric encryption primitive used by the archive codec."""

    def encrypt(self, plaintext: bytes, password: str) -> bytes:
        ...

    def decrypt(self, ciphertext: bytes, password: str) -> bytes:
        ...


@dataclass(frozen=True, slots=True)
class DerivedKeys:
    """Key material stretched from a password and salt."""

    enc_key: bytes
    iv: bytes
    mac_key: bytes

    def __repr__(self) -> str:
        return "DerivedKeys(<redacted>)"


def derive_keys(password: str, salt: bytes, iterations: int) -> DerivedKeys:
    """
    Derive AES key, IV and MAC key from a password with PBKDF2-HMAC-SHA256.

    Args:
        password: User password
        salt: Random salt stored in the blob header
        iterations: PBKDF2 iteration count

    Returns:
        DerivedKeys
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE + IV_SIZE + MAC_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    material = kdf.derive(password.encode("utf-8"))
    return DerivedKeys(
        enc_key=material[:AES_KEY_SIZE],
        iv=material[AES_KEY_SIZE:AES_KEY_SIZE + IV_SIZE],
        mac_key=material[AES_KEY_SIZE + IV_SIZE:],
    )


def _compute_tag(mac_key: bytes, data: bytes) -> bytes:
    h = HMAC(mac_key, hashes.SHA256())
    h.update(data)
    return h.finalize()


class AesCbcCipher:
    """
    AES-256-CBC password cipher with an HMAC-SHA256 integrity tag.

    Usage:
        cipher = AesCbcCipher()
        blob = cipher.encrypt(b"payload", "password")
        assert cipher.decrypt(blob, "password") == b"payload"
    """

    __slots__ = ("_iterations",)

    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        if not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
            raise ValueError(
                f"Iterations must be between {MIN_ITERATIONS} and {MAX_ITERATIONS}"
            )
        self._iterations = iterations

    @property
    def iterations(self) -> int:
        return self._iterations

    @staticmethod
    def generate_salt() -> bytes:
        """Generate a random salt from the OS CSPRNG."""
        return secrets.token_bytes(SALT_SIZE)

    def encrypt(self, plaintext: bytes, password: str) -> bytes:
        """
        Encrypt plaintext under a password.

        Raises:
            ValueError: If the password is empty
            CipherError: If the primitive fails
        """
        if not password:
            raise ValueError("Password cannot be empty")

        salt = self.generate_salt()
        keys = derive_keys(password, salt, self._iterations)

        try:
            padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
            padded = padder.update(plaintext) + padder.finalize()

            encryptor = Cipher(algorithms.AES(keys.enc_key), modes.CBC(keys.iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except Exception as e:
            raise CipherError(f"Encryption failed: {e}") from e

        body = struct.pack(HEADER_FORMAT, MAGIC, self._iterations) + salt + ciphertext
        return body + _compute_tag(keys.mac_key, body)

    def decrypt(self, ciphertext: bytes, password: str) -> bytes:
        """
        Verify and decrypt a blob produced by encrypt().

        Raises:
            CipherError: On any failure (the cause is deliberately not reported)
        """
        if not password:
            raise CipherError("Decryption failed")

        if len(ciphertext) < _MIN_BLOB_SIZE:
            raise CipherError("Decryption failed")

        magic, iterations = struct.unpack(HEADER_FORMAT, ciphertext[:HEADER_SIZE])
        if magic != MAGIC or not MIN_ITERATIONS <= iterations <= MAX_ITERATIONS:
            raise CipherError("Decryption failed")

        body, tag = ciphertext[:-TAG_SIZE], ciphertext[-TAG_SIZE:]
        salt = body[HEADER_SIZE:HEADER_SIZE + SALT_SIZE]
        encrypted = body[HEADER_SIZE + SALT_SIZE:]

        if len(encrypted) % IV_SIZE != 0:
            raise CipherError("Decryption failed")

        keys = derive_keys(password, salt, iterations)

        h = HMAC(keys.mac_key, hashes.SHA256())
        h.update(body)
        try:
            h.verify(tag)
        except InvalidSignature as e:
            raise CipherError("Decryption failed") from e

        try:
            decryptor = Cipher(algorithms.AES(keys.enc_key), modes.CBC(keys.iv)).decryptor()
            padded = decryptor.update(encrypted) + decryptor.finalize()

            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise CipherError("Decryption failed") from e

    def __repr__(self) -> str:
        return f"AesCbcCipher(iterations={self._iterations})"
