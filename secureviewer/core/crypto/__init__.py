"""
SecureViewer Cryptographic Core
===============================

Password-based encryption for single-file archives.

Architecture:
    1. PBKDF2-HMAC-SHA256: password stretching to key, IV and MAC key
    2. AES-256-CBC: payload encryption
    3. HMAC-SHA256: integrity tag over header, salt and ciphertext
"""

from secureviewer.core.crypto.cipher import (
    AesCbcCipher,
    CipherBackend,
    CipherError,
    derive_keys,
)

__all__ = [
    "AesCbcCipher",
    "CipherBackend",
    "CipherError",
    "derive_keys",
]
