"""Unit tests for the AES-CBC password cipher."""

import struct

import pytest

from secureviewer.core.crypto.cipher import (
    HEADER_SIZE,
    MAGIC,
    SALT_SIZE,
    TAG_SIZE,
    AesCbcCipher,
    CipherError,
    derive_keys,
)


class TestKeyDerivation:
    """Tests for PBKDF2 key, IV and MAC key derivation."""

    def test_derive_keys_sizes(self):
        """Test derived material splits into 32/16/32 bytes."""
        keys = derive_keys("password", b"\x00" * SALT_SIZE, 1_000)

        assert len(keys.enc_key) == 32
        assert len(keys.iv) == 16
        assert len(keys.mac_key) == 32

    def test_derive_keys_deterministic(self):
        """Test same password and salt give the same keys."""
        salt = AesCbcCipher.generate_salt()

        assert derive_keys("pw-123456", salt, 1_000) == derive_keys("pw-123456", salt, 1_000)

    def test_derive_keys_differ_by_salt(self):
        """Test a different salt gives different keys."""
        keys1 = derive_keys("pw-123456", b"\x01" * SALT_SIZE, 1_000)
        keys2 = derive_keys("pw-123456", b"\x02" * SALT_SIZE, 1_000)

        assert keys1.enc_key != keys2.enc_key
        assert keys1.iv != keys2.iv

    def test_repr_hides_key_material(self):
        """Test repr does not expose keys."""
        keys = derive_keys("pw-123456", b"\x00" * SALT_SIZE, 1_000)

        assert keys.enc_key.hex() not in repr(keys)
        assert "redacted" in repr(keys)


class TestAesCbcCipher:
    """Tests for encrypt/decrypt behaviour."""

    def test_encrypt_decrypt_roundtrip(self, cipher):
        """Test decrypting returns the original plaintext."""
        blob = cipher.encrypt(b"secret data", "hunter22")

        assert cipher.decrypt(blob, "hunter22") == b"secret data"

    def test_empty_plaintext_roundtrip(self, cipher):
        """Test an empty plaintext still encrypts to a full block."""
        blob = cipher.encrypt(b"", "hunter22")

        assert cipher.decrypt(blob, "hunter22") == b""

    def test_blob_layout(self, cipher):
        """Test header carries magic and iteration count."""
        blob = cipher.encrypt(b"x" * 20, "hunter22")

        magic, iterations = struct.unpack(">4sI", blob[:HEADER_SIZE])
        assert magic == MAGIC
        assert iterations == cipher.iterations
        # 20 bytes pad to 32
        assert len(blob) == HEADER_SIZE + SALT_SIZE + 32 + TAG_SIZE

    def test_fresh_salt_per_encryption(self, cipher):
        """Test encrypting twice gives different ciphertexts."""
        assert cipher.encrypt(b"same", "hunter22") != cipher.encrypt(b"same", "hunter22")

    def test_wrong_password_fails(self, cipher):
        """Test wrong password raises the generic error."""
        blob = cipher.encrypt(b"secret data", "hunter22")

        with pytest.raises(CipherError, match="Decryption failed"):
            cipher.decrypt(blob, "hunter23")

    def test_tampered_ciphertext_fails(self, cipher):
        """Test a flipped ciphertext byte is detected."""
        blob = bytearray(cipher.encrypt(b"secret data", "hunter22"))
        blob[HEADER_SIZE + SALT_SIZE] ^= 0x01

        with pytest.raises(CipherError):
            cipher.decrypt(bytes(blob), "hunter22")

    def test_truncated_blob_fails(self, cipher):
        """Test a blob shorter than the minimum is rejected."""
        with pytest.raises(CipherError):
            cipher.decrypt(b"SVC1\x00\x00", "hunter22")

    def test_bad_magic_fails(self, cipher):
        """Test foreign data is rejected."""
        blob = b"XXXX" + cipher.encrypt(b"data", "hunter22")[4:]

        with pytest.raises(CipherError):
            cipher.decrypt(blob, "hunter22")

    def test_out_of_range_iterations_rejected(self, cipher):
        """Test an absurd iteration count in the header is refused."""
        blob = bytearray(cipher.encrypt(b"data", "hunter22"))
        blob[4:8] = struct.pack(">I", 0xFFFFFFFF)

        with pytest.raises(CipherError):
            cipher.decrypt(bytes(blob), "hunter22")

    def test_empty_password_rejected_on_encrypt(self, cipher):
        """Test empty password is a programming error on encrypt."""
        with pytest.raises(ValueError):
            cipher.encrypt(b"data", "")

    def test_decrypts_archive_from_other_iteration_count(self):
        """Test the iteration count is read from the blob, not the instance."""
        writer = AesCbcCipher(iterations=1_500)
        reader = AesCbcCipher(iterations=1_000)

        assert reader.decrypt(writer.encrypt(b"data", "hunter22"), "hunter22") == b"data"

    def test_invalid_iterations(self):
        """Test constructor bounds."""
        with pytest.raises(ValueError):
            AesCbcCipher(iterations=10)
