"""Unit tests for the self-decrypting archive codec."""

from pathlib import Path

import pytest

from secureviewer.core.crypto.cipher import AesCbcCipher
from secureviewer.core.errors import (
    ArchiveEncodeError,
    EmptyPayloadError,
    MalformedArchiveError,
    WrongPasswordOrCorruptError,
)
from secureviewer.core.file_ops.archive import (
    BOOTSTRAP_PREAMBLE,
    MARKER_LINE,
    ArchiveCodec,
    PlaintextPayload,
)


class TestPlaintextPayload:
    """Tests for payload serialization."""

    def test_to_bytes(self):
        """Test filename line then raw content."""
        payload = PlaintextPayload("report.txt", b"Q3 numbers")

        assert payload.to_bytes() == b"report.txt\nQ3 numbers"

    def test_from_bytes_splits_at_first_newline(self):
        """Test content may itself contain newlines."""
        payload = PlaintextPayload.from_bytes(b"notes.md\nline1\nline2\n")

        assert payload.filename == "notes.md"
        assert payload.content == b"line1\nline2\n"

    def test_from_bytes_without_newline(self):
        """Test a payload with no filename line is malformed."""
        with pytest.raises(MalformedArchiveError):
            PlaintextPayload.from_bytes(b"no-newline-here")

    def test_from_bytes_empty(self):
        """Test an empty payload is reported as empty."""
        with pytest.raises(EmptyPayloadError):
            PlaintextPayload.from_bytes(b"")

    def test_from_bytes_rejects_path_in_name(self):
        """Test directory components in the stored name are refused."""
        with pytest.raises(MalformedArchiveError):
            PlaintextPayload.from_bytes(b"../evil.sh\ncontent")

    def test_repr_hides_content(self):
        """Test repr shows size, not bytes."""
        payload = PlaintextPayload("a.txt", b"top secret")

        assert "top secret" not in repr(payload)


class TestArchiveEncode:
    """Tests for ArchiveCodec.encode."""

    def test_layout(self, codec):
        """Test preamble, single marker line, ciphertext."""
        data = codec.encode("report.txt", b"Q3 numbers", "hunter22")

        assert data.startswith(BOOTSTRAP_PREAMBLE + MARKER_LINE)
        preamble, ciphertext = codec.split(data)
        assert preamble == BOOTSTRAP_PREAMBLE
        assert ciphertext

    def test_preamble_is_shell_script(self):
        """Test the preamble starts with a shebang and has no marker line."""
        assert BOOTSTRAP_PREAMBLE.startswith(b"#!/bin/sh\n")
        assert BOOTSTRAP_PREAMBLE.endswith(b"\n")
        assert MARKER_LINE not in BOOTSTRAP_PREAMBLE

    def test_rejects_newline_in_filename(self, codec):
        """Test filenames that would break the payload layout."""
        with pytest.raises(ArchiveEncodeError):
            codec.encode("bad\nname.txt", b"data", "hunter22")

    def test_rejects_empty_filename(self, codec):
        with pytest.raises(ArchiveEncodeError):
            codec.encode("", b"data", "hunter22")

    def test_rejects_directory_in_filename(self, codec):
        with pytest.raises(ArchiveEncodeError):
            codec.encode("sub/report.txt", b"data", "hunter22")

    def test_rejects_empty_password(self, codec):
        with pytest.raises(ArchiveEncodeError):
            codec.encode("report.txt", b"data", "")

    def test_retries_when_ciphertext_contains_marker(self):
        """Test a ciphertext holding a marker line is re-encrypted."""

        class MarkerOnceCipher:
            def __init__(self):
                self.inner = AesCbcCipher(iterations=1_000)
                self.calls = 0

            def encrypt(self, plaintext, password):
                self.calls += 1
                blob = self.inner.encrypt(plaintext, password)
                if self.calls == 1:
                    return b"junk\n" + MARKER_LINE + blob
                return blob

            def decrypt(self, ciphertext, password):
                return self.inner.decrypt(ciphertext, password)

        cipher = MarkerOnceCipher()
        codec = ArchiveCodec(cipher)

        data = codec.encode("a.txt", b"data", "hunter22")

        assert cipher.calls == 2
        assert codec.decode(data, "hunter22").content == b"data"


class TestArchiveDecode:
    """Tests for ArchiveCodec.decode."""

    def test_roundtrip(self, codec):
        """Test decode(encode(x)) == x."""
        content = bytes(range(256)) * 4

        payload = codec.decode(codec.encode("blob.bin", content, "hunter22"), "hunter22")

        assert payload.filename == "blob.bin"
        assert payload.content == content

    def test_roundtrip_empty_content(self, codec):
        """Test an empty file survives (payload is still the filename line)."""
        payload = codec.decode(codec.encode("empty.txt", b"", "hunter22"), "hunter22")

        assert payload.filename == "empty.txt"
        assert payload.content == b""

    def test_wrong_password(self, codec):
        """Test a wrong password never yields a result."""
        data = codec.encode("report.txt", b"Q3 numbers", "hunter22")

        with pytest.raises(WrongPasswordOrCorruptError):
            codec.decode(data, "hunter23")

    def test_corrupted_ciphertext(self, codec):
        """Test damaged ciphertext looks the same as a wrong password."""
        data = bytearray(codec.encode("report.txt", b"Q3 numbers", "hunter22"))
        data[-40] ^= 0xFF

        with pytest.raises(WrongPasswordOrCorruptError):
            codec.decode(bytes(data), "hunter22")

    def test_missing_marker(self, codec):
        with pytest.raises(MalformedArchiveError):
            codec.decode(b"#!/bin/sh\necho hello\n", "hunter22")

    def test_repeated_marker(self, codec):
        data = codec.encode("report.txt", b"Q3", "hunter22")

        with pytest.raises(MalformedArchiveError):
            codec.decode(MARKER_LINE + data, "hunter22")

    def test_marker_must_start_a_line(self, codec):
        """Test a marker embedded mid-line is not a marker."""
        with pytest.raises(MalformedArchiveError):
            codec.decode(b"text " + MARKER_LINE + b"cipher", "hunter22")

    def test_marker_at_file_start(self, codec, cipher):
        """Test a bare marker + ciphertext archive is accepted."""
        ciphertext = cipher.encrypt(b"a.txt\nhi", "hunter22")

        payload = codec.decode(MARKER_LINE + ciphertext, "hunter22")

        assert payload.content == b"hi"

    def test_nothing_after_marker(self, codec):
        with pytest.raises(EmptyPayloadError):
            codec.decode(BOOTSTRAP_PREAMBLE + MARKER_LINE, "hunter22")

    def test_decrypted_payload_empty(self, codec, cipher):
        """Test a ciphertext that decrypts to nothing."""
        data = BOOTSTRAP_PREAMBLE + MARKER_LINE + cipher.encrypt(b"", "hunter22")

        with pytest.raises(EmptyPayloadError):
            codec.decode(data, "hunter22")

    def test_payload_without_filename_line(self, codec, cipher):
        data = BOOTSTRAP_PREAMBLE + MARKER_LINE + cipher.encrypt(b"no newline", "hunter22")

        with pytest.raises(MalformedArchiveError):
            codec.decode(data, "hunter22")


class TestArchiveFiles:
    """Tests for read/extract/is_archive."""

    def test_is_archive(self):
        assert ArchiveCodec.is_archive(Path("report.txt.senc"))
        assert ArchiveCodec.is_archive("REPORT.SENC")
        assert not ArchiveCodec.is_archive("report.txt")

    def test_extract_writes_next_to_archive(self, codec, tmp_path):
        """Test extraction restores the original name beside the archive."""
        archive = tmp_path / "report.txt.senc"
        archive.write_bytes(codec.encode("report.txt", b"Q3 numbers", "hunter22"))

        written = codec.extract(archive, "hunter22")

        assert written == tmp_path / "report.txt"
        assert written.read_bytes() == b"Q3 numbers"

    def test_extract_to_output_dir(self, codec, tmp_path):
        archive = tmp_path / "report.txt.senc"
        archive.write_bytes(codec.encode("report.txt", b"Q3", "hunter22"))
        out = tmp_path / "out"
        out.mkdir()

        written = codec.extract(archive, "hunter22", output_dir=out)

        assert written == out / "report.txt"

    def test_extract_refuses_to_overwrite_archive(self, codec, tmp_path):
        """Test an archive whose stored name equals its own name."""
        archive = tmp_path / "loop.senc"
        archive.write_bytes(codec.encode("loop.senc", b"data", "hunter22"))

        with pytest.raises(MalformedArchiveError):
            codec.extract(archive, "hunter22")

        assert archive.read_bytes().startswith(BOOTSTRAP_PREAMBLE)

    def test_extract_wrong_password_writes_nothing(self, codec, tmp_path):
        archive = tmp_path / "report.txt.senc"
        archive.write_bytes(codec.encode("report.txt", b"Q3", "hunter22"))

        with pytest.raises(WrongPasswordOrCorruptError):
            codec.extract(archive, "wrong-pass")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["report.txt.senc"]
