"""Unit tests for the decrypt/encrypt pipeline."""

import threading
from pathlib import Path

import pytest

from secureviewer.core.errors import (
    DecryptionFailedError,
    InvalidPasswordError,
    IOFailureError,
    NoDecryptedOutputFoundError,
    PasswordMismatchError,
    WrongPasswordOrCorruptError,
)
from secureviewer.core.file_ops.extract import ExtractionResult
from secureviewer.core.file_ops.pipeline import PipelineState, VaultPipeline
from secureviewer.core.file_ops.workspace import Workspace


class SilentExtractor:
    """Interpreter that reports success without writing anything."""

    def run(self, archive, password, workdir):
        return ExtractionResult(0, "nothing to see")


class ChattyExtractor:
    """Interpreter that writes two files."""

    def run(self, archive, password, workdir):
        (workdir / "one.txt").write_bytes(b"1")
        (workdir / "two.txt").write_bytes(b"2")
        return ExtractionResult(0, "wrote two files")


class TestDecrypt:
    """Tests for VaultPipeline.decrypt."""

    def test_decrypt_to_workspace(self, pipeline, make_archive, password, temp_root):
        archive = make_archive("report.txt", b"Q3 numbers")

        plain = pipeline.decrypt(archive, password)

        assert plain.name == "report.txt"
        assert plain.read_bytes() == b"Q3 numbers"
        assert plain.parent.parent == temp_root
        assert pipeline.state is PipelineState.VIEWING
        assert pipeline.current_file == plain
        assert pipeline.source_archive == archive.resolve()
        assert pipeline.workspaces.time_remaining() is not None

    def test_archive_untouched(self, pipeline, make_archive, password):
        archive = make_archive("report.txt", b"Q3 numbers")
        before = archive.read_bytes()

        pipeline.decrypt(archive, password)

        assert archive.read_bytes() == before
        assert not (archive.parent / "report.txt").exists()

    def test_wrong_password_tears_down(self, pipeline, make_archive, temp_root):
        archive = make_archive("report.txt", b"Q3 numbers")

        with pytest.raises(WrongPasswordOrCorruptError):
            pipeline.decrypt(archive, "not-the-password")

        assert pipeline.state is PipelineState.IDLE
        assert pipeline.current_file is None
        assert list(temp_root.iterdir()) == []

    def test_missing_archive(self, pipeline, tmp_path):
        with pytest.raises(IOFailureError):
            pipeline.decrypt(tmp_path / "nope.senc", "whatever")

        assert pipeline.state is PipelineState.IDLE

    def test_second_decrypt_replaces_first(self, pipeline, make_archive, password):
        """Test a new decrypt wipes the previous workspace first."""
        first = pipeline.decrypt(make_archive("a.txt", b"first"), password)
        second = pipeline.decrypt(make_archive("b.txt", b"second"), password)

        assert not first.exists()
        assert not first.parent.exists()
        assert second.read_bytes() == b"second"

    def test_no_output(self, manager, codec, make_archive, password, temp_root):
        pipeline = VaultPipeline(manager, codec=codec, extractor=SilentExtractor())

        with pytest.raises(NoDecryptedOutputFoundError) as excinfo:
            pipeline.decrypt(make_archive("a.txt", b"data"), password)

        assert excinfo.value.output == "nothing to see"
        assert list(temp_root.iterdir()) == []

    def test_ambiguous_output(self, manager, codec, make_archive, password):
        pipeline = VaultPipeline(manager, codec=codec, extractor=ChattyExtractor())

        with pytest.raises(DecryptionFailedError) as excinfo:
            pipeline.decrypt(make_archive("a.txt", b"data"), password)

        assert not isinstance(excinfo.value, NoDecryptedOutputFoundError)
        assert pipeline.state is PipelineState.IDLE

    def test_clear(self, pipeline, make_archive, password):
        plain = pipeline.decrypt(make_archive("a.txt", b"data"), password)

        pipeline.clear()

        assert not plain.exists()
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.workspaces.time_remaining() is None


class TestEncrypt:
    """Tests for VaultPipeline.encrypt."""

    def test_encrypt_beside_original(self, pipeline, codec, docs_dir):
        plain = docs_dir / "notes.md"
        plain.write_bytes(b"# notes")

        archive = pipeline.encrypt(plain, "new-password", "new-password")

        assert archive == docs_dir / "notes.md.senc"
        payload = codec.read(archive, "new-password")
        assert payload.filename == "notes.md"
        assert payload.content == b"# notes"
        assert plain.exists()
        assert pipeline.state is PipelineState.IDLE

    def test_encrypt_to_output_dir(self, pipeline, docs_dir, tmp_path):
        plain = docs_dir / "notes.md"
        plain.write_bytes(b"# notes")
        out = tmp_path / "out"
        out.mkdir()

        archive = pipeline.encrypt(plain, "new-password", "new-password", output_dir=out)

        assert archive == out / "notes.md.senc"

    def test_short_password(self, pipeline, docs_dir):
        plain = docs_dir / "notes.md"
        plain.write_bytes(b"# notes")

        with pytest.raises(InvalidPasswordError):
            pipeline.encrypt(plain, "short", "short")

        assert not (docs_dir / "notes.md.senc").exists()

    def test_password_with_newline(self, pipeline, docs_dir):
        plain = docs_dir / "notes.md"
        plain.write_bytes(b"# notes")

        with pytest.raises(InvalidPasswordError):
            pipeline.encrypt(plain, "line\nbreak", "line\nbreak")

    def test_mismatch(self, pipeline, docs_dir):
        plain = docs_dir / "notes.md"
        plain.write_bytes(b"# notes")

        with pytest.raises(PasswordMismatchError):
            pipeline.encrypt(plain, "password-1", "password-2")

        assert not (docs_dir / "notes.md.senc").exists()

    def test_password_checked_before_file(self, pipeline, tmp_path):
        """Test password errors win even when the file does not exist."""
        with pytest.raises(PasswordMismatchError):
            pipeline.encrypt(tmp_path / "missing.txt", "password-1", "password-2")

    def test_missing_plaintext(self, pipeline, tmp_path):
        with pytest.raises(IOFailureError):
            pipeline.encrypt(tmp_path / "missing.txt", "password-1", "password-1")

    def test_retire_plaintext(self, pipeline, docs_dir):
        plain = docs_dir / "notes.md"
        plain.write_bytes(b"# notes")

        archive = pipeline.encrypt(plain, "new-password", "new-password", retire_plaintext=True)

        assert archive.exists()
        assert not plain.exists()

    def test_reencrypt_from_workspace(self, pipeline, codec, make_archive, password, docs_dir):
        """Test edited plaintext goes back beside its source archive."""
        archive = make_archive("report.txt", b"draft")
        plain = pipeline.decrypt(archive, password)
        plain.write_bytes(b"final")

        written = pipeline.encrypt(plain, "other-password", "other-password")

        assert written == docs_dir / "report.txt.senc"
        assert codec.read(written, "other-password").content == b"final"
        assert not plain.exists()
        assert pipeline.state is PipelineState.IDLE
        assert list(docs_dir.glob("*.tmp")) == []

    def test_expiry_racing_save_waits_for_read(self, pipeline, codec, make_archive, password, monkeypatch):
        """Test an expiry that fires mid-save cannot zero the plaintext before it is read."""
        archive = make_archive("report.txt", b"precious data")
        plain = pipeline.decrypt(archive, password)
        plain.write_bytes(b"precious data, edited")
        manager = pipeline.workspaces
        token = manager._armed_token
        expiry_threads = []
        original_contains = Workspace.contains

        def contains_then_expire(self, path):
            if not expiry_threads:
                worker = threading.Thread(target=manager._on_expired, args=(token,))
                worker.start()
                expiry_threads.append(worker)
                worker.join(0.2)
            return original_contains(self, path)

        monkeypatch.setattr(Workspace, "contains", contains_then_expire)

        pipeline.encrypt(plain, password, password)
        expiry_threads[0].join(5)

        assert not expiry_threads[0].is_alive()
        assert codec.read(archive, password).content == b"precious data, edited"
        assert not plain.exists()
        assert pipeline.state is PipelineState.IDLE

    def test_save_after_expiry_fails(self, pipeline, codec, make_archive, password):
        archive = make_archive("report.txt", b"precious data")
        plain = pipeline.decrypt(archive, password)
        manager = pipeline.workspaces

        manager._on_expired(manager._armed_token)

        with pytest.raises(IOFailureError):
            pipeline.encrypt(plain, password, password)

        assert codec.read(archive, password).content == b"precious data"
        assert pipeline.state is PipelineState.IDLE
