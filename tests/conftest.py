"""Shared pytest fixtures for SecureViewer tests."""

from pathlib import Path

import pytest

from secureviewer.core.crypto.cipher import AesCbcCipher
from secureviewer.core.file_ops.archive import ArchiveCodec
from secureviewer.core.file_ops.pipeline import VaultPipeline
from secureviewer.core.file_ops.workspace import WorkspaceManager

# Low iteration count keeps key derivation fast in tests
TEST_ITERATIONS = 1_000
TEST_PASSWORD = "correct-horse"


@pytest.fixture
def password() -> str:
    return TEST_PASSWORD


@pytest.fixture
def cipher() -> AesCbcCipher:
    return AesCbcCipher(iterations=TEST_ITERATIONS)


@pytest.fixture
def codec(cipher: AesCbcCipher) -> ArchiveCodec:
    return ArchiveCodec(cipher)


@pytest.fixture
def temp_root(tmp_path: Path) -> Path:
    """Directory that stands in for the system temp dir."""
    root = tmp_path / "tmp"
    root.mkdir()
    return root


@pytest.fixture
def manager(temp_root: Path):
    """WorkspaceManager rooted in the test's temp dir, wiped after the test."""
    mgr = WorkspaceManager(temp_root=temp_root, expiry_seconds=600, register_atexit=False)
    yield mgr
    mgr.shutdown()


@pytest.fixture
def pipeline(manager: WorkspaceManager, codec: ArchiveCodec) -> VaultPipeline:
    return VaultPipeline(manager, codec=codec)


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    """Persistent-storage directory holding user files and archives."""
    docs = tmp_path / "docs"
    docs.mkdir()
    return docs


@pytest.fixture
def make_archive(codec: ArchiveCodec, docs_dir: Path):
    """Factory writing an archive for (filename, content) into docs_dir."""

    def _make(filename: str, content: bytes, password: str = TEST_PASSWORD, directory: Path = None) -> Path:
        target_dir = directory or docs_dir
        target = target_dir / f"{filename}.senc"
        target.write_bytes(codec.encode(filename, content, password))
        return target

    return _make
