"""
Vault Pipeline
==============

Decrypt an archive into a workspace for viewing, and encrypt plaintext
back into an archive.

States:
    IDLE -> DECRYPTING -> VIEWING -> (IDLE | ENCRYPTING -> IDLE)

Any failure tears down the workspace and returns to IDLE (decrypt) or
to the state held before the call (encrypt). Side effects stay inside
the live workspace and the archive's own directory.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Final, Optional

from secureviewer.core.errors import (
    DecryptionFailedError,
    IOFailureError,
    NoDecryptedOutputFoundError,
    PermissionDeniedError,
)
from secureviewer.core.file_ops.archive import ARCHIVE_EXTENSION, ArchiveCodec
from secureviewer.core.file_ops.extract import Extractor, NativeExtractor
from secureviewer.core.file_ops.secure_delete import SecureDeleteError, secure_delete
from secureviewer.core.file_ops.workspace import WorkspaceManager
from secureviewer.utils.paths import random_suffix
from secureviewer.utils.validators import (
    ValidationError,
    validate_new_password,
    validate_path_safe,
)


DEFAULT_OUTPUT_WINDOW_SECONDS: Final[float] = 10.0
DEFAULT_MIN_PASSWORD_LENGTH: Final[int] = 6

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = "idle"
    DECRYPTING = "decrypting"
    VIEWING = "viewing"
    ENCRYPTING = "encrypting"


class VaultPipeline:
    """
    Orchestrates workspace, interpreter and codec for one file at a time.

    Usage:
        pipeline = VaultPipeline(WorkspaceManager())
        plain = pipeline.decrypt(Path("report.txt.senc"), "hunter22")
        # ... external viewer shows / edits ``plain`` ...
        pipeline.encrypt(plain, "hunter22", "hunter22")
    """

    def __init__(
        self,
        workspaces: WorkspaceManager,
        codec: Optional[ArchiveCodec] = None,
        extractor: Optional[Extractor] = None,
        min_password_length: int = DEFAULT_MIN_PASSWORD_LENGTH,
        output_window_seconds: float = DEFAULT_OUTPUT_WINDOW_SECONDS,
        archive_extension: str = ARCHIVE_EXTENSION,
    ) -> None:
        self._workspaces = workspaces
        self._codec = codec if codec is not None else ArchiveCodec()
        self._extractor = extractor if extractor is not None else NativeExtractor(self._codec)
        self._min_password_length = min_password_length
        self._output_window = output_window_seconds
        self._archive_extension = archive_extension
        self._lock = threading.RLock()
        self._state = PipelineState.IDLE
        self._current_file: Optional[Path] = None
        self._source_archive: Optional[Path] = None

        self._workspaces.on_expired(self._on_workspace_expired)

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_file(self) -> Optional[Path]:
        """Decrypted file currently being viewed, if any."""
        return self._current_file

    @property
    def source_archive(self) -> Optional[Path]:
        return self._source_archive

    @property
    def workspaces(self) -> WorkspaceManager:
        return self._workspaces

    @property
    def codec(self) -> ArchiveCodec:
        return self._codec

    def decrypt(self, archive_path: Path | str, password: str) -> Path:
        """
        Decrypt an archive into a fresh workspace.

        Args:
            archive_path: Archive on persistent storage
            password: Archive password

        Returns:
            Path of the single decrypted file inside the workspace

        Raises:
            IOFailureError: Archive missing or unreadable
            NoDecryptedOutputFoundError: Interpreter succeeded but wrote nothing
            DecryptionFailedError: More than one candidate output, or run failure
            ArchiveError: Propagated from the interpreter
        """
        with self._lock:
            self._teardown()
            self._state = PipelineState.DECRYPTING

            try:
                try:
                    archive = validate_path_safe(archive_path, must_exist=True, allow_symlinks=True)
                except ValidationError as e:
                    raise IOFailureError(f"Archive not found: {archive_path}") from e
                if not archive.is_file():
                    raise IOFailureError(f"Archive is not a regular file: {archive}")

                workspace = self._workspaces.create()
                staged = self._workspaces.stage(workspace, archive)
                result = self._extractor.run(staged, password, workspace.path)

                since = time.time() - self._output_window
                candidates = workspace.recent_files(since, self._archive_extension)
                if not candidates:
                    raise NoDecryptedOutputFoundError(output=result.output)
                if len(candidates) > 1:
                    raise DecryptionFailedError(
                        "Archive produced more than one file.", output=result.output
                    )

                plain = workspace.track(candidates[0])
                self._workspaces.arm_expiry()
            except Exception:
                self._teardown()
                raise

            self._current_file = plain
            self._source_archive = archive
            self._state = PipelineState.VIEWING
            logger.info("Decrypted %s into workspace", archive.name)
            return plain

    def encrypt(
        self,
        plain_path: Path | str,
        password: str,
        confirmation: str,
        output_dir: Optional[Path | str] = None,
        retire_plaintext: bool = False,
    ) -> Path:
        """
        Encrypt a plaintext file into ``<name>.senc``.

        Password checks run before any file is touched. When the file lives
        in the live workspace, the archive goes next to the archive it was
        decrypted from and the workspace is torn down afterwards.

        Args:
            plain_path: File to encrypt
            password: New archive password
            confirmation: Must equal ``password``
            output_dir: Where to write the archive (default: see above)
            retire_plaintext: Securely delete the plaintext afterwards

        Returns:
            Path of the written archive

        Raises:
            InvalidPasswordError: Password too short or contains a line break
            PasswordMismatchError: Confirmation differs
            IOFailureError: Plaintext missing, its workspace expired, or read/write failure
            ArchiveEncodeError: Codec failure
        """
        with self._lock:
            validate_new_password(password, confirmation, self._min_password_length)

            try:
                plain = validate_path_safe(plain_path, must_exist=True)
            except ValidationError as e:
                raise IOFailureError(f"Cannot encrypt {plain_path}: {e}") from e
            if not plain.is_file():
                raise IOFailureError(f"Not a regular file: {plain}")

            previous = self._state
            self._state = PipelineState.ENCRYPTING
            try:
                # Expiry wipes under the manager lock, so the workspace check
                # and the read happen under it too
                with self._workspaces.lock:
                    workspace = self._workspaces.live_workspace
                    in_workspace = workspace is not None and workspace.contains(plain)
                    if not in_workspace and self._is_current_file(plain):
                        raise IOFailureError(
                            f"Workspace expired before {plain.name} was saved."
                        )

                    if output_dir is not None:
                        destination = Path(output_dir)
                    elif in_workspace and workspace.source_archive is not None:
                        destination = workspace.source_archive.parent
                    else:
                        destination = plain.parent

                    try:
                        content = plain.read_bytes()
                    except PermissionError as e:
                        raise PermissionDeniedError(f"Cannot read {plain}") from e
                    except OSError as e:
                        raise IOFailureError(f"Cannot read {plain}: {e.strerror}") from e

                data = self._codec.encode(plain.name, content, password)
                target = destination / f"{plain.name}{self._archive_extension}"
                self._write_atomic(target, data)

                if retire_plaintext and not in_workspace:
                    try:
                        secure_delete(plain, passes=self._workspaces.wipe_passes)
                    except SecureDeleteError as e:
                        raise IOFailureError(f"Archive written but plaintext not removed: {e}") from e
            except Exception:
                self._state = previous
                raise

            logger.info("Encrypted %s to %s", plain.name, target)

            if in_workspace:
                self._teardown()
            else:
                self._state = previous
            return target

    def clear(self) -> None:
        """Tear down the workspace and return to IDLE."""
        with self._lock:
            self._teardown()

    def _is_current_file(self, path: Path) -> bool:
        return self._current_file is not None and path == self._current_file.resolve()

    def _on_workspace_expired(self, report) -> None:
        with self._lock:
            if self._state is PipelineState.VIEWING and self._workspaces.live_workspace is None:
                self._current_file = None
                self._source_archive = None
                self._state = PipelineState.IDLE

    def _teardown(self) -> None:
        self._workspaces.secure_delete()
        self._current_file = None
        self._source_archive = None
        self._state = PipelineState.IDLE

    @staticmethod
    def _write_atomic(target: Path, data: bytes) -> None:
        tmp = target.with_name(f".{target.name}.{random_suffix(8)}.tmp")
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except OSError as e:
            if tmp.exists():
                tmp.unlink()
            if isinstance(e, PermissionError):
                raise PermissionDeniedError(f"Cannot write {target}") from e
            raise IOFailureError(f"Cannot write {target}: {e.strerror}") from e
