"""
SecureViewer Service
====================

Boundary facade for presentation layers. Every vault error is turned
into an OperationResult here; nothing below this module returns error
values instead of raising.

Usage:
    service = create_service()
    result = service.decrypt(Path("~/docs/report.txt.senc").expanduser(), password)
    if result.ok:
        open_in_viewer(result.path)
    else:
        show_error(result.message)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from secureviewer.core.config import SecureConfig
from secureviewer.core.crypto.cipher import AesCbcCipher, CipherBackend
from secureviewer.core.discovery.archive_index import ArchiveIndex
from secureviewer.core.discovery.scanner import ScanProgress
from secureviewer.core.discovery.service import DiscoveryService
from secureviewer.core.errors import VaultError
from secureviewer.core.file_ops.archive import ArchiveCodec
from secureviewer.core.file_ops.extract import NativeExtractor, SubprocessExtractor
from secureviewer.core.file_ops.pipeline import PipelineState, VaultPipeline
from secureviewer.core.file_ops.secure_delete import WipeReport
from secureviewer.core.file_ops.workspace import WorkspaceManager


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a decrypt or encrypt request."""

    ok: bool
    path: Optional[Path] = None
    error: Optional[VaultError] = None
    message: str = ""

    @classmethod
    def success(cls, path: Path, message: str = "") -> "OperationResult":
        return cls(ok=True, path=path, message=message)

    @classmethod
    def failure(cls, error: VaultError) -> "OperationResult":
        return cls(ok=False, error=error, message=str(error))


@dataclass(frozen=True)
class ViewerStatus:
    """Snapshot for a status bar."""

    state: PipelineState
    current_file: Optional[Path]
    time_remaining: Optional[float]
    search: ScanProgress

    @property
    def timer_text(self) -> str:
        if self.time_remaining is None:
            return ""
        minutes, seconds = divmod(int(self.time_remaining), 60)
        return f"Temp files will be deleted in: {minutes:02d}:{seconds:02d}"

    def __str__(self) -> str:
        parts = [str(self.search)]
        if self.current_file is not None:
            parts.insert(0, self.current_file.name)
        if self.timer_text:
            parts.append(self.timer_text)
        return " | ".join(parts)


class SecureViewerService:
    """Decrypt, encrypt and discover archives behind one result-returning API."""

    def __init__(
        self,
        pipeline: VaultPipeline,
        discovery: Optional[DiscoveryService] = None,
        default_root: Optional[Path] = None,
    ) -> None:
        self._pipeline = pipeline
        self._discovery = discovery
        self._default_root = default_root if default_root is not None else Path.home()
        self._last_root: Optional[Path] = None

    @property
    def pipeline(self) -> VaultPipeline:
        return self._pipeline

    @property
    def discovery(self) -> Optional[DiscoveryService]:
        return self._discovery

    def decrypt(self, path: Path | str, password: str) -> OperationResult:
        try:
            plain = self._pipeline.decrypt(path, password)
        except VaultError as e:
            logger.warning("Decrypt of %s failed: %s", path, e)
            return OperationResult.failure(e)
        return OperationResult.success(plain, "Decrypted")

    def encrypt(
        self,
        path: Path | str,
        password: str,
        confirmation: str,
        output_dir: Optional[Path | str] = None,
        retire_plaintext: bool = False,
    ) -> OperationResult:
        """
        Encrypt ``path`` into an archive.

        On success a running discovery worker indexes the new archive and
        restarts its scan. Without a worker nothing is queued; the next
        ``discover`` call finds the archive.
        """
        try:
            archive = self._pipeline.encrypt(
                path,
                password,
                confirmation,
                output_dir=output_dir,
                retire_plaintext=retire_plaintext,
            )
        except VaultError as e:
            logger.warning("Encrypt of %s failed: %s", path, e)
            return OperationResult.failure(e)

        if self._discovery is not None and self._discovery.is_running:
            self._discovery.file_changed(archive)
            self._discovery.start_incremental(self._last_root or self._default_root)
        return OperationResult.success(archive, f"File encrypted: {archive.name}")

    def discover(self, root: Optional[Path | str] = None, use_cache: bool = True) -> list[Path]:
        """Blocking archive search under ``root`` (home directory by default)."""
        if self._discovery is None:
            return []
        root = Path(root) if root is not None else self._default_root
        self._last_root = root
        return self._discovery.scan(root, use_cache=use_cache)

    def start_discovery(self, root: Optional[Path | str] = None) -> None:
        """Kick off an incremental search; progress shows up in status()."""
        if self._discovery is None:
            return
        root = Path(root) if root is not None else self._default_root
        self._last_root = root
        self._discovery.start_incremental(root)
        self._discovery.start()

    def discovered(self) -> list[Path]:
        return self._discovery.discovered() if self._discovery is not None else []

    def on_workspace_expired(self, callback: Callable[[WipeReport], None]) -> None:
        self._pipeline.workspaces.on_expired(callback)

    def clear(self) -> None:
        """Wipe the current workspace immediately."""
        self._pipeline.clear()

    def status(self) -> ViewerStatus:
        return ViewerStatus(
            state=self._pipeline.state,
            current_file=self._pipeline.current_file,
            time_remaining=self._pipeline.workspaces.time_remaining(),
            search=self._discovery.progress if self._discovery is not None else ScanProgress(),
        )

    def shutdown(self) -> WipeReport:
        if self._discovery is not None:
            self._discovery.stop()
        report = self._pipeline.workspaces.shutdown()
        logger.info("SecureViewer service shut down")
        return report


def create_service(
    config: Optional[SecureConfig] = None,
    cipher: Optional[CipherBackend] = None,
    register_atexit: bool = True,
) -> SecureViewerService:
    """
    Wire a SecureViewerService from configuration.

    Args:
        config: Configuration (defaults to the singleton)
        cipher: Cipher backend override (defaults to AES-CBC at the
            configured iteration count)
        register_atexit: Wipe workspaces at interpreter exit

    Returns:
        Ready service; discovery is not started until requested
    """
    config = config or SecureConfig.get_instance()
    security = config.security
    discovery_config = config.discovery

    codec = ArchiveCodec(cipher or AesCbcCipher(security.key_derivation_iterations))
    if security.extraction_mode == "subprocess":
        extractor = SubprocessExtractor(timeout=security.extraction_timeout_seconds)
    else:
        extractor = NativeExtractor(codec)

    workspaces = WorkspaceManager(
        temp_root=config.paths.temp_root,
        expiry_seconds=security.auto_expiry_seconds,
        wipe_passes=security.wipe_passes,
        register_atexit=register_atexit,
    )
    pipeline = VaultPipeline(
        workspaces,
        codec=codec,
        extractor=extractor,
        min_password_length=security.min_password_length,
        output_window_seconds=security.output_window_seconds,
        archive_extension=discovery_config.archive_extension,
    )

    index = ArchiveIndex(
        cache_file=config.cache_file,
        archive_extension=discovery_config.archive_extension,
        excluded_dirs=discovery_config.excluded_dirs,
        max_cache_age_days=discovery_config.max_cache_age_days,
    )
    index.load()
    discovery = DiscoveryService(
        index,
        tick_interval_ms=discovery_config.tick_interval_ms,
        watch_enabled=discovery_config.watch_enabled,
    )

    logger.info("%s %s ready (extraction: %s)", config.app.app_name, config.app.version, security.extraction_mode)
    return SecureViewerService(pipeline, discovery)
