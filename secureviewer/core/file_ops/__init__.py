"""
SecureViewer File Operations Module
===================================

Archive format, ephemeral workspaces and the decrypt/encrypt pipeline.

Components:
- archive.py: Self-decrypting archive codec and bootstrap preamble
- extract.py: In-process and self-extracting archive interpreters
- secure_delete.py: Overwrite-then-remove deletion
- workspace.py: Ephemeral workspaces with auto-expiry
- pipeline.py: Decrypt-to-view and encrypt-back state machine
"""

from secureviewer.core.file_ops.archive import (
    ARCHIVE_EXTENSION,
    BOOTSTRAP_PREAMBLE,
    MARKER_LINE,
    ArchiveCodec,
    PlaintextPayload,
)
from secureviewer.core.file_ops.extract import (
    ExtractionResult,
    NativeExtractor,
    SubprocessExtractor,
)
from secureviewer.core.file_ops.secure_delete import (
    SecureDeleteError,
    WipeReport,
    secure_delete,
    secure_delete_directory,
    wipe_file,
)
from secureviewer.core.file_ops.workspace import (
    ExpiryTimer,
    Workspace,
    WorkspaceManager,
)
from secureviewer.core.file_ops.pipeline import PipelineState, VaultPipeline

__all__ = [
    "ARCHIVE_EXTENSION",
    "BOOTSTRAP_PREAMBLE",
    "MARKER_LINE",
    "ArchiveCodec",
    "PlaintextPayload",
    "ExtractionResult",
    "NativeExtractor",
    "SubprocessExtractor",
    "SecureDeleteError",
    "WipeReport",
    "secure_delete",
    "secure_delete_directory",
    "wipe_file",
    "ExpiryTimer",
    "Workspace",
    "WorkspaceManager",
    "PipelineState",
    "VaultPipeline",
]
