"""
SecureViewer - View encrypted files without leaving plaintext behind
====================================================================

Self-decrypting single-file archives, ephemeral owner-only workspaces
with timed expiry, and incremental archive discovery.

Security Notice:
- No passwords or plaintext are logged
- Plaintext lives only in a workspace that is wiped on completion,
  expiry or shutdown
"""

from secureviewer.core.config import SecureConfig
from secureviewer.core.logging import configure_logging, get_secure_logger
from secureviewer.core.viewer import (
    OperationResult,
    SecureViewerService,
    ViewerStatus,
    create_service,
)

__version__ = "0.1.0"

__all__ = [
    "SecureConfig",
    "configure_logging",
    "get_secure_logger",
    "OperationResult",
    "SecureViewerService",
    "ViewerStatus",
    "create_service",
    "__version__",
]
