"""
Archive discovery: fingerprint index, incremental walk, filesystem watches,
and the single-writer service that owns them.
"""

from secureviewer.core.discovery.archive_index import ArchiveIndex, IndexEntry
from secureviewer.core.discovery.scanner import IncrementalScanner, ScanProgress, ScanState
from secureviewer.core.discovery.service import DiscoveryService
from secureviewer.core.discovery.watcher import IndexWatcher

__all__ = [
    "ArchiveIndex",
    "IndexEntry",
    "IncrementalScanner",
    "ScanProgress",
    "ScanState",
    "DiscoveryService",
    "IndexWatcher",
]
