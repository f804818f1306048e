"""
Error taxonomy for workspace-sync.

Build errors are fatal to a single build call. Encryption and embedding errors
are isolated per file and aggregated by the indexer. Store errors propagate to
the caller of the indexer.
"""

from typing import Optional


class WorkspaceSyncError(Exception):
    """Base class for all workspace-sync errors"""


class BuildError(WorkspaceSyncError):
    """Malformed path mapping passed to the tree builder"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class EncryptionError(WorkspaceSyncError):
    """Cipher misconfiguration or authentication failure on decrypt"""


class EmbeddingError(WorkspaceSyncError):
    """Embedding service failure or timeout"""

    def __init__(self, message: str, path: Optional[str] = None, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.chunk_index = chunk_index


class StoreError(WorkspaceSyncError):
    """Persistent embedding store unavailable or rejected an operation"""
