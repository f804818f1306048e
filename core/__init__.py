"""
workspace-sync core package

Merkle-tree workspace synchronization with incremental, encrypted semantic indexing.
"""

__version__ = "1.0.0"

from .errors import WorkspaceSyncError, BuildError, EncryptionError, EmbeddingError, StoreError
from .models import FileNode, MerkleTree, SyncDelta, IndexingSummary, SearchHit, EngineConfig

__all__ = [
    "WorkspaceSyncError",
    "BuildError",
    "EncryptionError",
    "EmbeddingError",
    "StoreError",
    "FileNode",
    "MerkleTree",
    "SyncDelta",
    "IndexingSummary",
    "SearchHit",
    "EngineConfig",
]
