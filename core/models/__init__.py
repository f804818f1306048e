"""
Core data models for workspace-sync

Tree snapshots, storage entries, operation results and configuration.
"""

from .tree import FileNode, MerkleTree, SyncDelta
from .storage import (
    OperationStatus,
    OperationResult,
    EmbeddingEntry,
    IndexingSummary,
    SearchHit,
    make_key,
    split_key,
)
from .config import (
    SyncConfig,
    PipelineConfig,
    IndexerConfig,
    SearchConfig,
    WorkspaceConfig,
    EmbedderConfig,
    QdrantConfig,
    EngineConfig,
    GlobalSettings,
)

__all__ = [
    # Trees
    "FileNode",
    "MerkleTree",
    "SyncDelta",

    # Storage
    "OperationStatus",
    "OperationResult",
    "EmbeddingEntry",
    "IndexingSummary",
    "SearchHit",
    "make_key",
    "split_key",

    # Configuration
    "SyncConfig",
    "PipelineConfig",
    "IndexerConfig",
    "SearchConfig",
    "WorkspaceConfig",
    "EmbedderConfig",
    "QdrantConfig",
    "EngineConfig",
    "GlobalSettings",
]
