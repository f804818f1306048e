"""
Merkle-tree workspace synchronization.

Key Components:
- hash_content / hash_directory: SHA-256 content and directory hashing
- TreeBuilder: Flat path mapping to Merkle tree, plus rebasing of failed paths
- TreeDiffer: Pruned tree comparison producing added/modified/deleted deltas
- PeriodicSyncScheduler: Non-overlapping periodic sync cycles
- WorkspaceSyncEngine: Per-workspace coordinator retaining the server tree
- WorkspaceSource: Snapshot providers (in-memory and filesystem)
"""

from .hasher import EMPTY_HASH, hash_content, hash_directory
from .tree_builder import TreeBuilder, parent_path
from .differ import TreeDiffer, diff_trees
from .scheduler import PeriodicSyncScheduler, SchedulerMetrics, TaskStatus
from .source import (
    FileSystemWorkspaceSource,
    InMemoryWorkspaceSource,
    WorkspaceSnapshot,
    WorkspaceSource,
)
from .engine import WorkspaceSyncEngine, SyncEngineMetrics
from .snapshot import load_tree, save_tree

__all__ = [
    "EMPTY_HASH",
    "hash_content",
    "hash_directory",
    "TreeBuilder",
    "parent_path",
    "TreeDiffer",
    "diff_trees",
    "PeriodicSyncScheduler",
    "SchedulerMetrics",
    "TaskStatus",
    "FileSystemWorkspaceSource",
    "InMemoryWorkspaceSource",
    "WorkspaceSnapshot",
    "WorkspaceSource",
    "WorkspaceSyncEngine",
    "SyncEngineMetrics",
    "load_tree",
    "save_tree",
]
