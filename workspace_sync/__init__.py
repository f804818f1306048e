"""
workspace-sync - Merkle-tree workspace synchronization with incremental semantic indexing.

Detects which files of a workspace changed between sync cycles by comparing
Merkle trees, then re-embeds only those files into an encrypted vector index
that can be searched by meaning.
"""

__version__ = "1.0.0"

# Package imports for convenient access
from core.models.config import EngineConfig, SyncConfig, SearchConfig
from core.models.tree import MerkleTree, SyncDelta
from core.models.storage import IndexingSummary, SearchHit
from core.sync.engine import WorkspaceSyncEngine
from core.indexer.incremental import IncrementalIndexer
from core.search.engine import SemanticSearchEngine, SearchQuery

__all__ = [
    "EngineConfig",
    "SyncConfig",
    "SearchConfig",
    "MerkleTree",
    "SyncDelta",
    "IndexingSummary",
    "SearchHit",
    "WorkspaceSyncEngine",
    "IncrementalIndexer",
    "SemanticSearchEngine",
    "SearchQuery",
    "__version__",
]
