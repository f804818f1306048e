"""
Storage package for workspace-sync.

Embedding stores keyed by ``path#chunkIndex`` with in-memory and Qdrant backends.
"""

from .base import EmbeddingStore, InMemoryEmbeddingStore
from .qdrant import QdrantEmbeddingStore
from .utils import key_to_point_id

__all__ = [
    "EmbeddingStore",
    "InMemoryEmbeddingStore",
    "QdrantEmbeddingStore",
    "key_to_point_id",
]
