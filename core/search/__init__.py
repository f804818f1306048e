"""
Search package for workspace-sync.

Cosine-similarity search over the embedding store.
"""

from .engine import SemanticSearchEngine, SearchQuery, cosine_similarity, rank_entries

__all__ = [
    "SemanticSearchEngine",
    "SearchQuery",
    "cosine_similarity",
    "rank_entries",
]
