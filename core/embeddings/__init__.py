"""
Embedding providers for workspace-sync.
"""

from .base import (
    BaseEmbedder,
    EmbedderProtocol,
    EmbeddingResponse,
)
from .sentence_transformer import SentenceTransformerEmbedder

__all__ = [
    "BaseEmbedder",
    "EmbedderProtocol",
    "EmbeddingResponse",
    "SentenceTransformerEmbedder",
]
