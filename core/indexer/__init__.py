"""
Indexing for workspace-sync.

Key Components:
- ContentPipeline: Hashing, AES-256-GCM encryption and fixed-size chunking
- IncrementalIndexer: Applies sync deltas to an embedding store with per-path isolation
"""

from .pipeline import ContentPipeline, EncryptedChunk, ProcessedFile, chunk_text
from .incremental import IncrementalIndexer

__all__ = [
    "ContentPipeline",
    "EncryptedChunk",
    "ProcessedFile",
    "chunk_text",
    "IncrementalIndexer",
]
