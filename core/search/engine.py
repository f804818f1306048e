"""
Semantic search over stored chunk embeddings.

Scores every stored entry against the query embedding by cosine similarity,
keeps scores at or above the threshold, collapses chunks to their best-scoring
file and returns the top paths.
"""

import logging
import time
from typing import Dict, List, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ..embeddings.base import BaseEmbedder
from ..models.config import SearchConfig
from ..models.storage import EmbeddingEntry, SearchHit
from ..storage.base import EmbeddingStore

logger = logging.getLogger(__name__)


class SearchQuery(BaseModel):
    """Typed search request; unset fields fall back to SearchConfig defaults"""
    model_config = ConfigDict(str_strip_whitespace=True)

    text: str
    top_k: Optional[int] = Field(default=None, ge=1)
    threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one vector against each row of a matrix.

    Zero-norm vectors score 0 instead of NaN.
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.zeros(len(matrix), dtype=np.float64)
    nonzero = norms > 0
    scores[nonzero] = dots[nonzero] / norms[nonzero]
    return scores


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is all zeros"""
    return float(cosine_scores(np.asarray(a, dtype=np.float64),
                               np.asarray([b], dtype=np.float64))[0])


def rank_entries(
    query_vector: List[float],
    entries: List[EmbeddingEntry],
    top_k: int,
    threshold: float
) -> List[SearchHit]:
    """
    Rank stored entries against a query vector.

    Args:
        query_vector: Query embedding
        entries: Candidate entries
        top_k: Maximum number of paths to return
        threshold: Minimum cosine similarity (inclusive)

    Returns:
        Best hit per path, highest score first, ties by path ascending
    """
    if not entries:
        return []

    query = np.asarray(query_vector, dtype=np.float64)
    usable = [e for e in entries if len(e.vector) == len(query)]
    if len(usable) != len(entries):
        logger.warning(f"Ignoring {len(entries) - len(usable)} entries with mismatched dimensions")
    if not usable:
        return []

    matrix = np.asarray([e.vector for e in usable], dtype=np.float64)
    scores = cosine_scores(query, matrix)

    best: Dict[str, float] = {}
    for entry, score in zip(usable, scores):
        if score < threshold:
            continue
        path = entry.path
        if path not in best or score > best[path]:
            best[path] = float(score)

    ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))
    return [SearchHit(path=path, score=score) for path, score in ranked[:top_k]]


class SemanticSearchEngine:
    """Query-time counterpart of the incremental indexer"""

    def __init__(
        self,
        embedder: BaseEmbedder,
        store: EmbeddingStore,
        config: Optional[SearchConfig] = None
    ):
        self.embedder = embedder
        self.store = store
        self.config = config or SearchConfig()

    async def search(
        self,
        query: Union[str, SearchQuery],
        top_k: Optional[int] = None
    ) -> List[SearchHit]:
        """
        Search stored embeddings.

        Args:
            query: Query text or a SearchQuery
            top_k: Overrides the query's and the configured result limit

        Returns:
            Ranked list of (path, score) hits

        Raises:
            EmbeddingError: If the query cannot be embedded
            StoreError: If the store cannot be read
        """
        if isinstance(query, str):
            query = SearchQuery(text=query)

        limit = top_k or query.top_k or self.config.top_k
        threshold = query.threshold if query.threshold is not None else self.config.threshold

        if not query.text:
            return []

        start_time = time.time()
        query_vector = await self.embedder.embed_query(query.text)
        entries = await self.store.entries()
        hits = rank_entries(query_vector, entries, limit, threshold)

        logger.debug(
            f"Search '{query.text[:40]}' scored {len(entries)} entries, "
            f"{len(hits)} hits in {(time.time() - start_time) * 1000:.2f}ms"
        )
        return hits
