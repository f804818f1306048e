"""
Tests for semantic search ranking.
"""

import pytest
from pydantic import ValidationError

from conftest import FakeEmbedder, bag_of_words
from core.errors import EmbeddingError
from core.indexer.incremental import IncrementalIndexer
from core.indexer.pipeline import ContentPipeline
from core.models.config import SearchConfig
from core.models.storage import EmbeddingEntry, SearchHit
from core.models.tree import SyncDelta
from core.search.engine import SearchQuery, SemanticSearchEngine, cosine_similarity, rank_entries
from core.storage.base import InMemoryEmbeddingStore
from core.sync.source import InMemoryWorkspaceSource


def entry(key, vector):
    return EmbeddingEntry(key=key, vector=vector)


class TestCosineSimilarity:
    """Test similarity math"""

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 1.0], [0.0, 0.0]) == 0.0


class TestRankEntries:
    """Test ranking and collapsing of stored chunks"""

    def test_best_chunk_per_path(self):
        entries = [
            entry("a.py#0", [1.0, 0.0]),
            entry("a.py#1", [0.8, 0.6]),
            entry("b.py#0", [0.6, 0.8]),
        ]
        hits = rank_entries([1.0, 0.0], entries, top_k=10, threshold=0.0)

        assert [h.path for h in hits] == ["a.py", "b.py"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[1].score == pytest.approx(0.6)

    def test_threshold_inclusive(self):
        entries = [entry("a.py#0", [0.6, 0.8]), entry("b.py#0", [0.0, 1.0])]
        hits = rank_entries([1.0, 0.0], entries, top_k=10, threshold=0.6)
        assert [h.path for h in hits] == ["a.py"]

    def test_nothing_above_threshold(self):
        hits = rank_entries([1.0, 0.0], [entry("a.py#0", [0.0, 1.0])], top_k=10, threshold=0.5)
        assert hits == []

    def test_ties_break_by_path(self):
        entries = [entry("z.py#0", [1.0, 0.0]), entry("a.py#0", [2.0, 0.0]), entry("m.py#0", [3.0, 0.0])]
        hits = rank_entries([1.0, 0.0], entries, top_k=10, threshold=0.0)
        assert [h.path for h in hits] == ["a.py", "m.py", "z.py"]

    def test_top_k_limits_paths(self):
        entries = [entry(f"f{i}.py#0", [1.0, i / 10]) for i in range(5)]
        hits = rank_entries([1.0, 0.0], entries, top_k=2, threshold=-1.0)
        assert [h.path for h in hits] == ["f0.py", "f1.py"]

    def test_mismatched_dimensions_skipped(self):
        entries = [entry("a.py#0", [1.0, 0.0, 0.0]), entry("b.py#0", [1.0, 0.0])]
        hits = rank_entries([1.0, 0.0], entries, top_k=10, threshold=0.0)
        assert [h.path for h in hits] == ["b.py"]

    def test_empty_store(self):
        assert rank_entries([1.0], [], top_k=5, threshold=0.0) == []

    def test_hits_are_tuples(self):
        hits = rank_entries([1.0, 0.0], [entry("a.py#0", [1.0, 0.0])], top_k=1, threshold=0.0)
        path, score = hits[0]
        assert isinstance(hits[0], SearchHit)
        assert path == "a.py"


class TestSearchQuery:
    """Test query validation"""

    def test_strips_text(self):
        assert SearchQuery(text="  token  ").text == "token"

    def test_invalid_top_k(self):
        with pytest.raises(ValidationError):
            SearchQuery(text="x", top_k=0)

    def test_invalid_threshold(self):
        with pytest.raises(ValidationError):
            SearchQuery(text="x", threshold=1.5)


class TestSemanticSearchEngine:
    """Test end-to-end search over indexed content"""

    async def _indexed_engine(self, files, key, threshold=0.5):
        embedder = FakeEmbedder()
        store = InMemoryEmbeddingStore()
        indexer = IncrementalIndexer(
            InMemoryWorkspaceSource(files), ContentPipeline(), embedder, store, key
        )
        await indexer.index_delta(SyncDelta(added=list(files)))
        return SemanticSearchEngine(embedder, store, SearchConfig(threshold=threshold, top_k=10))

    @pytest.mark.asyncio
    async def test_finds_matching_file(self, encryption_key):
        files = {
            "auth.py": "session refresh token",
            "math.py": "matrix multiply vector",
        }
        engine = await self._indexed_engine(files, encryption_key)

        hits = await engine.search("session refresh token")

        assert hits[0].path == "auth.py"
        assert hits[0].score == pytest.approx(1.0)
        assert "math.py" not in [h.path for h in hits]

    @pytest.mark.asyncio
    async def test_deleted_file_not_returned(self, encryption_key):
        files = {"auth.py": "session refresh token"}
        engine = await self._indexed_engine(files, encryption_key)
        await engine.store.delete_prefix("auth.py#")

        assert await engine.search("session refresh token") == []

    @pytest.mark.asyncio
    async def test_query_overrides(self, encryption_key):
        files = {"a.py": "alpha beta", "b.py": "alpha gamma", "c.py": "alpha delta"}
        engine = await self._indexed_engine(files, encryption_key)

        hits = await engine.search(SearchQuery(text="alpha", top_k=2, threshold=0.0))

        assert len(hits) == 2

    @pytest.mark.asyncio
    async def test_top_k_argument_wins(self, encryption_key):
        files = {"a.py": "alpha beta", "b.py": "alpha gamma"}
        engine = await self._indexed_engine(files, encryption_key, threshold=0.0)

        hits = await engine.search(SearchQuery(text="alpha", top_k=2), top_k=1)

        assert len(hits) == 1

    @pytest.mark.asyncio
    async def test_blank_query(self, encryption_key):
        engine = await self._indexed_engine({"a.py": "alpha"}, encryption_key)
        assert await engine.search("   ") == []

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self):
        engine = SemanticSearchEngine(FakeEmbedder(fail_on=["boom"]), InMemoryEmbeddingStore())
        with pytest.raises(EmbeddingError):
            await engine.search("boom")

    @pytest.mark.asyncio
    async def test_uses_store_vectors(self):
        store = InMemoryEmbeddingStore()
        await store.upsert([entry("x.md#0", bag_of_words("release notes"))])
        engine = SemanticSearchEngine(FakeEmbedder(), store, SearchConfig(threshold=0.9))

        hits = await engine.search("release notes")

        assert hits == [SearchHit(path="x.md", score=pytest.approx(1.0))]
