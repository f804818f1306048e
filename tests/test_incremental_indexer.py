"""
Tests for delta-driven incremental indexing.
"""

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest

from conftest import FakeEmbedder
from core.errors import StoreError
from core.indexer.incremental import IncrementalIndexer
from core.indexer.pipeline import ContentPipeline, EncryptedChunk
from core.models.config import IndexerConfig, PipelineConfig
from core.models.storage import EmbeddingEntry, OperationStatus
from core.models.tree import SyncDelta
from core.storage.base import InMemoryEmbeddingStore
from core.sync.source import InMemoryWorkspaceSource


def make_indexer(files, key, embedder=None, store=None, chunk_size=1000, **config):
    return IncrementalIndexer(
        source=InMemoryWorkspaceSource(files),
        pipeline=ContentPipeline(PipelineConfig(chunk_size=chunk_size)),
        embedder=embedder if embedder is not None else FakeEmbedder(),
        store=store if store is not None else InMemoryEmbeddingStore(),
        encryption_key=key,
        config=IndexerConfig(**config),
    )


class TestIndexDelta:
    """Test applying deltas to the store"""

    @pytest.mark.asyncio
    async def test_empty_delta(self, encryption_key):
        indexer = make_indexer({}, encryption_key)
        summary = await indexer.index_delta(SyncDelta())
        assert summary.success
        assert summary.indexed_paths == []

    @pytest.mark.asyncio
    async def test_added_file_chunks(self, encryption_key):
        """Each chunk is stored under path#index"""
        store = InMemoryEmbeddingStore()
        indexer = make_indexer({"a.py": "x" * 25}, encryption_key, store=store, chunk_size=10)

        summary = await indexer.index_delta(SyncDelta(added=["a.py"]))

        assert summary.indexed_paths == ["a.py"]
        assert summary.chunks_embedded == 3
        assert await store.keys_with_prefix("a.py#") == ["a.py#0", "a.py#1", "a.py#2"]

    @pytest.mark.asyncio
    async def test_payload_carries_no_plaintext(self, encryption_key):
        store = InMemoryEmbeddingStore()
        indexer = make_indexer({"a.py": "secret_api_token"}, encryption_key, store=store)

        await indexer.index_delta(SyncDelta(added=["a.py"]))
        entry = await store.get("a.py#0")

        assert set(entry.payload) == {"path", "chunk_index", "content_hash", "file_hash", "ciphertext"}
        assert "secret_api_token" not in str(entry.payload)
        chunk = EncryptedChunk(
            ciphertext=base64.b64decode(entry.payload["ciphertext"]),
            content_hash=entry.payload["content_hash"],
            chunk_index=0,
        )
        assert ContentPipeline.decrypt_chunk(chunk, "a.py", encryption_key) == "secret_api_token"

    @pytest.mark.asyncio
    async def test_added_directory_expands(self, encryption_key):
        files = {"lib/a.py": "alpha", "lib/sub/b.py": "beta", "other.py": "gamma"}
        indexer = make_indexer(files, encryption_key)

        summary = await indexer.index_delta(SyncDelta(added=["lib/"]))

        assert summary.indexed_paths == ["lib/a.py", "lib/sub/b.py"]

    @pytest.mark.asyncio
    async def test_modified_file_replaces_old_chunks(self, encryption_key):
        """A file that shrinks loses its trailing chunks"""
        store = InMemoryEmbeddingStore()
        source_files = {"a.py": "y" * 30}
        indexer = make_indexer(source_files, encryption_key, store=store, chunk_size=10)
        await indexer.index_delta(SyncDelta(added=["a.py"]))

        indexer.source.set("a.py", "short")
        summary = await indexer.index_delta(SyncDelta(modified=["a.py"]))

        assert summary.chunks_embedded == 1
        assert await store.keys_with_prefix("a.py#") == ["a.py#0"]

    @pytest.mark.asyncio
    async def test_deleted_file(self, encryption_key):
        store = InMemoryEmbeddingStore()
        indexer = make_indexer({"a.py": "alpha", "a.py.bak": "beta"}, encryption_key, store=store)
        await indexer.index_delta(SyncDelta(added=["a.py", "a.py.bak"]))

        summary = await indexer.index_delta(SyncDelta(deleted=["a.py"]))

        assert summary.removed_prefixes == ["a.py#"]
        assert await store.keys_with_prefix("a.py#") == []
        assert await store.keys_with_prefix("a.py.bak#") == ["a.py.bak#0"]

    @pytest.mark.asyncio
    async def test_deleted_file_keeps_path_with_separator(self, encryption_key):
        """Removing 'notes' leaves the chunks of 'notes#draft.md' alone"""
        store = InMemoryEmbeddingStore()
        files = {"notes": "plain notes", "notes#draft.md": "draft notes"}
        indexer = make_indexer(files, encryption_key, store=store)
        await indexer.index_delta(SyncDelta(added=list(files)))

        await indexer.index_delta(SyncDelta(deleted=["notes"]))

        assert [e.key for e in await store.entries()] == ["notes#draft.md#0"]

    @pytest.mark.asyncio
    async def test_reindexed_file_keeps_path_with_separator(self, encryption_key):
        store = InMemoryEmbeddingStore()
        files = {"notes": "plain notes", "notes#draft.md": "draft notes"}
        indexer = make_indexer(files, encryption_key, store=store)
        await indexer.index_delta(SyncDelta(added=list(files)))

        indexer.source.set("notes", "rewritten notes")
        await indexer.index_delta(SyncDelta(modified=["notes"]))

        assert sorted(store.snapshot()) == ["notes#0", "notes#draft.md#0"]

    @pytest.mark.asyncio
    async def test_deleted_directory(self, encryption_key):
        store = InMemoryEmbeddingStore()
        files = {"old/a.py": "alpha", "old/deep/b.py": "beta", "keep.py": "gamma"}
        indexer = make_indexer(files, encryption_key, store=store)
        await indexer.index_delta(SyncDelta(added=list(files)))

        summary = await indexer.index_delta(SyncDelta(deleted=["old/"]))

        assert summary.removed_prefixes == ["old/"]
        assert [e.key for e in await store.entries()] == ["keep.py#0"]

    @pytest.mark.asyncio
    async def test_uses_given_snapshot(self, encryption_key):
        """A snapshot passed in wins over the source"""
        indexer = make_indexer({}, encryption_key)
        snapshot = await InMemoryWorkspaceSource({"a.py": "from snapshot"}).snapshot()

        summary = await indexer.index_delta(SyncDelta(added=["a.py"]), snapshot)

        assert summary.indexed_paths == ["a.py"]

    @pytest.mark.asyncio
    async def test_empty_file_has_no_entries(self, encryption_key):
        store = InMemoryEmbeddingStore()
        indexer = make_indexer({"empty.txt": ""}, encryption_key, store=store)

        summary = await indexer.index_delta(SyncDelta(added=["empty.txt"]))

        assert summary.indexed_paths == ["empty.txt"]
        assert await store.count() == 0


class TestFailureIsolation:
    """Test per-path failure handling"""

    @pytest.mark.asyncio
    async def test_embedding_failure_isolated(self, encryption_key):
        """One failing file does not stop the others"""
        embedder = FakeEmbedder(fail_on=["poison"])
        store = InMemoryEmbeddingStore()
        files = {"good.py": "fine content", "bad.py": "poison pill", "also_good.py": "more"}
        indexer = make_indexer(files, encryption_key, embedder=embedder, store=store)

        summary = await indexer.index_delta(SyncDelta(added=list(files)))

        assert summary.indexed_paths == ["also_good.py", "good.py"]
        assert summary.failed_paths == ["bad.py"]
        assert summary.status == OperationStatus.PARTIAL
        assert await store.keys_with_prefix("bad.py#") == []

    @pytest.mark.asyncio
    async def test_failed_path_keeps_previous_entries(self, encryption_key):
        embedder = FakeEmbedder(fail_on=["poison"])
        store = InMemoryEmbeddingStore()
        indexer = make_indexer({"a.py": "original"}, encryption_key, embedder=embedder, store=store)
        await indexer.index_delta(SyncDelta(added=["a.py"]))

        indexer.source.set("a.py", "poison now")
        summary = await indexer.index_delta(SyncDelta(modified=["a.py"]))

        assert summary.failed_paths == ["a.py"]
        assert await store.keys_with_prefix("a.py#") == ["a.py#0"]

    @pytest.mark.asyncio
    async def test_embedding_timeout(self, encryption_key):
        embedder = FakeEmbedder(delay_on=["slow"], delay=0.5)
        files = {"slow.py": "slow content", "fast.py": "fast content"}
        indexer = make_indexer(files, encryption_key, embedder=embedder, embed_timeout_seconds=0.05)

        summary = await indexer.index_delta(SyncDelta(added=list(files)))

        assert summary.indexed_paths == ["fast.py"]
        assert "timed out" in summary.failures["slow.py"]

    @pytest.mark.asyncio
    async def test_missing_content(self, encryption_key):
        indexer = make_indexer({}, encryption_key)

        summary = await indexer.index_delta(SyncDelta(added=["ghost.py"]))

        assert summary.failures == {"ghost.py": "content unavailable"}
        assert summary.status == OperationStatus.FAILED

    @pytest.mark.asyncio
    async def test_encryption_failure_isolated(self):
        indexer = make_indexer({"a.py": "content"}, b"bad key")

        summary = await indexer.index_delta(SyncDelta(added=["a.py"]))

        assert summary.failed_paths == ["a.py"]

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, encryption_key):
        store = InMemoryEmbeddingStore()
        store.upsert = AsyncMock(side_effect=StoreError("store offline"))
        indexer = make_indexer({"a.py": "content"}, encryption_key, store=store)

        with pytest.raises(StoreError, match="store offline"):
            await indexer.index_delta(SyncDelta(added=["a.py"]))

    @pytest.mark.asyncio
    async def test_unexpected_store_failure_wrapped(self, encryption_key):
        store = InMemoryEmbeddingStore()
        store.delete_prefix = AsyncMock(side_effect=ConnectionError("reset"))
        indexer = make_indexer({"a.py": "content"}, encryption_key, store=store)

        with pytest.raises(StoreError):
            await indexer.index_delta(SyncDelta(added=["a.py"]))


class TestConcurrency:
    """Test concurrent processing"""

    @pytest.mark.asyncio
    async def test_many_files(self, encryption_key):
        files = {f"pkg/mod{i}.py": f"module number {i}" for i in range(20)}
        store = InMemoryEmbeddingStore()
        indexer = make_indexer(files, encryption_key, store=store, max_concurrency=3)

        summary = await indexer.index_delta(SyncDelta(added=["pkg/"]))

        assert len(summary.indexed_paths) == 20
        assert await store.count() == 20

    @pytest.mark.asyncio
    async def test_entries_are_embedding_entries(self, encryption_key):
        store = InMemoryEmbeddingStore()
        indexer = make_indexer({"a.py": "text"}, encryption_key, store=store)
        await indexer.index_delta(SyncDelta(added=["a.py"]))

        entry = (await store.entries())[0]

        assert isinstance(entry, EmbeddingEntry)
        assert entry.path == "a.py"
        assert entry.chunk_index == 0
        assert len(entry.vector) == 256

    @pytest.mark.asyncio
    async def test_path_locks_released(self, encryption_key):
        """Per-path locks exist only while a path is being worked on"""
        embedder = FakeEmbedder(delay_on=["slow"], delay=0.05)
        indexer = make_indexer({"a.py": "slow text", "b.py": "quick"}, encryption_key, embedder=embedder)

        first = asyncio.create_task(indexer.index_delta(SyncDelta(added=["a.py", "b.py"])))
        await asyncio.sleep(0.01)
        assert list(indexer._path_locks) == ["a.py"]

        second = asyncio.create_task(indexer.index_delta(SyncDelta(modified=["a.py"])))
        summaries = await asyncio.gather(first, second)

        assert summaries[1].indexed_paths == ["a.py"]
        assert indexer._path_locks == {}
        assert indexer._lock_users == {}
