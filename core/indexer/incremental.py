"""
Incremental indexing driven by sync deltas.

Only paths named in a delta are touched: added and modified files are re-read,
encrypted, chunked, embedded and written; deleted paths have every entry under
their key prefix removed. Failures are isolated per path so one bad file never
blocks the rest of the batch.
"""

import asyncio
import base64
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from .pipeline import ContentPipeline, ProcessedFile
from ..embeddings.base import BaseEmbedder
from ..errors import EmbeddingError, EncryptionError, StoreError
from ..models.config import IndexerConfig
from ..models.storage import EmbeddingEntry, IndexingSummary, make_key, path_prefix
from ..models.tree import DIRECTORY_SEPARATOR, SyncDelta
from ..storage.base import EmbeddingStore
from ..sync.source import WorkspaceSnapshot, WorkspaceSource

logger = logging.getLogger(__name__)

# (path, error message or None on success, chunks embedded)
_PathOutcome = Tuple[str, Optional[str], int]


class IncrementalIndexer:
    """
    Applies sync deltas to an embedding store.

    Different paths are processed concurrently up to ``max_concurrency``;
    work on a single path is serialized by a per-path lock. Entries of a path
    are only replaced once every chunk has been embedded, so a failed path
    keeps its previous entries.
    """

    def __init__(
        self,
        source: WorkspaceSource,
        pipeline: ContentPipeline,
        embedder: BaseEmbedder,
        store: EmbeddingStore,
        encryption_key: bytes,
        config: Optional[IndexerConfig] = None
    ):
        """
        Initialize indexer.

        Args:
            source: Workspace content source, read when no snapshot is passed
            pipeline: Content pipeline for hashing, encryption and chunking
            embedder: Embedding provider
            store: Target embedding store
            encryption_key: 32-byte AES key for chunk ciphertext
            config: Timeouts and concurrency, defaults if None
        """
        self.source = source
        self.pipeline = pipeline
        self.embedder = embedder
        self.store = store
        self.config = config or IndexerConfig()
        self._key = encryption_key

        self._path_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)

    @asynccontextmanager
    async def _path_lock(self, path: str) -> AsyncIterator[None]:
        """Hold the lock for one path; it is dropped once no task holds or awaits it"""
        lock = self._path_locks.get(path)
        if lock is None:
            lock = self._path_locks[path] = asyncio.Lock()
        self._lock_users[path] = self._lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[path] -= 1
            if self._lock_users[path] == 0:
                del self._lock_users[path]
                del self._path_locks[path]

    async def index_delta(
        self,
        delta: SyncDelta,
        snapshot: Optional[WorkspaceSnapshot] = None
    ) -> IndexingSummary:
        """
        Apply one delta to the store.

        Args:
            delta: Changes reported by the tree differ
            snapshot: Workspace content the delta was computed from; read
                from the source when omitted

        Returns:
            Summary of indexed, removed and failed paths

        Raises:
            StoreError: If the store rejects a write. Paths completed before
                the failure stay written.
        """
        start_time = time.time()
        summary = IndexingSummary()

        if delta.is_empty:
            return summary

        for path in delta.deleted:
            prefix = path_prefix(path)
            async with self._path_lock(path):
                removed = await self.store.delete_prefix(prefix)
            summary.removed_prefixes.append(prefix)
            logger.debug(f"Removed {removed} entries under {prefix!r}")

        changed = list(delta.added) + list(delta.modified)
        if changed:
            if snapshot is None:
                snapshot = await self.source.snapshot()

            files = self._expand_paths(changed, snapshot)
            outcomes = await asyncio.gather(
                *(self._index_path(path, snapshot) for path in files),
                return_exceptions=True
            )
            self._collect(files, outcomes, summary)

        summary.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Indexed {len(summary.indexed_paths)} files, removed "
            f"{len(summary.removed_prefixes)} prefixes, {len(summary.failures)} failures "
            f"in {summary.processing_time_ms:.2f}ms"
        )
        return summary

    @staticmethod
    def _expand_paths(paths: List[str], snapshot: WorkspaceSnapshot) -> List[str]:
        """Resolve directory paths to the files below them"""
        files = set()
        for path in paths:
            if path.endswith(DIRECTORY_SEPARATOR) or path == "":
                files.update(
                    p for p in snapshot.paths_under(path)
                    if not p.endswith(DIRECTORY_SEPARATOR)
                )
            else:
                files.add(path)
        return sorted(files)

    def _collect(
        self,
        files: List[str],
        outcomes: List[Union[_PathOutcome, BaseException]],
        summary: IndexingSummary
    ) -> None:
        store_error: Optional[BaseException] = None

        for path, outcome in zip(files, outcomes):
            if isinstance(outcome, BaseException):
                if store_error is None:
                    store_error = outcome
                summary.failures[path] = str(outcome)
                continue

            _, error, chunk_count = outcome
            if error is None:
                summary.indexed_paths.append(path)
                summary.chunks_embedded += chunk_count
            else:
                summary.failures[path] = error

        if store_error is not None:
            logger.error(f"Indexing aborted by store failure: {store_error}")
            if isinstance(store_error, StoreError):
                raise store_error
            raise StoreError(f"Indexing failed: {store_error}") from store_error

    async def _index_path(self, path: str, snapshot: WorkspaceSnapshot) -> _PathOutcome:
        content = snapshot.get(path)
        if content is None:
            logger.warning(f"No content for {path}, it will be retried next cycle")
            return path, "content unavailable", 0

        async with self._semaphore, self._path_lock(path):
            try:
                processed = self.pipeline.process(path, content, self._key)
                vectors = await self._embed_chunks(path, self.pipeline.split(content))
            except (EncryptionError, EmbeddingError) as e:
                logger.warning(f"Skipping {path}: {e}")
                return path, str(e), 0

            entries = self._build_entries(processed, vectors)

            # Replace the path's entries only after every chunk succeeded
            await self.store.delete_prefix(path_prefix(path))
            await self.store.upsert(entries)

        logger.debug(f"Indexed {path}: {len(entries)} chunks")
        return path, None, len(entries)

    async def _embed_chunks(self, path: str, chunks: List[str]) -> List[List[float]]:
        timeout = self.config.embed_timeout_seconds
        vectors = []
        for index, text in enumerate(chunks):
            try:
                vector = await asyncio.wait_for(self.embedder.embed_single(text), timeout)
            except asyncio.TimeoutError as e:
                raise EmbeddingError(
                    f"Embedding timed out after {timeout}s", path=path, chunk_index=index
                ) from e
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(
                    f"Embedding failed: {e}", path=path, chunk_index=index
                ) from e
            vectors.append(vector)
        return vectors

    @staticmethod
    def _build_entries(processed: ProcessedFile, vectors: List[List[float]]) -> List[EmbeddingEntry]:
        return [
            EmbeddingEntry(
                key=make_key(processed.path, chunk.chunk_index),
                vector=list(vector),
                payload={
                    "path": processed.path,
                    "chunk_index": chunk.chunk_index,
                    "content_hash": chunk.content_hash,
                    "file_hash": processed.content_hash,
                    "ciphertext": base64.b64encode(chunk.ciphertext).decode("ascii"),
                },
            )
            for chunk, vector in zip(processed.chunks, vectors)
        ]
