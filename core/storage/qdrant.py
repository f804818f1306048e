"""
Qdrant-backed embedding store.

Each chunk becomes one point: the ID is derived from the ``path#chunkIndex``
key, the payload holds the key, path, chunk index, chunk hash and base64
ciphertext. No plaintext is written.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance, FieldCondition, Filter, MatchValue, PointIdsList, PointStruct, VectorParams
)

from .base import EmbeddingStore
from .utils import key_to_point_id
from ..errors import StoreError
from ..models.config import QdrantConfig
from ..models.storage import KEY_SEPARATOR, EmbeddingEntry

logger = logging.getLogger(__name__)


class QdrantEmbeddingStore(EmbeddingStore):
    """
    Embedding store on a single Qdrant collection.

    The synchronous qdrant-client calls run in worker threads. Every client
    failure is re-raised as StoreError.
    """

    SCROLL_PAGE_SIZE = 256

    def __init__(
        self,
        config: Optional[QdrantConfig] = None,
        dimensions: int = 384,
        client: Optional[QdrantClient] = None
    ):
        """
        Initialize store.

        Args:
            config: Connection and collection settings, defaults if None
            dimensions: Vector size used when the collection is created
            client: Pre-built client, mainly for tests
        """
        self.config = config or QdrantConfig()
        self.dimensions = dimensions
        self._client = client
        self._collection_ready = False
        self._collection_lock = asyncio.Lock()

        logger.info(f"Initialized QdrantEmbeddingStore: {self.config.url}/{self.collection_name}")

    @property
    def collection_name(self) -> str:
        return self.config.collection_name

    @property
    def client(self) -> QdrantClient:
        """Get Qdrant client instance"""
        if self._client is None:
            self._client = QdrantClient(
                url=self.config.url,
                api_key=self.config.api_key,
                timeout=self.config.timeout
            )
        return self._client

    async def ensure_collection(self) -> None:
        """Create the collection on first use if it does not exist"""
        async with self._collection_lock:
            if self._collection_ready:
                return
            try:
                collections = await asyncio.to_thread(self.client.get_collections)
                names = [c.name for c in collections.collections]
                if self.collection_name not in names:
                    await asyncio.to_thread(
                        self.client.create_collection,
                        collection_name=self.collection_name,
                        vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE)
                    )
                    logger.info(f"Created collection '{self.collection_name}' ({self.dimensions} dims)")
            except Exception as e:
                raise StoreError(f"Failed to prepare collection {self.collection_name}: {e}") from e
            self._collection_ready = True

    async def upsert(self, entries: List[EmbeddingEntry]) -> int:
        if not entries:
            return 0
        await self.ensure_collection()

        start_time = time.time()
        batch_size = self.config.batch_size
        try:
            for i in range(0, len(entries), batch_size):
                batch = entries[i:i + batch_size]
                points = [
                    PointStruct(
                        id=key_to_point_id(entry.key),
                        vector=list(entry.vector),
                        payload=self._payload_for(entry)
                    )
                    for entry in batch
                ]
                await asyncio.to_thread(
                    self.client.upsert,
                    collection_name=self.collection_name,
                    points=points
                )
                logger.debug(f"Upserted batch {i // batch_size + 1}: {len(batch)} points")
        except Exception as e:
            raise StoreError(f"Failed to upsert points to {self.collection_name}: {e}") from e

        logger.info(
            f"Upserted {len(entries)} points to {self.collection_name} "
            f"in {(time.time() - start_time) * 1000:.2f}ms"
        )
        return len(entries)

    async def delete(self, keys: Iterable[str]) -> int:
        point_ids = [key_to_point_id(key) for key in keys]
        if not point_ids:
            return 0
        await self.ensure_collection()

        try:
            await asyncio.to_thread(
                self.client.delete,
                collection_name=self.collection_name,
                points_selector=PointIdsList(points=point_ids)
            )
        except Exception as e:
            raise StoreError(f"Failed to delete points from {self.collection_name}: {e}") from e

        logger.debug(f"Deleted {len(point_ids)} points from {self.collection_name}")
        return len(point_ids)

    async def keys_with_prefix(self, prefix: str) -> List[str]:
        # A file prefix ("path#") maps to an exact payload match on path
        scroll_filter = None
        if prefix.endswith(KEY_SEPARATOR):
            scroll_filter = Filter(must=[
                FieldCondition(key="path", match=MatchValue(value=prefix[:-1]))
            ])

        keys = []
        for point in await self._scroll(scroll_filter, with_vectors=False):
            key = (point.payload or {}).get("key")
            if key is not None and key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def entries(self) -> List[EmbeddingEntry]:
        entries = []
        for point in await self._scroll(None, with_vectors=True):
            payload = dict(point.payload or {})
            key = payload.get("key")
            if key is None:
                continue
            entries.append(EmbeddingEntry(key=key, vector=list(point.vector or []), payload=payload))
        return entries

    async def count(self) -> int:
        await self.ensure_collection()
        try:
            result = await asyncio.to_thread(
                self.client.count, collection_name=self.collection_name, exact=True
            )
        except Exception as e:
            raise StoreError(f"Failed to count points in {self.collection_name}: {e}") from e
        return result.count

    async def health_check(self) -> Dict[str, Any]:
        """Check Qdrant server health; never raises"""
        try:
            start_time = time.time()
            collections = await asyncio.to_thread(self.client.get_collections)
            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000,
                "collections_count": len(collections.collections),
                "url": self.config.url
            }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e), "url": self.config.url}

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
            self._collection_ready = False

    async def _scroll(self, scroll_filter: Optional[Filter], with_vectors: bool) -> List[Any]:
        await self.ensure_collection()

        points: List[Any] = []
        offset = None
        try:
            while True:
                page, offset = await asyncio.to_thread(
                    self.client.scroll,
                    collection_name=self.collection_name,
                    scroll_filter=scroll_filter,
                    limit=self.SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=with_vectors
                )
                points.extend(page)
                if offset is None:
                    break
        except Exception as e:
            raise StoreError(f"Failed to scroll {self.collection_name}: {e}") from e
        return points

    @staticmethod
    def _payload_for(entry: EmbeddingEntry) -> Dict[str, Any]:
        payload = dict(entry.payload)
        payload["key"] = entry.key
        payload["path"] = entry.path
        payload["chunk_index"] = entry.chunk_index
        return payload
