"""
Embedding store interface and in-memory backend.

Stores are keyed by ``path#chunkIndex``. Prefix operations let the indexer
replace every chunk of a file (prefix ``path#``) or drop a whole directory
(prefix ``dir/``) without knowing how many chunks were stored.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from ..models.storage import KEY_SEPARATOR, EmbeddingEntry, split_key

logger = logging.getLogger(__name__)


class EmbeddingStore(ABC):
    """Abstract embedding store. Errors surface as StoreError."""

    @abstractmethod
    async def upsert(self, entries: List[EmbeddingEntry]) -> int:
        """Insert or replace entries by key; returns the number written"""
        pass

    @abstractmethod
    async def delete(self, keys: Iterable[str]) -> int:
        """Delete entries by key; unknown keys are ignored"""
        pass

    @abstractmethod
    async def keys_with_prefix(self, prefix: str) -> List[str]:
        """All stored keys starting with prefix, sorted"""
        pass

    @abstractmethod
    async def entries(self) -> List[EmbeddingEntry]:
        """Every stored entry with its vector"""
        pass

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix"""
        keys = await self.keys_with_prefix(prefix)
        if not keys:
            return 0
        return await self.delete(keys)

    async def get(self, key: str) -> Optional[EmbeddingEntry]:
        for entry in await self.entries():
            if entry.key == key:
                return entry
        return None

    async def count(self) -> int:
        return len(await self.entries())


class InMemoryEmbeddingStore(EmbeddingStore):
    """Process-local store, used by tests and for dry runs"""

    def __init__(self):
        self._entries: "OrderedDict[str, EmbeddingEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def upsert(self, entries: List[EmbeddingEntry]) -> int:
        async with self._lock:
            for entry in entries:
                self._entries[entry.key] = entry
        logger.debug(f"Upserted {len(entries)} entries")
        return len(entries)

    async def delete(self, keys: Iterable[str]) -> int:
        removed = 0
        async with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    async def keys_with_prefix(self, prefix: str) -> List[str]:
        async with self._lock:
            if prefix.endswith(KEY_SEPARATOR):
                # A file prefix ("path#") only covers that path's own chunks
                path = prefix[:-1]
                return sorted(key for key in self._entries if split_key(key)[0] == path)
            return sorted(key for key in self._entries if key.startswith(prefix))

    async def entries(self) -> List[EmbeddingEntry]:
        async with self._lock:
            return list(self._entries.values())

    async def get(self, key: str) -> Optional[EmbeddingEntry]:
        async with self._lock:
            return self._entries.get(key)

    async def count(self) -> int:
        return len(self._entries)

    def snapshot(self) -> Dict[str, EmbeddingEntry]:
        """Shallow copy of the current contents"""
        return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
