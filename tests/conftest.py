"""
Shared fixtures for workspace-sync tests.
"""

import asyncio
import hashlib
from typing import Iterable, List

import pytest

from core.embeddings.base import BaseEmbedder
from core.storage.base import InMemoryEmbeddingStore


class FakeEmbedder(BaseEmbedder):
    """
    Deterministic bag-of-words embedder.

    Each lowercase word is hashed into one of ``dimensions`` buckets, so equal
    texts get equal vectors and texts sharing words score higher than texts
    that share none.
    """

    def __init__(
        self,
        dimensions: int = 256,
        fail_on: Iterable[str] = (),
        delay_on: Iterable[str] = (),
        delay: float = 0.0
    ):
        super().__init__({"dimensions": dimensions})
        self._dimensions = dimensions
        self.fail_on = set(fail_on)
        self.delay_on = set(delay_on)
        self.delay = delay
        self.embedded: List[str] = []

    @property
    def model_name(self) -> str:
        return "fake-bag-of-words"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def max_sequence_length(self) -> int:
        return 100_000

    async def load_model(self) -> bool:
        self._model = object()
        self._is_loaded = True
        return True

    async def unload_model(self) -> None:
        self._model = None
        self._is_loaded = False

    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        vectors = []
        for text in texts:
            if any(marker in text for marker in self.fail_on):
                raise RuntimeError("embedding service rejected chunk")
            if self.delay and any(marker in text for marker in self.delay_on):
                await asyncio.sleep(self.delay)
            self.embedded.append(text)
            vectors.append(bag_of_words(text, self._dimensions))
        return vectors


def bag_of_words(text: str, dimensions: int = 256) -> List[float]:
    vector = [0.0] * dimensions
    for word in text.lower().split():
        bucket = int(hashlib.sha256(word.encode("utf-8")).hexdigest()[:8], 16) % dimensions
        vector[bucket] += 1.0
    return vector


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def memory_store() -> InMemoryEmbeddingStore:
    return InMemoryEmbeddingStore()


@pytest.fixture
def encryption_key() -> bytes:
    return bytes(range(32))


@pytest.fixture
def sample_files() -> dict:
    return {
        "README.md": "workspace sync keeps an index fresh",
        "src/app.py": "def main():\n    return session refresh token\n",
        "src/util/strings.py": "def slugify(value):\n    return value.lower()\n",
        "docs/guide.txt": "install the package and run wsync init",
    }
