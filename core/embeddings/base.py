"""
Base embedding interface for workspace-sync.

Defines the abstract interface that every embedding provider implements. The
indexer and the search engine only depend on this interface, so tests can swap
in a deterministic embedder.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any, Protocol, runtime_checkable
import asyncio
from dataclasses import dataclass
from datetime import datetime

from ..errors import EmbeddingError


@dataclass
class EmbeddingResponse:
    """Response containing generated embeddings"""
    embeddings: List[List[float]]
    processing_time_ms: float
    model_info: Optional[Dict[str, Any]] = None

    @property
    def embedding_count(self) -> int:
        """Get number of embeddings generated"""
        return len(self.embeddings)

    @property
    def average_embedding_time_ms(self) -> float:
        """Get average time per embedding"""
        if self.embedding_count == 0:
            return 0.0
        return self.processing_time_ms / self.embedding_count


@runtime_checkable
class EmbedderProtocol(Protocol):
    """Protocol defining the interface for embedding providers"""

    @property
    def model_name(self) -> str:
        ...

    @property
    def dimensions(self) -> int:
        ...

    async def embed_texts(self, texts: List[str]) -> EmbeddingResponse:
        ...

    async def embed_single(self, text: str) -> List[float]:
        ...


class BaseEmbedder(ABC):
    """Abstract base class for embedding providers"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self._model = None
        self._is_loaded = False
        self._load_time: Optional[datetime] = None

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the name of the embedding model"""
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Get the dimensionality of the embeddings"""
        pass

    @property
    @abstractmethod
    def max_sequence_length(self) -> int:
        """Get the maximum sequence length supported"""
        pass

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded and ready"""
        return self._is_loaded and self._model is not None

    @abstractmethod
    async def load_model(self) -> bool:
        """Load the embedding model"""
        pass

    @abstractmethod
    async def unload_model(self) -> None:
        """Unload the embedding model to free memory"""
        pass

    @abstractmethod
    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Internal method to generate embeddings"""
        pass

    async def embed_texts(self, texts: List[str]) -> EmbeddingResponse:
        """
        Generate embeddings for a list of texts.

        Raises:
            EmbeddingError: If the model cannot be loaded or generation fails
        """
        if not self.is_loaded and not await self.load_model():
            raise EmbeddingError(f"Embedding model {self.model_name} is not available")

        if not texts:
            return EmbeddingResponse(embeddings=[], processing_time_ms=0.0)

        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            embeddings = await self._generate_embeddings(texts)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}") from e

        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Embedder returned {len(embeddings)} vectors for {len(texts)} texts"
            )

        return EmbeddingResponse(
            embeddings=embeddings,
            processing_time_ms=(loop.time() - start_time) * 1000,
            model_info=self.get_model_info()
        )

    async def embed_single(self, text: str) -> List[float]:
        """Generate embedding for a single text"""
        if not text.strip():
            # Zero vector for empty text
            return [0.0] * self.dimensions

        response = await self.embed_texts([text])
        if response.embeddings:
            return response.embeddings[0]
        raise EmbeddingError("Failed to generate embedding for single text")

    async def embed_query(self, text: str) -> List[float]:
        """
        Generate embedding for a search query.

        Defaults to ``embed_single``; providers with asymmetric query encoding
        override it.
        """
        return await self.embed_single(text)

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the model"""
        return {
            "model_name": self.model_name,
            "dimensions": self.dimensions,
            "max_sequence_length": self.max_sequence_length,
            "is_loaded": self.is_loaded,
            "load_time": self._load_time.isoformat() if self._load_time else None,
            "config": self.config
        }

    def _validate_texts(self, texts: List[str]) -> List[str]:
        """Validate and truncate input texts, keeping their positions"""
        if not isinstance(texts, list):
            raise ValueError("texts must be a list")

        valid_texts = []
        for text in texts:
            if text is not None and isinstance(text, str) and text.strip():
                valid_texts.append(text[:self.max_sequence_length])
            else:
                # Placeholder keeps indexes aligned with the input
                valid_texts.append("")

        return valid_texts
