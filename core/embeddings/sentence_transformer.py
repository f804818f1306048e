"""
Sentence-transformers embedder.

Loads the model lazily on first use and runs encoding off the event loop so
indexing and search stay responsive while a batch is embedded.
"""

import asyncio
import logging
import threading
import time
from datetime import datetime
from typing import List, Dict, Any, Optional

from .base import BaseEmbedder
from ..errors import EmbeddingError
from ..models.config import EmbedderConfig

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder(BaseEmbedder):
    """
    Local embedder backed by a sentence-transformers model.

    Features:
    - Device auto-detection (CUDA/MPS/CPU)
    - Lazy model load guarded against concurrent loaders
    - Batched encoding in a worker thread
    """

    def __init__(self, config: Optional[EmbedderConfig] = None):
        """
        Initialize embedder.

        Args:
            config: Embedder configuration, uses defaults if None
        """
        self.embedder_config = config or EmbedderConfig()
        super().__init__(self.embedder_config.model_dump())

        self._device: Optional[str] = None
        self._model_lock = threading.RLock()
        self._loading = False

        self._total_embeddings = 0
        self._total_processing_time = 0.0

        logger.info(f"Initialized SentenceTransformerEmbedder: {self.embedder_config.model_name}")

    @property
    def model_name(self) -> str:
        return self.embedder_config.model_name

    @property
    def dimensions(self) -> int:
        return self.embedder_config.dimensions

    @property
    def max_sequence_length(self) -> int:
        return self.embedder_config.max_length

    @property
    def device(self) -> Optional[str]:
        return self._device

    async def load_model(self) -> bool:
        """
        Load the model on the best available device.

        Returns:
            True if model loaded successfully, False otherwise
        """
        if self.is_loaded:
            return True

        with self._model_lock:
            if self.is_loaded:
                return True

            if self._loading:
                # Another caller is loading; wait for it
                while self._loading and not self.is_loaded:
                    await asyncio.sleep(0.1)
                return self.is_loaded

            self._loading = True

        try:
            start_time = time.time()
            self._device = self.embedder_config.get_device()
            logger.info(f"Loading {self.model_name} on device: {self._device}")

            # Import here to avoid startup delays
            from sentence_transformers import SentenceTransformer

            self._model = await asyncio.to_thread(
                SentenceTransformer, self.model_name, device=self._device
            )
            self._model.eval()

            self._is_loaded = True
            self._load_time = datetime.now()
            logger.info(f"Model loaded in {time.time() - start_time:.2f}s on {self._device}")
            return True

        except Exception as e:
            logger.error(f"Failed to load embedding model {self.model_name}: {e}")
            self._model = None
            self._is_loaded = False
            return False

        finally:
            self._loading = False

    async def unload_model(self) -> None:
        """Drop the model and release GPU memory"""
        with self._model_lock:
            if self._model is None:
                return
            self._model = None
            self._is_loaded = False

        import torch

        if torch.cuda.is_available():
            torch.cuda.empty_cache()

        logger.info(f"Unloaded {self.model_name}")
        self._device = None

    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        if not self.is_loaded:
            raise EmbeddingError("Model not loaded")

        valid_texts = self._validate_texts(texts)
        start_time = time.time()

        try:
            vectors = await asyncio.to_thread(
                self._model.encode,
                valid_texts,
                batch_size=self.embedder_config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.embedder_config.normalize_embeddings,
            )
        except Exception as e:
            logger.error(f"Model encoding failed: {e}")
            raise EmbeddingError(f"Embedding generation failed: {e}") from e

        self._total_embeddings += len(valid_texts)
        self._total_processing_time += time.time() - start_time
        return vectors.tolist()

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info.update({
            "device": self._device,
            "batch_size": self.embedder_config.batch_size,
            "normalize_embeddings": self.embedder_config.normalize_embeddings,
            "total_embeddings_generated": self._total_embeddings,
        })
        return info

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {
            "total_embeddings": self._total_embeddings,
            "total_processing_time_s": self._total_processing_time,
            "average_embedding_time_ms": (
                self._total_processing_time / max(1, self._total_embeddings) * 1000
            ),
            "device": self._device,
            "model_loaded": self.is_loaded,
        }
