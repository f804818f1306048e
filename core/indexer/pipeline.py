"""
Content pipeline for changed files.

For each file this produces a content hash, an AES-256-GCM ciphertext of the
full content, and fixed-size chunks encrypted one by one. Only hashes,
ciphertext and chunk boundaries leave this module; plaintext chunks are handed
out transiently for client-side embedding and never stored.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from ..errors import EncryptionError
from ..models.config import PipelineConfig
from ..models.storage import make_key
from ..security.encryption import ContentCipher
from ..sync.hasher import hash_content

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedChunk:
    """One encrypted slice of a file"""
    ciphertext: bytes
    content_hash: str  # hash of the plaintext chunk
    chunk_index: int


@dataclass
class ProcessedFile:
    """Pipeline output for one file"""
    path: str
    content_hash: str
    ciphertext: bytes
    chunks: List[EncryptedChunk] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


def decode_content(content: Union[bytes, str]) -> str:
    """Decode file bytes as UTF-8 text, replacing undecodable bytes"""
    if isinstance(content, str):
        return content
    return content.decode("utf-8", errors="replace")


def chunk_text(text: str, chunk_size: int = 1000) -> List[str]:
    """
    Split text into fixed-size chunks.

    Every chunk has ``chunk_size`` characters except the last, which holds the
    remainder. Empty text yields no chunks.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


class ContentPipeline:
    """Hash, encrypt and chunk file content"""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    @property
    def chunk_size(self) -> int:
        return self.config.chunk_size

    def split(self, content: Union[bytes, str]) -> List[str]:
        """Plaintext chunks of a file, in chunk index order"""
        return chunk_text(decode_content(content), self.chunk_size)

    def process(self, path: str, content: Union[bytes, str], key: bytes) -> ProcessedFile:
        """
        Run the pipeline for one file.

        Args:
            path: Workspace path of the file
            content: File content
            key: 32-byte AES key supplied by the caller

        Returns:
            ProcessedFile with hash, full ciphertext and encrypted chunks

        Raises:
            EncryptionError: If the key or cipher is misconfigured; the file
                is aborted, never silently skipped
        """
        cipher = ContentCipher(key)
        raw = content.encode("utf-8") if isinstance(content, str) else content

        try:
            ciphertext = cipher.encrypt(raw, associated_data=path.encode("utf-8"))
            chunks = [
                EncryptedChunk(
                    ciphertext=cipher.encrypt(
                        text, associated_data=make_key(path, index).encode("utf-8")
                    ),
                    content_hash=hash_content(text),
                    chunk_index=index,
                )
                for index, text in enumerate(self.split(raw))
            ]
        except EncryptionError:
            logger.warning(f"Encryption failed for {path}")
            raise

        logger.debug(f"Processed {path}: {len(raw)} bytes, {len(chunks)} chunks")
        return ProcessedFile(
            path=path,
            content_hash=hash_content(raw),
            ciphertext=ciphertext,
            chunks=chunks,
        )

    @staticmethod
    def decrypt_chunk(chunk: EncryptedChunk, path: str, key: bytes) -> str:
        """Decrypt one chunk back to text; fails on wrong key or path"""
        plaintext = ContentCipher(key).decrypt(
            chunk.ciphertext, associated_data=make_key(path, chunk.chunk_index).encode("utf-8")
        )
        return plaintext.decode("utf-8")

    @staticmethod
    def decrypt_file(processed: ProcessedFile, key: bytes) -> bytes:
        """Decrypt the full-content ciphertext of a processed file"""
        return ContentCipher(key).decrypt(
            processed.ciphertext, associated_data=processed.path.encode("utf-8")
        )
