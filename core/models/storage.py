"""
Storage models for embedding entries, indexing summaries and operation results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, NamedTuple, Optional, Tuple, TypeVar
from pydantic import BaseModel, Field, computed_field


T = TypeVar('T')

KEY_SEPARATOR = "#"


def make_key(path: str, chunk_index: int) -> str:
    """Build the store key for one chunk of a file: ``path#chunkIndex``"""
    return f"{path}{KEY_SEPARATOR}{chunk_index}"


def split_key(key: str) -> Tuple[str, int]:
    """
    Split a store key back into path and chunk index.

    The split happens on the last separator so paths containing '#' survive.

    Raises:
        ValueError: If the key has no numeric chunk suffix
    """
    path, sep, index = key.rpartition(KEY_SEPARATOR)
    if not sep or not index.isdigit():
        raise ValueError(f"Invalid embedding key: {key!r}")
    return path, int(index)


def path_prefix(path: str) -> str:
    """
    Key prefix covering every entry of a path.

    Directories (trailing '/') cover everything below them; files cover only
    their own chunks.
    """
    if path.endswith("/") or path == "":
        return path
    return path + KEY_SEPARATOR


class OperationStatus(Enum):
    """Status of engine operations"""
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class OperationResult(BaseModel, Generic[T]):
    """Standard operation result wrapper for operations that report instead of raising"""

    status: OperationStatus
    data: Optional[T] = None

    error: Optional[str] = None
    error_code: Optional[str] = None

    operation_type: str
    timestamp: datetime = Field(default_factory=datetime.now)
    processing_time_ms: Optional[float] = None

    items_processed: int = 0
    items_succeeded: int = 0
    items_failed: int = 0

    @computed_field
    @property
    def success(self) -> bool:
        """Computed property for success status"""
        return self.status == OperationStatus.SUCCESS

    @classmethod
    def success_result(
        cls,
        data: T,
        operation_type: str,
        processing_time_ms: Optional[float] = None,
        items_processed: int = 1
    ) -> 'OperationResult[T]':
        """Create successful result"""
        return cls(
            status=OperationStatus.SUCCESS,
            data=data,
            operation_type=operation_type,
            processing_time_ms=processing_time_ms,
            items_processed=items_processed,
            items_succeeded=items_processed
        )

    @classmethod
    def error_result(
        cls,
        error: str,
        operation_type: str,
        status: OperationStatus = OperationStatus.FAILED,
        error_code: Optional[str] = None,
        processing_time_ms: Optional[float] = None
    ) -> 'OperationResult[T]':
        """Create error result"""
        return cls(
            status=status,
            error=error,
            error_code=error_code,
            operation_type=operation_type,
            processing_time_ms=processing_time_ms
        )


@dataclass
class EmbeddingEntry:
    """
    One stored embedding.

    The payload carries only non-plaintext metadata: path, chunk index,
    chunk content hash and base64 ciphertext.
    """
    key: str
    vector: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return split_key(self.key)[0]

    @property
    def chunk_index(self) -> int:
        return split_key(self.key)[1]


@dataclass
class IndexingSummary:
    """Aggregated result of one incremental indexing pass"""
    indexed_paths: List[str] = field(default_factory=list)
    removed_prefixes: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)  # path -> error message
    chunks_embedded: int = 0
    processing_time_ms: float = 0.0

    @property
    def failed_paths(self) -> List[str]:
        return sorted(self.failures)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def status(self) -> OperationStatus:
        if not self.failures:
            return OperationStatus.SUCCESS
        if self.indexed_paths or self.removed_prefixes:
            return OperationStatus.PARTIAL
        return OperationStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "indexed_paths": list(self.indexed_paths),
            "removed_prefixes": list(self.removed_prefixes),
            "failures": dict(self.failures),
            "chunks_embedded": self.chunks_embedded,
            "processing_time_ms": self.processing_time_ms,
        }


class SearchHit(NamedTuple):
    """A ranked search result"""
    path: str
    score: float
