"""
Configuration models for workspace-sync.

Handles sync cadence, content pipeline, indexing, search, embedder and
Qdrant settings, plus global settings read from the environment.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncConfig(BaseModel):
    """Sync scheduler configuration"""
    model_config = ConfigDict(validate_assignment=True)

    interval_ms: int = Field(default=180_000, ge=1)
    # Delay before the first cycle; None means one full interval
    initial_delay_ms: Optional[int] = Field(default=None, ge=0)
    # Worker threads for leaf hashing (None hashes inline)
    hash_workers: Optional[int] = Field(default=None, ge=1, le=64)

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def initial_delay_seconds(self) -> float:
        if self.initial_delay_ms is None:
            return self.interval_seconds
        return self.initial_delay_ms / 1000.0


class PipelineConfig(BaseModel):
    """Content pipeline configuration"""
    model_config = ConfigDict(validate_assignment=True)

    chunk_size: int = Field(default=1000, ge=1)


class IndexerConfig(BaseModel):
    """Incremental indexer configuration"""
    model_config = ConfigDict(validate_assignment=True)

    embed_timeout_seconds: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1, le=64)


class SearchConfig(BaseModel):
    """Semantic search defaults"""
    model_config = ConfigDict(validate_assignment=True)

    threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    top_k: int = Field(default=10, ge=1)


class WorkspaceConfig(BaseModel):
    """Which files in a workspace take part in sync"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Empty include list means every file not excluded
    include_patterns: List[str] = Field(default_factory=list)

    exclude_patterns: List[str] = Field(
        default_factory=lambda: [
            "*.pyc", "*.log", "*.tmp", "*.cache", ".DS_Store",
            "*.min.js", "*.min.css", "dist/*", "build/*", "target/*", "coverage/*"
        ]
    )

    max_file_size_mb: int = Field(default=10, ge=1, le=100)

    @field_validator('include_patterns', 'exclude_patterns')
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        """Drop blank glob patterns"""
        return [pattern.strip() for pattern in v if pattern.strip()]

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes"""
        return self.max_file_size_mb * 1024 * 1024


class EmbedderConfig(BaseModel):
    """Sentence-transformers embedder configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimensions: int = Field(default=384, ge=1)
    device: Optional[str] = None  # Auto-detect if None (cuda, mps, cpu)
    batch_size: int = Field(default=32, ge=1, le=512)
    max_length: int = Field(default=512, ge=1, le=8192)
    normalize_embeddings: bool = True

    def get_device(self) -> str:
        """Auto-detect or return configured device"""
        if self.device:
            return self.device

        import torch

        if torch.cuda.is_available():
            return "cuda"
        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            return "mps"
        return "cpu"


class QdrantConfig(BaseModel):
    """Qdrant vector database configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    url: str = "http://localhost:6333"
    api_key: Optional[str] = None
    timeout: float = 60.0
    collection_name: str = "workspace-embeddings"
    batch_size: int = Field(default=100, ge=1, le=1000)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Qdrant URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Qdrant URL must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('collection_name')
    @classmethod
    def validate_collection_name(cls, v: str) -> str:
        if not v or not v.replace('-', '').replace('_', '').isalnum():
            raise ValueError('Collection name must be alphanumeric with dashes/underscores')
        return v


class EngineConfig(BaseModel):
    """Complete configuration for one synchronized workspace"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    name: str
    path: Path

    sync: SyncConfig = Field(default_factory=SyncConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    embedder: EmbedderConfig = Field(default_factory=EmbedderConfig)
    qdrant: QdrantConfig = Field(default_factory=QdrantConfig)

    version: str = "1.0.0"

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate workspace name"""
        if not v or not v.replace('-', '').replace('_', '').replace(' ', '').replace('.', '').isalnum():
            raise ValueError('Workspace name must be alphanumeric with dashes, underscores, dots or spaces')
        return v.strip()

    def get_state_dir(self, state_dir_name: str = ".workspace-sync") -> Path:
        """Directory holding config and tree snapshots for this workspace"""
        return self.path / state_dir_name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = self.model_dump()
        data['path'] = str(data['path'])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Create from dictionary"""
        data = dict(data)
        if 'path' in data:
            data['path'] = Path(data['path'])
        return cls(**data)


class GlobalSettings(BaseSettings):
    """Global application settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="WORKSPACE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    default_qdrant_url: str = "http://localhost:6333"
    state_dir_name: str = ".workspace-sync"

    # Base64-encoded 32-byte AES key used by the content pipeline
    encryption_key: Optional[str] = None

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
