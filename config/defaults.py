"""
Default configuration values for workspace-sync.

Centralized defaults that can be overridden by environment variables or config files.
"""

from typing import Any, Dict

# Global default settings
DEFAULT_SETTINGS = {
    # Sync cadence
    "sync": {
        "interval_ms": 180_000,
        "initial_delay_ms": None,  # One full interval
        "hash_workers": None
    },

    # Content pipeline
    "pipeline": {
        "chunk_size": 1000
    },

    # Incremental indexing
    "indexer": {
        "embed_timeout_seconds": 30.0,
        "max_concurrency": 4
    },

    # Semantic search
    "search": {
        "threshold": 0.7,
        "top_k": 10
    },

    # Workspace scanning
    "workspace": {
        "include_patterns": [],
        "exclude_patterns": [
            "*.pyc", "*.log", "*.tmp", "*.cache", ".DS_Store",
            "*.min.js", "*.min.css", "dist/*", "build/*", "target/*", "coverage/*"
        ],
        "max_file_size_mb": 10
    },

    # Sentence-transformers embeddings
    "embedder": {
        "model_name": "sentence-transformers/all-MiniLM-L6-v2",
        "dimensions": 384,
        "device": None,  # Auto-detect
        "batch_size": 32,
        "max_length": 512,
        "normalize_embeddings": True
    },

    # Qdrant configuration
    "qdrant": {
        "url": "http://localhost:6333",
        "api_key": None,
        "timeout": 60.0,
        "collection_name": "${workspace_name}-embeddings",
        "batch_size": 100
    }
}

CONFIG_FILENAME = "config.json"

# Environment variable mappings
ENV_VAR_MAPPING = {
    'WORKSPACE_SYNC_INTERVAL_MS': 'sync.interval_ms',
    'WORKSPACE_SYNC_HASH_WORKERS': 'sync.hash_workers',
    'WORKSPACE_SYNC_CHUNK_SIZE': 'pipeline.chunk_size',
    'WORKSPACE_SYNC_EMBED_TIMEOUT': 'indexer.embed_timeout_seconds',
    'WORKSPACE_SYNC_MAX_CONCURRENCY': 'indexer.max_concurrency',
    'WORKSPACE_SYNC_SEARCH_THRESHOLD': 'search.threshold',
    'WORKSPACE_SYNC_SEARCH_TOP_K': 'search.top_k',
    'WORKSPACE_SYNC_MAX_FILE_SIZE_MB': 'workspace.max_file_size_mb',
    'WORKSPACE_SYNC_EMBEDDING_MODEL': 'embedder.model_name',
    'WORKSPACE_SYNC_EMBEDDING_DEVICE': 'embedder.device',
    'WORKSPACE_SYNC_QDRANT_URL': 'qdrant.url',
    'WORKSPACE_SYNC_QDRANT_API_KEY': 'qdrant.api_key',
    'WORKSPACE_SYNC_QDRANT_TIMEOUT': 'qdrant.timeout',
}


def get_default_workspace_config() -> Dict[str, Any]:
    """Get default workspace configuration template"""
    return {
        'name': '${workspace_name}',
        'path': '${workspace_path}',
        'sync': dict(DEFAULT_SETTINGS['sync']),
        'pipeline': dict(DEFAULT_SETTINGS['pipeline']),
        'indexer': dict(DEFAULT_SETTINGS['indexer']),
        'search': dict(DEFAULT_SETTINGS['search']),
        'workspace': {
            **DEFAULT_SETTINGS['workspace'],
            'exclude_patterns': list(DEFAULT_SETTINGS['workspace']['exclude_patterns'])
        },
        'embedder': dict(DEFAULT_SETTINGS['embedder']),
        'qdrant': dict(DEFAULT_SETTINGS['qdrant']),
        'version': '1.0.0'
    }
