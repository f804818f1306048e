"""
Storage utilities shared by the embedding store backends.
"""

import hashlib


def key_to_point_id(key: str) -> int:
    """
    Convert an embedding key to a Qdrant point ID.

    Qdrant only accepts unsigned integers or UUIDs as point IDs, so the
    ``path#chunkIndex`` key is hashed and the original key kept in the payload.

    Args:
        key: Embedding key (e.g., "src/app.py#0")

    Returns:
        Integer point ID for Qdrant storage
    """
    # First 8 bytes of SHA256 as an unsigned integer
    hash_digest = hashlib.sha256(key.encode('utf-8')).digest()
    return int.from_bytes(hash_digest[:8], byteorder='big', signed=False)
