"""
Deterministic content hashing for Merkle tree nodes.

File hashes depend only on content, never on metadata, so identical content
always yields the identical digest regardless of mtime.
"""

import hashlib
from typing import Mapping, Union


Content = Union[bytes, str]

DIGEST_SIZE = 64  # hex characters of a SHA-256 digest


def _to_bytes(content: Content) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    raise TypeError(f"Content must be bytes or str, got {type(content).__name__}")


def hash_content(content: Content) -> str:
    """
    Compute the SHA-256 hex digest of file content.

    Args:
        content: Raw bytes, or text which is UTF-8 encoded first

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(_to_bytes(content)).hexdigest()


EMPTY_HASH = hash_content(b"")


def hash_directory(children: Mapping[str, str]) -> str:
    """
    Aggregate child hashes into a directory hash.

    Children are ordered by name before hashing so the result does not depend
    on discovery order. Each child contributes its name and its hash, which
    keeps a rename from hashing to the same value as the original layout.

    Args:
        children: Mapping of child name to child hash

    Returns:
        Hexadecimal hash string; ``hash_content("")`` for an empty directory
    """
    if not children:
        return EMPTY_HASH

    hasher = hashlib.sha256()
    for name in sorted(children):
        hasher.update(_to_bytes(name))
        hasher.update(b"\0")
        hasher.update(_to_bytes(children[name]))
        hasher.update(b"\n")
    return hasher.hexdigest()
