"""
Authenticated encryption for workspace content.
"""

from .encryption import (
    ContentCipher,
    PassphraseCipher,
    generate_key,
    decode_key,
    hmac_digest,
    verify_digest,
)

__all__ = [
    "ContentCipher",
    "PassphraseCipher",
    "generate_key",
    "decode_key",
    "hmac_digest",
    "verify_digest",
]
