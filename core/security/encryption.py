"""
AES-256-GCM encryption for workspace content.

Provides authenticated encryption so chunk ciphertext can leave the client
without exposing source code:
- Each message gets a fresh random 96-bit nonce
- GCM provides both confidentiality and tamper detection
- Decrypting with the wrong key or tampered data raises EncryptionError
"""

import base64
import hashlib
import hmac
import secrets
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import EncryptionError


KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits, recommended for GCM
TAG_SIZE = 16


def _as_bytes(data: Union[bytes, str]) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def generate_key() -> bytes:
    """Generate a random 256-bit content key"""
    return AESGCM.generate_key(bit_length=256)


def decode_key(key_b64: str) -> bytes:
    """
    Decode a base64 content key.

    Raises:
        EncryptionError: If the value is not base64 or not 32 bytes long
    """
    try:
        key = base64.b64decode(key_b64, validate=True)
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Encryption key is not valid base64: {e}") from e
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


class ContentCipher:
    """AES-256-GCM cipher over a raw 32-byte key"""

    def __init__(self, key: bytes):
        """
        Initialize with a content key.

        Args:
            key: 32 raw key bytes

        Raises:
            EncryptionError: On a missing or wrong-length key
        """
        if not isinstance(key, (bytes, bytearray)):
            raise EncryptionError(f"Key must be bytes, got {type(key).__name__}")
        if len(key) != KEY_SIZE:
            raise EncryptionError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._cipher = AESGCM(bytes(key))

    def encrypt(self, plaintext: Union[bytes, str], associated_data: Optional[bytes] = None) -> bytes:
        """
        Encrypt content.

        Args:
            plaintext: Content to encrypt
            associated_data: Optional data bound to the ciphertext but not encrypted

        Returns:
            ``nonce || ciphertext || tag``
        """
        nonce = secrets.token_bytes(NONCE_SIZE)
        try:
            ciphertext = self._cipher.encrypt(nonce, _as_bytes(plaintext), associated_data)
        except (ValueError, TypeError, OverflowError) as e:
            raise EncryptionError(f"Encryption failed: {e}") from e
        return nonce + ciphertext

    def decrypt(self, blob: bytes, associated_data: Optional[bytes] = None) -> bytes:
        """
        Decrypt content produced by ``encrypt``.

        Raises:
            EncryptionError: If the blob is malformed, the key is wrong or
                the data was tampered with
        """
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise EncryptionError("Ciphertext is too short")
        nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return self._cipher.decrypt(nonce, ciphertext, associated_data)
        except InvalidTag as e:
            raise EncryptionError("Authentication failed: wrong key or tampered ciphertext") from e


class PassphraseCipher:
    """
    Passphrase-based AES-256-GCM with a per-message PBKDF2-derived key.

    Output format is ``salt:nonce:tag:ciphertext``, each part hex encoded.
    """

    ITERATIONS = 100_000
    SALT_SIZE = 64

    def __init__(self, master_key: str):
        if not master_key or len(master_key) < 32:
            raise EncryptionError("Master key must be at least 32 characters")
        self._master_key = master_key.encode("utf-8")

    def _derive(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self.ITERATIONS,
        )
        return kdf.derive(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        salt = secrets.token_bytes(self.SALT_SIZE)
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = AESGCM(self._derive(salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return ":".join(part.hex() for part in (salt, nonce, tag, ciphertext))

    def decrypt(self, token: str) -> str:
        parts = token.split(":")
        if len(parts) != 4:
            raise EncryptionError("Invalid ciphertext format")

        try:
            salt, nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise EncryptionError(f"Invalid ciphertext encoding: {e}") from e

        try:
            plaintext = AESGCM(self._derive(salt)).decrypt(nonce, ciphertext + tag, None)
        except (InvalidTag, ValueError) as e:
            raise EncryptionError("Authentication failed: wrong key or tampered ciphertext") from e
        return plaintext.decode("utf-8")

    def hash(self, data: Union[bytes, str]) -> str:
        """Keyed HMAC-SHA256 digest of data under the master key"""
        return hmac_digest(self._master_key, data)

    def verify_hash(self, data: Union[bytes, str], digest: str) -> bool:
        return verify_digest(self._master_key, data, digest)


def hmac_digest(key: bytes, data: Union[bytes, str]) -> str:
    """Hex HMAC-SHA256 of data; hides content hashes from parties without the key"""
    return hmac.new(key, _as_bytes(data), hashlib.sha256).hexdigest()


def verify_digest(key: bytes, data: Union[bytes, str], digest: str) -> bool:
    """Constant-time comparison against an expected HMAC digest"""
    return hmac.compare_digest(hmac_digest(key, data), digest)
