"""Field-level encryption for PII at rest.

SSNs are stored as ``<b64 iv>:<b64 tag>:<b64 ciphertext>`` produced with
AES-256-GCM.  Generate a key with::

    python scripts/init_db.py --generate-key
"""

from __future__ import annotations

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from securebank.logging import get_logger
from securebank.service.errors import IntegrityError

logger = get_logger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
BLOB_SEPARATOR = ":"

# Development-only key material; any real deployment sets ENCRYPTION_KEY.
_FALLBACK_PASSPHRASE = b"development-key-do-not-use-in-production"
_FALLBACK_SALT = b"salt"


class DecryptionError(IntegrityError):
    """Encrypted blob is malformed or failed authentication."""


def _derive_fallback_key() -> bytes:
    kdf = Scrypt(salt=_FALLBACK_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(_FALLBACK_PASSPHRASE)


def load_encryption_key(encoded: Optional[str]) -> bytes:
    """Decode the configured base64 key, or derive the development fallback."""
    if not encoded:
        logger.warning(
            "encryption_key_fallback",
            message="ENCRYPTION_KEY not set; using a deterministic development key",
        )
        return _derive_fallback_key()
    try:
        key = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("ENCRYPTION_KEY must be base64 encoded") from exc
    if len(key) != KEY_LENGTH:
        raise ValueError("ENCRYPTION_KEY must be a 32-byte (256-bit) key encoded in base64")
    return key


def generate_encryption_key() -> str:
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(part: str) -> bytes:
    try:
        return base64.b64decode(part, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Invalid encrypted data encoding") from exc


class PIICipher:
    """AES-256-GCM cipher bound to one process-wide key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError("encryption key must be 32 bytes")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls, encoded_key: Optional[str]) -> "PIICipher":
        return cls(load_encryption_key(encoded_key))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt with a fresh random IV; output differs on every call."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return BLOB_SEPARATOR.join(
            (_b64encode(iv), _b64encode(tag), _b64encode(ciphertext))
        )

    def decrypt(self, blob: str) -> str:
        parts = blob.split(BLOB_SEPARATOR)
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted data format")
        iv, tag, ciphertext = (_b64decode(part) for part in parts)
        if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
            raise DecryptionError("Invalid encrypted data format")
        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.warning("pii_decrypt_failed", reason="auth_tag_mismatch")
            raise DecryptionError("Encrypted data failed integrity check") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted data is not valid text") from exc


def get_ssn_last4(ssn: str) -> str:
    return ssn[-4:]


def mask_ssn(ssn: str) -> str:
    """``"123456789"`` -> ``"***-**-6789"``; accepts a bare last-4 as well."""
    return f"***-**-{get_ssn_last4(ssn)}"
