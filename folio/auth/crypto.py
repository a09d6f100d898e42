"""
Credential vault: encrypted password storage for users.json.

Uses AES-256-GCM (authenticated encryption) via the cryptography library.
Records are stored as "iv:authTag:ciphertext", each part hex encoded, so
files written by earlier deployments stay readable.
"""

from __future__ import annotations

import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..utils.exceptions import ConfigError, DecryptionFailure
from ..utils.logger import get_logger

logger = get_logger(__name__)

IV_BYTES = 16
TAG_BYTES = 16
SIGNING_INFO = b"folio/session-token/v1"


def _require_secret(master_secret: Optional[str]) -> bytes:
    if not master_secret:
        raise ConfigError("ADMIN_PASSWORD must be set to use the credential vault.")
    return master_secret.encode("utf-8")


def derive_key(master_secret: str) -> bytes:
    """SHA-256 of the master secret: a deterministic 32-byte AES key."""
    return hashlib.sha256(_require_secret(master_secret)).digest()


def derive_signing_secret(master_secret: str) -> bytes:
    """Token signing secret, kept distinct from the encryption key."""
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=SIGNING_INFO)
    return hkdf.derive(_require_secret(master_secret))


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt with a fresh random IV; returns "iv:tag:ciphertext" in hex."""
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def _open(record: str, key: bytes) -> str:
    parts = (record or "").split(":")
    if len(parts) != 3:
        raise DecryptionFailure("Invalid encrypted password format")
    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError:
        raise DecryptionFailure("Encrypted password is not valid hex")
    if len(tag) != TAG_BYTES or not 8 <= len(iv) <= 128:
        raise DecryptionFailure("Invalid IV or authentication tag length")
    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionFailure("Authentication tag mismatch")
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionFailure("Decrypted password is not valid UTF-8")


def decrypt(record: str, key: bytes) -> Optional[str]:
    """Decrypt a vault record. Returns None on any failure (logged, never raised)."""
    try:
        return _open(record, key)
    except DecryptionFailure as e:
        logger.warning("Credential decryption failed", reason=str(e))
        return None


class CredentialVault:
    """Key material derived from one master secret."""

    def __init__(self, master_secret: str):
        self._key = derive_key(master_secret)
        self._signing_secret = derive_signing_secret(master_secret)

    @property
    def signing_secret(self) -> bytes:
        return self._signing_secret

    def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, self._key)

    def decrypt(self, record: str) -> Optional[str]:
        return decrypt(record, self._key)
