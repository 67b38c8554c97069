"""
Credential vault for upstream API keys.

AES-256-GCM with a random 96-bit nonce per call, prepended to the ciphertext and
encoded as URL-safe base64 without padding. The key is the SHA-256 digest of the
process-wide secret, so the secret itself may be of any length.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from capgate.core.config import get_settings
from capgate.core.errors import DecryptionError

log = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16

_DEVELOPMENT_FALLBACK_SECRET = "capgate-development-fallback-key-do-not-use-in-production"


def derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class CredentialVault:
    """Stateless encrypt/decrypt of secret strings; safe to share across tasks."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Vault secret must not be empty")
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret. Empty input stays empty (no key configured)."""
        if not plaintext:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return _b64encode(nonce + sealed)

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a secret. Fails closed with DecryptionError on any corrupt input."""
        if not ciphertext:
            return ""
        try:
            raw = _b64decode(ciphertext)
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise DecryptionError("Stored credential is not valid base64") from e

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Stored credential is truncated")

        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Stored credential failed authentication") from e

        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Stored credential is not valid UTF-8") from e


@lru_cache(maxsize=1)
def get_vault() -> CredentialVault:
    """Process-wide vault; the key is derived once and reused read-only.

    Outside local/dev/test, refuses to start without CAPGATE_ENCRYPTION_KEY.
    """
    settings = get_settings()
    secret = settings.capgate_encryption_key
    if not secret:
        if not settings.is_development:
            log.critical("vault.no_key", extra={"env": settings.capgate_env})
            raise RuntimeError("CAPGATE_ENCRYPTION_KEY must be set outside local/dev/test environments.")
        log.warning("vault.fallback_key", extra={"env": settings.capgate_env})
        secret = _DEVELOPMENT_FALLBACK_SECRET
    return CredentialVault(secret)
