"""Credential encryption using Fernet (AES-128-CBC + HMAC-SHA256).

Every call to ``encrypt`` uses a fresh random IV, so the same API key
encrypted twice produces two different tokens.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

import config as app_config
from errors import ConfigurationError, DecryptionError, InvalidInput

logger = logging.getLogger(__name__)


class CredentialCodec:
    """Encrypts API keys for storage and decrypts them per request."""

    def __init__(self, keys: Sequence[str | bytes]):
        """
        Args:
            keys: One or more base64-encoded 32-byte Fernet keys. The first
                  key encrypts; every key is tried on decrypt.
        """
        if not keys:
            raise ConfigurationError(
                f"{app_config.ENCRYPTION_KEY_ENV} environment variable not set.\n"
                "Generate a key with:\n"
                "  python -c 'from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())'"
            )

        ciphers = []
        for key in keys:
            try:
                ciphers.append(Fernet(key.encode() if isinstance(key, str) else key))
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Invalid {app_config.ENCRYPTION_KEY_ENV}: {e}")
        self._primary = ciphers[0]
        self._cipher = MultiFernet(ciphers)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext API key into an opaque ASCII token."""
        if not plaintext:
            raise InvalidInput("Cannot encrypt empty API key")
        return self._cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token back to the API key.

        Raises:
            DecryptionError: if the token is malformed, truncated, tampered
                with or was produced under a key that is no longer configured.
        """
        if not ciphertext:
            raise DecryptionError("Cannot decrypt empty ciphertext")
        try:
            token = ciphertext.encode("ascii")
        except (UnicodeEncodeError, AttributeError) as e:
            raise DecryptionError(f"Ciphertext is not an ASCII token: {e}")
        try:
            return self._cipher.decrypt(token).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as e:
            raise DecryptionError(f"Failed to decrypt API key: {type(e).__name__}")

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a token under the primary key."""
        try:
            return self._cipher.rotate(ciphertext.encode("ascii")).decode("ascii")
        except (InvalidToken, UnicodeEncodeError) as e:
            raise DecryptionError(f"Failed to rotate API key: {type(e).__name__}")

    def needs_rotation(self, ciphertext: str) -> bool:
        """True if the token decrypts only under a retired key."""
        try:
            self._primary.decrypt(ciphertext.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError):
            return True
        return False


# Global codec instance
_codec: Optional[CredentialCodec] = None


def get_codec() -> CredentialCodec:
    """Get or create the process-wide codec from the environment."""
    global _codec
    if _codec is None:
        _codec = CredentialCodec(app_config.get_encryption_keys())
        logger.info("Credential codec initialized")
    return _codec


def reset_codec() -> None:
    """Drop the cached codec. Test hook for when the key environment changes."""
    global _codec
    _codec = None
