"""
Token encryption — encrypt / decrypt Mailchimp access tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Keys are loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).  Several comma-separated keys may be
given for rotation: the first one encrypts, every key is tried on decrypt.

There is no plaintext fallback: a missing or malformed key is fatal.
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from config.settings import config
from connectors.errors import CipherConfigurationError, TokenDecryptionError

logger = logging.getLogger(__name__)


class TokenCipher:
    """Symmetric cipher for stored access tokens."""

    def __init__(self, keys: Iterable[str]) -> None:
        keys = [k for k in keys if k]
        if not keys:
            raise CipherConfigurationError(
                "TOKEN_ENCRYPTION_KEY not set — refusing to store OAuth tokens as plaintext"
            )
        try:
            fernets = [Fernet(k.encode() if isinstance(k, str) else k) for k in keys]
        except (ValueError, TypeError) as exc:
            raise CipherConfigurationError(f"Invalid TOKEN_ENCRYPTION_KEY: {exc}") from exc
        self._fernet = MultiFernet(fernets)
        logger.info("Token encryption enabled (Fernet, %d key(s))", len(fernets))

    def encrypt(self, plaintext: str) -> str:
        """Return the Fernet ciphertext (URL-safe base64)."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a token read from the database.

        Raises ``TokenDecryptionError`` for tampered ciphertext or ciphertext
        written under a key that is no longer configured.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, ValueError) as exc:
            raise TokenDecryptionError("Stored token could not be decrypted") from exc


_cipher: Optional[TokenCipher] = None


def get_token_cipher() -> TokenCipher:
    """Process-wide cipher built once from settings."""
    global _cipher
    if _cipher is None:
        _cipher = TokenCipher(config.encryption_keys())
    return _cipher
