"""
Keyed hashing for opaque bearer tokens.

Refresh tokens, verification tokens and invite tokens are looked up by
equality on their hash, so the hash must be deterministic. An HMAC keyed with
a server-held secret keeps it unforgeable without the key.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from tenantgate.core.errors import ConfigurationError

MIN_SECRET_LENGTH = 32
TOKEN_BYTES = 32  # 256 bits of entropy
HASH_LENGTH = 64  # hex-encoded SHA-256


class TokenHasher:
    """Hashes and verifies opaque tokens with one secret held for the process lifetime."""

    def __init__(self, secret: str | None):
        if not secret:
            raise ConfigurationError("TG_TOKEN_HASH_SECRET is not set")
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"TG_TOKEN_HASH_SECRET must be at least {MIN_SECRET_LENGTH} characters"
            )
        self._key = secret.encode()

    def __repr__(self) -> str:
        return "TokenHasher(secret=***)"

    @staticmethod
    def generate_raw_token() -> str:
        """Return a URL-safe token from the OS CSPRNG."""
        return secrets.token_urlsafe(TOKEN_BYTES)

    def hash_token(self, raw: str) -> str:
        """Return the 64-char lowercase hex HMAC-SHA256 of ``raw``."""
        return hmac.new(self._key, raw.encode(), hashlib.sha256).hexdigest()

    def verify_token(self, raw: str, hashed: str) -> bool:
        """Constant-time check that ``raw`` hashes to ``hashed``."""
        if not isinstance(raw, str) or not isinstance(hashed, str):
            return False
        expected = self.hash_token(raw)
        return hmac.compare_digest(expected.encode(), hashed.lower().encode())
