"""
JWT-style session token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256 by the
identity provider.  The shared secret is loaded from
``config.identity_token_secret`` (env var: ``IDENTITY_TOKEN_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from typing import Optional

from config.settings import config

_DEFAULT_EXPIRY_SECONDS = 3600


class InvalidSessionToken(ValueError):
    pass


def create_token(
    user_id: str,
    *,
    expires_in: int = _DEFAULT_EXPIRY_SECONDS,
    secret: Optional[str] = None,
) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    payload = {
        "user_id": user_id,
        "exp": int(time.time()) + expires_in,
    }
    raw = json.dumps(payload).encode()
    sig = hmac.new((secret or config.identity_token_secret).encode(), raw, hashlib.sha256).hexdigest()
    return b64encode(raw).decode() + "." + sig


def verify_token(token: str, *, secret: Optional[str] = None) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``InvalidSessionToken`` on malformed, forged or expired tokens.
    """
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise InvalidSessionToken("bad format")
    try:
        raw = b64decode(parts[0], validate=True)
    except ValueError as exc:
        raise InvalidSessionToken("bad encoding") from exc
    expected_sig = hmac.new(
        (secret or config.identity_token_secret).encode(), raw, hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(parts[1], expected_sig):
        raise InvalidSessionToken("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidSessionToken("bad payload") from exc
    if not isinstance(payload, dict) or not payload.get("user_id"):
        raise InvalidSessionToken("missing user_id")
    if payload.get("exp", 0) < time.time():
        raise InvalidSessionToken("token expired")
    return str(payload["user_id"])
