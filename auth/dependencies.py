"""
FastAPI dependencies for authentication.

Provides ``get_identity`` (never fails) and ``get_current_user_id``
(401 for unauthenticated callers), used across all protected routes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import InvalidSessionToken, verify_token

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: Optional[str]
    is_authenticated: bool


ANONYMOUS = Identity(user_id=None, is_authenticated=False)


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    session_token: Optional[str] = Cookie(default=None),
) -> Identity:
    """
    Resolve the caller's identity from the session token.

    The Bearer header is used by API calls; the ``session_token`` cookie
    covers browser redirects such as the OAuth callback.
    """
    token = credentials.credentials if credentials is not None else session_token
    if not token:
        return ANONYMOUS
    try:
        user_id = verify_token(token)
    except InvalidSessionToken as exc:
        logger.info("Rejected session token: %s", exc)
        return ANONYMOUS
    return Identity(user_id=user_id, is_authenticated=True)


async def get_current_user_id(identity: Identity = Depends(get_identity)) -> str:
    """Return the authenticated ``user_id`` or fail with 401."""
    if not identity.is_authenticated or not identity.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized. Please log in first.",
        )
    return identity.user_id
