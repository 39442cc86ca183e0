"""
Connector API routes — Mailchimp OAuth authorize / callback / disconnect.

Route prefix: /api/v1/auth/mailchimp
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from api.dependencies import get_services
from auth.dependencies import Identity, get_current_user_id, get_identity
from config.settings import config
from connectors.errors import (
    ConnectorError,
    MetadataFetchFailedError,
    StateInvalidError,
    TokenExchangeFailedError,
)
from connectors.factory import ConnectorServices

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])

_ERROR_TAGS = {
    StateInvalidError: "invalid_state",
    TokenExchangeFailedError: "token_exchange_failed",
    MetadataFetchFailedError: "metadata_fetch_failed",
}


def _dashboard_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{config.dashboard_url}?{urlencode(params)}",
        status_code=303,
    )


@router.post("/authorize")
async def authorize(
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> Dict[str, str]:
    """
    Start the Mailchimp OAuth flow.

    The frontend redirects the browser to the returned ``url``.
    """
    request = await services.oauth.initiate(user_id)
    return {"url": request.authorization_url, "state": request.state}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    identity: Identity = Depends(get_identity),
    services: ConnectorServices = Depends(get_services),
) -> RedirectResponse:
    """
    OAuth callback — Mailchimp redirects here after consent.

    Always answers with a redirect to the dashboard carrying either
    ``connected=true`` or an ``error`` tag.
    """
    if not identity.is_authenticated or not identity.user_id:
        return _dashboard_redirect(error="unauthorized")
    user_id = identity.user_id

    # 1. Provider-side errors (user denied consent, …)
    if error:
        logger.warning("OAuth error from Mailchimp for user %s: %s %s", user_id, error, error_description or "")
        if state:
            # Burn the state so the attempt cannot be resumed.
            await services.state_store.verify_and_consume(state, user_id, services.oauth.provider)
        return _dashboard_redirect(error=error)

    # 2. Required parameters
    if not code or not state:
        return _dashboard_redirect(error="missing_parameters")

    # 3. Verify state, exchange code, fetch metadata, store connection
    try:
        await services.oauth.complete_callback(user_id, state, code)
    except ConnectorError as exc:
        tag = _ERROR_TAGS.get(type(exc), "connection_failed")
        logger.warning("OAuth callback failed for user %s: %s", user_id, tag)
        return _dashboard_redirect(error=tag)

    return _dashboard_redirect(connected="true")


@router.post("/disconnect")
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> Dict[str, Any]:
    """Soft-disconnect the user's Mailchimp account."""
    disconnected = await services.oauth.disconnect(user_id)
    return {"disconnected": disconnected}
