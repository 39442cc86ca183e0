"""
REST API routes for dashboard data.

Each handler validates its query parameters, then hands one operation to the
Upstream Call Wrapper and returns the resulting envelope as-is.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_services
from auth.dependencies import get_current_user_id
from connectors.call_wrapper import CallEnvelope
from connectors.factory import ConnectorServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/mailchimp/connection")
async def connection_status(
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Connection status for the settings page.

    Reads through to the store (no cache) so a disconnect made on another
    instance is reflected immediately.  No token material is returned.
    """
    connection = await services.connection_store.get(user_id)
    if connection is None:
        return {"connected": False, "status": "not_connected"}
    return {
        "connected": connection.is_active,
        "status": "active" if connection.is_active else "inactive",
        "server_prefix": connection.server_prefix,
        "account_id": connection.account_id,
        "email": connection.email,
        "username": connection.username,
        "account_name": connection.metadata.get("account_name"),
        "connected_at": connection.created_at.isoformat() if connection.created_at else None,
        "last_validated_at": (
            connection.last_validated_at.isoformat() if connection.last_validated_at else None
        ),
    }


@router.get("/mailchimp/health")
async def mailchimp_health(
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> CallEnvelope:
    return await services.calls.health_check(user_id)


@router.get("/mailchimp/lists")
async def mailchimp_lists(
    count: int = Query(10, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> CallEnvelope:
    return await services.calls.call(
        user_id, lambda client: client.get_lists(count=count, offset=offset)
    )


@router.get("/mailchimp/campaigns")
async def mailchimp_campaigns(
    count: int = Query(10, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    status: Optional[str] = Query(None, pattern="^(save|paused|schedule|sending|sent)$"),
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> CallEnvelope:
    return await services.calls.call(
        user_id,
        lambda client: client.get_campaigns(count=count, offset=offset, status=status),
    )


@router.get("/mailchimp/reports")
async def mailchimp_reports(
    count: int = Query(10, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ConnectorServices = Depends(get_services),
) -> CallEnvelope:
    return await services.calls.call(
        user_id, lambda client: client.get_reports(count=count, offset=offset)
    )
