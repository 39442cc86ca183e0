"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from fastapi import Request

from connectors.factory import ConnectorServices


def get_services(request: Request) -> ConnectorServices:
    """Return the connection-layer services built at startup."""
    return request.app.state.services
