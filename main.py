"""
Mailchimp dashboard backend — application entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from api.routes import router as api_router
from config.settings import config
from connectors.factory import ConnectorServices, build_services
from connectors.routes import router as connectors_router
from connectors.state_store import run_state_sweeper

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(services: Optional[ConnectorServices] = None) -> FastAPI:
    """
    Build the FastAPI app.

    When ``services`` is given (tests), no database engine is touched and
    no background sweeper is started.
    """
    app = FastAPI(
        title="Mailchimp Dashboard API",
        version="1.0.0",
        description="Mailchimp OAuth connection lifecycle and analytics access.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/auth/mailchimp")
    app.include_router(api_router, prefix="/api/v1")

    if services is not None:
        app.state.services = services
        return app

    @app.on_event("startup")
    async def on_startup():
        from database.session import async_session_factory, init_models

        logger.info("Creating tables…")
        await init_models()

        app.state.services = build_services(async_session_factory)
        removed = await app.state.services.state_store.cleanup_expired()
        if removed:
            logger.info("Cleaned up %d expired OAuth states from previous run", removed)

        app.state.sweeper = asyncio.create_task(
            run_state_sweeper(
                app.state.services.state_store,
                config.oauth_state_sweep_interval_seconds,
            )
        )
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
