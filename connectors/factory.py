"""
Wiring for the connection layer.

Builds one set of stores, validator, flow controller and call wrapper per
process.  Tests build their own with an in-memory engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.call_wrapper import ClientFactory, UpstreamCallWrapper
from connectors.connection_store import ConnectionStore
from connectors.encryption import TokenCipher, get_token_cipher
from connectors.mailchimp import MailchimpConnector
from connectors.oauth_flow import OAuthFlowController
from connectors.state_store import OAuthStateStore
from connectors.validator import ConnectionValidator, ValidationCache


@dataclass
class ConnectorServices:
    state_store: OAuthStateStore
    connection_store: ConnectionStore
    validator: ConnectionValidator
    oauth: OAuthFlowController
    calls: UpstreamCallWrapper


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings = config,
    cipher: Optional[TokenCipher] = None,
    connector: Optional[BaseConnector] = None,
    cache: Optional[ValidationCache] = None,
    client_factory: Optional[ClientFactory] = None,
) -> ConnectorServices:
    state_store = OAuthStateStore(
        session_factory, ttl=timedelta(seconds=settings.oauth_state_ttl_seconds)
    )
    connection_store = ConnectionStore(session_factory, cipher or get_token_cipher())
    validator = ConnectionValidator(
        connection_store,
        cache
        or ValidationCache(
            ttl_seconds=settings.validation_cache_ttl_seconds,
            max_entries=settings.validation_cache_max_entries,
        ),
    )
    oauth = OAuthFlowController(
        connector or MailchimpConnector(),
        state_store,
        connection_store,
        validator,
    )
    calls = UpstreamCallWrapper(
        validator,
        connection_store,
        client_factory=client_factory,
        timeout=settings.mailchimp_api_timeout_seconds,
    )
    return ConnectorServices(
        state_store=state_store,
        connection_store=connection_store,
        validator=validator,
        oauth=oauth,
        calls=calls,
    )
