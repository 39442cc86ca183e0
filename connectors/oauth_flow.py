"""
OAuth Flow Controller — authorize → callback → persisted connection.

Per authorization attempt::

    NONE ──initiate──▶ PENDING ──callback──▶ CONSUMED ──upsert──▶ CONNECTED
                          └────── ttl ──────▶ EXPIRED

The callback is linear and not retryable: the state is consumed before the
code is exchanged, and Mailchimp codes are single-use.  Any failure after
the state is consumed is terminal and the user restarts at ``initiate``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from connectors.base import BaseConnector
from connectors.connection_store import Connection, ConnectionStore
from connectors.state_store import OAuthStateStore
from connectors.errors import StateInvalidError
from connectors.validator import ConnectionValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationRequest:
    authorization_url: str
    state: str


class OAuthFlowController:
    def __init__(
        self,
        connector: BaseConnector,
        state_store: OAuthStateStore,
        connection_store: ConnectionStore,
        validator: ConnectionValidator,
    ) -> None:
        self._connector = connector
        self._states = state_store
        self._connections = connection_store
        self._validator = validator

    @property
    def provider(self) -> str:
        return self._connector.provider_name

    async def initiate(self, user_id: str) -> AuthorizationRequest:
        """
        Start an authorization transaction for an already-authenticated user.

        Persists a single-use state and returns the provider URL to redirect to.
        """
        auth_state = await self._states.create(user_id, self.provider)
        url = self._connector.get_auth_url(auth_state.state)
        logger.info("OAuth authorization started: user=%s provider=%s", user_id, self.provider)
        return AuthorizationRequest(authorization_url=url, state=auth_state.state)

    async def complete_callback(self, user_id: str, state: str, code: str) -> Connection:
        """
        Finish the transaction started by ``initiate``.

        Raises ``StateInvalidError``, ``TokenExchangeFailedError`` or
        ``MetadataFetchFailedError``; nothing is persisted on failure.
        """
        # 1. Verify and consume the state
        consumed = await self._states.verify_and_consume(state, user_id, self.provider)
        if consumed is None:
            raise StateInvalidError()

        # 2. Exchange code for token
        token = await self._connector.exchange_code(code)

        # 3. Look up the shard and account; the token is dropped if this fails
        metadata = await self._connector.fetch_metadata(token.access_token)

        # 4. Store connection
        connection = await self._connections.upsert(
            user_id,
            token.access_token,
            metadata.server_prefix,
            metadata.extra,
            account_id=metadata.account_id,
            email=metadata.email,
            username=metadata.username,
        )
        self._validator.invalidate(user_id)

        logger.info(
            "OAuth connected: user=%s provider=%s dc=%s",
            user_id,
            self.provider,
            metadata.server_prefix,
        )
        return connection

    async def disconnect(self, user_id: str) -> bool:
        """Soft-disconnect; True if an active connection was deactivated."""
        deactivated = await self._connections.deactivate(user_id)
        self._validator.invalidate(user_id)
        return deactivated
