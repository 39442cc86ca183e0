"""
OAuth state store — short-lived, single-use CSRF tokens.

A state row is created when a user starts an authorization transaction and
is consumed by the callback.  Consumption is one ``DELETE ... RETURNING``
statement matching value, owner, provider and expiry together, so two
concurrent callbacks carrying the same value cannot both succeed.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.errors import StorageError
from database.models import OAuthState

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL = timedelta(minutes=10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class AuthorizationState:
    state: str
    user_id: str
    provider: str
    created_at: datetime
    expires_at: datetime


class OAuthStateStore:
    """Persists and consumes ``authorization_state`` rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl: timedelta = DEFAULT_STATE_TTL,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._ttl = ttl
        self._now = now

    async def create(self, user_id: str, provider: str) -> AuthorizationState:
        created_at = self._now()
        row = OAuthState(
            state=secrets.token_urlsafe(32),
            user_id=user_id,
            provider=provider,
            created_at=created_at,
            expires_at=created_at + self._ttl,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to persist OAuth state for user %s: %s", user_id, exc)
            raise StorageError("Could not persist OAuth state") from exc

        return AuthorizationState(
            state=row.state,
            user_id=user_id,
            provider=provider,
            created_at=created_at,
            expires_at=created_at + self._ttl,
        )

    async def verify_and_consume(
        self, state: str, user_id: str, provider: str
    ) -> Optional[AuthorizationState]:
        """
        Atomically delete and return the matching, unexpired state row.

        Returns ``None`` when nothing matched.  The reason (unknown value,
        other owner, other provider, expired, already consumed) is not
        reported.
        """
        stmt = (
            delete(OAuthState)
            .where(
                OAuthState.state == state,
                OAuthState.user_id == user_id,
                OAuthState.provider == provider,
                OAuthState.expires_at > self._now(),
            )
            .returning(
                OAuthState.state,
                OAuthState.user_id,
                OAuthState.provider,
                OAuthState.created_at,
                OAuthState.expires_at,
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.first()
            await session.commit()

        if row is None:
            logger.info("OAuth state rejected for user %s (provider=%s)", user_id, provider)
            return None

        return AuthorizationState(
            state=row.state,
            user_id=row.user_id,
            provider=row.provider,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
        )

    async def cleanup_expired(self) -> int:
        """Delete every state row whose ``expires_at`` has passed."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(OAuthState).where(OAuthState.expires_at <= self._now())
            )
            await session.commit()
        count = result.rowcount or 0
        if count:
            logger.info("Removed %d expired OAuth state(s)", count)
        return count


async def run_state_sweeper(store: OAuthStateStore, interval_seconds: float) -> None:
    """Call ``cleanup_expired`` every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.cleanup_expired()
        except Exception:
            logger.exception("OAuth state sweep failed; retrying in %ss", interval_seconds)
