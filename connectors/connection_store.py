"""
Connection store — get / upsert / deactivate per-user Mailchimp connections.

This is the single interface to the ``connection`` table.  Access tokens
are encrypted on the way in and only ever decrypted in memory by
``get_decrypted``; ciphertext never leaves this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from connectors.errors import CorruptedConnectionError, StorageError, TokenDecryptionError
from connectors.state_store import as_utc, utcnow
from database.models import MailchimpConnection

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class Connection:
    """A connection row as seen by callers: no token material."""

    user_id: str
    server_prefix: str
    is_active: bool
    account_id: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    last_validated_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class DecryptedConnection:
    """A connection together with its plaintext token (in memory only).

    ``access_token`` is ``None`` for inactive connections, which are never
    decrypted.
    """

    connection: Connection
    access_token: Optional[str]

    @property
    def is_active(self) -> bool:
        return self.connection.is_active

    @property
    def server_prefix(self) -> str:
        return self.connection.server_prefix

    def __repr__(self) -> str:
        return f"DecryptedConnection(connection={self.connection!r}, access_token=<redacted>)"


def _to_connection(row: MailchimpConnection) -> Connection:
    return Connection(
        user_id=row.user_id,
        server_prefix=row.server_prefix,
        is_active=bool(row.is_active),
        account_id=row.account_id,
        email=row.email,
        username=row.username,
        metadata=dict(row.metadata_ or {}),
        created_at=as_utc(row.created_at),
        last_validated_at=as_utc(row.last_validated_at),
        updated_at=as_utc(row.updated_at),
    )


class ConnectionStore:
    """Repository for ``connection`` rows with encryption at rest."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
        *,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher
        self._now = now

    async def upsert(
        self,
        user_id: str,
        access_token: str,
        server_prefix: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        account_id: Optional[str] = None,
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Connection:
        """
        Insert or replace the single connection row for ``user_id``.

        A reconnect overwrites token, shard, account fields and metadata and
        re-activates a soft-disconnected row.  ``created_at`` is kept.
        """
        now = self._now()
        # Keyed by column name ("metadata", not the ORM attribute "metadata_").
        values = {
            "access_token_ciphertext": self._cipher.encrypt(access_token),
            "server_prefix": server_prefix,
            "account_id": account_id,
            "email": email,
            "username": username,
            "is_active": True,
            "metadata": metadata or {},
            "last_validated_at": now,
            "updated_at": now,
        }
        table = MailchimpConnection.__table__

        try:
            async with self._session_factory() as session:
                dialect = session.get_bind().dialect.name
                insert = _UPSERT_DIALECTS.get(dialect)
                if insert is None:
                    raise StorageError(f"Unsupported database dialect: {dialect}")
                stmt = (
                    insert(table)
                    .values(user_id=user_id, created_at=now, **values)
                    .on_conflict_do_update(index_elements=[table.c.user_id], set_=values)
                )
                await session.execute(stmt)
                await session.commit()
                row = await session.get(MailchimpConnection, user_id)
                connection = _to_connection(row)
        except SQLAlchemyError as exc:
            logger.error("Failed to store Mailchimp connection for user %s: %s", user_id, exc)
            raise StorageError("Could not persist Mailchimp connection") from exc

        logger.info("Stored Mailchimp connection for user %s (dc=%s)", user_id, server_prefix)
        return connection

    async def get(self, user_id: str) -> Optional[Connection]:
        """Return the connection row without token material."""
        async with self._session_factory() as session:
            row = await session.get(MailchimpConnection, user_id)
            return _to_connection(row) if row else None

    async def get_decrypted(self, user_id: str) -> Optional[DecryptedConnection]:
        """
        Fetch the row and decrypt its token in memory.

        Returns ``None`` when the user never connected.  Raises
        ``CorruptedConnectionError`` when an active row's token cannot be
        decrypted (tampered data, or a rotated key with no migration).
        """
        async with self._session_factory() as session:
            row = await session.get(MailchimpConnection, user_id)
            if row is None:
                return None
            connection = _to_connection(row)
            ciphertext = row.access_token_ciphertext

        if not connection.is_active:
            return DecryptedConnection(connection=connection, access_token=None)

        try:
            access_token = self._cipher.decrypt(ciphertext)
        except TokenDecryptionError as exc:
            logger.error("Stored Mailchimp token for user %s is not decryptable", user_id)
            raise CorruptedConnectionError(user_id) from exc

        return DecryptedConnection(connection=connection, access_token=access_token)

    async def deactivate(self, user_id: str) -> bool:
        """
        Soft-disconnect: set ``is_active = false``.

        Returns True only if an active row existed before the call, so a
        second call returns False.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(MailchimpConnection)
                .where(
                    MailchimpConnection.user_id == user_id,
                    MailchimpConnection.is_active.is_(True),
                )
                .values(is_active=False, updated_at=self._now())
            )
            await session.commit()

        deactivated = (result.rowcount or 0) > 0
        if deactivated:
            logger.info("Deactivated Mailchimp connection for user %s", user_id)
        return deactivated

    async def touch_validation(self, user_id: str) -> None:
        """Bump ``last_validated_at`` after a check confirmed the connection."""
        async with self._session_factory() as session:
            await session.execute(
                update(MailchimpConnection)
                .where(MailchimpConnection.user_id == user_id)
                .values(last_validated_at=self._now())
            )
            await session.commit()

    async def delete(self, user_id: str) -> bool:
        """Hard delete, for user-data erasure requests."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(MailchimpConnection).where(MailchimpConnection.user_id == user_id)
            )
            await session.commit()

        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info("Deleted Mailchimp connection for user %s", user_id)
        return deleted
