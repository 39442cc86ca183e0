"""
Shared fixtures: in-memory SQLite engine, stores, and a fake clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from connectors.connection_store import ConnectionStore
from connectors.encryption import TokenCipher
from connectors.state_store import OAuthStateStore
from connectors.validator import ConnectionValidator, ValidationCache
from database.models import Base


class FakeClock:
    """Wall clock for stores; advance it to expire rows."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self) -> None:
        self.current = 1000.0

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher([Fernet.generate_key().decode()])


@pytest.fixture
def state_store(session_factory, clock) -> OAuthStateStore:
    return OAuthStateStore(session_factory, now=clock)


@pytest.fixture
def connection_store(session_factory, cipher, clock) -> ConnectionStore:
    return ConnectionStore(session_factory, cipher, now=clock)


@pytest.fixture
def cache(monotonic) -> ValidationCache:
    return ValidationCache(ttl_seconds=5.0, max_entries=16, clock=monotonic)


@pytest.fixture
def validator(connection_store, cache) -> ConnectionValidator:
    return ConnectionValidator(connection_store, cache)
