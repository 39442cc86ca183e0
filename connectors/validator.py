"""
Connection validator — the read path used before every protected call.

Results are kept in a short-lived, bounded, per-process ``ValidationCache``.
The cache is not shared between processes: a disconnect on one instance can
stay invisible to another instance until the entry's TTL runs out.  Callers
that need a strong read pass ``bypass_cache=True``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, Union

from connectors.connection_store import ConnectionStore
from connectors.errors import CorruptedConnectionError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Valid:
    server_prefix: str
    access_token: str

    def __repr__(self) -> str:
        return f"Valid(server_prefix={self.server_prefix!r}, access_token=<redacted>)"


@dataclass(frozen=True)
class Invalid:
    reason: ErrorCode


ValidationResult = Union[Valid, Invalid]

# Resolves a shared read whose result must not be reused.
_RETRY = object()


class ValidationCache:
    """Bounded map of user id → validation result with TTL eviction.

    Guarded by a lock so it can be shared by concurrent requests; the lock
    is never held across an await.
    """

    def __init__(
        self,
        ttl_seconds: float = 5.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, ValidationResult]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[ValidationResult]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            expires_at, result = entry
            if self._clock() >= expires_at:
                del self._entries[user_id]
                return None
            return result

    def set(self, user_id: str, result: ValidationResult) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[user_id] = (self._clock() + self.ttl_seconds, result)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ConnectionValidator:
    """Classifies a user's connection as ``Valid`` or ``Invalid(reason)``."""

    def __init__(self, store: ConnectionStore, cache: ValidationCache) -> None:
        self._store = store
        self._cache = cache
        self._inflight: Dict[str, asyncio.Future] = {}

    async def validate(self, user_id: str, *, bypass_cache: bool = False) -> ValidationResult:
        while not bypass_cache:
            cached = self._cache.get(user_id)
            if cached is not None:
                return cached

            # Concurrent misses for one user share a single store read.
            pending = self._inflight.get(user_id)
            if pending is None:
                break
            result = await asyncio.shield(pending)
            if result is not _RETRY:
                return result

        return await self._lead(user_id)

    async def _lead(self, user_id: str) -> ValidationResult:
        future = asyncio.get_running_loop().create_future()
        self._inflight[user_id] = future
        try:
            result = await self._load(user_id)
        except asyncio.CancelledError:
            # Waiters start their own read instead of inheriting the cancellation.
            future.set_result(_RETRY)
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieved here so an unawaited future does not log a warning.
            future.exception()
            raise
        else:
            if self._inflight.get(user_id) is future:
                self._cache.set(user_id, result)
                future.set_result(result)
            else:
                # Detached by invalidate() while reading; waiters re-read.
                logger.debug("Discarding validation read for user %s invalidated mid-flight", user_id)
                future.set_result(_RETRY)
            return result
        finally:
            if self._inflight.get(user_id) is future:
                del self._inflight[user_id]

    def invalidate(self, user_id: str) -> None:
        """Purge the cached result for ``user_id`` (disconnect, reconnect).

        A read already in flight is detached, so its result is neither cached
        nor handed to callers that have not received it yet.
        """
        self._inflight.pop(user_id, None)
        self._cache.invalidate(user_id)

    async def _load(self, user_id: str) -> ValidationResult:
        try:
            record = await self._store.get_decrypted(user_id)
        except CorruptedConnectionError:
            return Invalid(ErrorCode.CORRUPTED_CONNECTION)

        if record is None:
            return Invalid(ErrorCode.NOT_CONNECTED)
        if not record.is_active:
            return Invalid(ErrorCode.INACTIVE)

        await self._store.touch_validation(user_id)
        return Valid(server_prefix=record.server_prefix, access_token=record.access_token)
