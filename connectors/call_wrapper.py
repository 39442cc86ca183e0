"""
Upstream Call Wrapper — runs one Mailchimp API operation for one user.

Every outcome is returned as a ``CallEnvelope``; the caller handles a single
result type instead of a family of exceptions.  Only fatal conditions
(store unreachable, cipher misconfigured) propagate.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, model_validator

from connectors.client import MailchimpClient, RateLimitInfo
from connectors.connection_store import ConnectionStore
from connectors.errors import (
    ErrorCode,
    UpstreamApiError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimitError,
    user_message,
)
from connectors.validator import ConnectionValidator, Invalid

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[MailchimpClient], Awaitable[T]]
ClientFactory = Callable[[str, str], MailchimpClient]


class RateLimit(BaseModel):
    remaining: int
    limit: int
    reset_time: datetime


class CallEnvelope(BaseModel, Generic[T]):
    """Uniform result of an upstream call: exactly one of data / error."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    status_code: Optional[int] = None
    rate_limit: Optional[RateLimit] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "CallEnvelope":
        if self.success:
            if self.data is None:
                raise ValueError("successful envelope needs data")
            if self.error is not None or self.error_code is not None:
                raise ValueError("successful envelope cannot carry an error")
        else:
            if self.error is None or self.error_code is None:
                raise ValueError("failed envelope needs error and error_code")
            if self.data is not None:
                raise ValueError("failed envelope cannot carry data")
        return self

    @classmethod
    def ok(cls, data: Any, rate_limit: Optional[RateLimit] = None) -> "CallEnvelope":
        return cls(success=True, data=data, rate_limit=rate_limit)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        rate_limit: Optional[RateLimit] = None,
    ) -> "CallEnvelope":
        return cls(
            success=False,
            error=message or user_message(code),
            error_code=code,
            status_code=status_code,
            rate_limit=rate_limit,
        )


def _rate_limit(info: Optional[RateLimitInfo]) -> Optional[RateLimit]:
    if info is None:
        return None
    return RateLimit(remaining=info.remaining, limit=info.limit, reset_time=info.reset_time)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UpstreamCallWrapper:
    """Validate → build a scoped client → run → normalize."""

    def __init__(
        self,
        validator: ConnectionValidator,
        store: ConnectionStore,
        *,
        client_factory: Optional[ClientFactory] = None,
        timeout: float = 30.0,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._validator = validator
        self._store = store
        self._client_factory = client_factory or (
            lambda token, prefix: MailchimpClient(token, prefix, timeout=timeout)
        )
        self._now = now

    async def call(self, user_id: str, operation: Operation) -> CallEnvelope:
        validation = await self._validator.validate(user_id)
        if isinstance(validation, Invalid):
            logger.info("Skipping upstream call for user %s: %s", user_id, validation.reason.value)
            return CallEnvelope.fail(validation.reason, status_code=401)

        client = self._client_factory(validation.access_token, validation.server_prefix)
        try:
            data = await operation(client)
        except UpstreamError as exc:
            return await self._classify(user_id, exc, client)
        except Exception as exc:
            # Payload the operation could not parse, or a bug inside the operation.
            logger.warning("Upstream operation failed for user %s: %s", user_id, exc)
            return CallEnvelope.fail(
                ErrorCode.UPSTREAM_GENERIC_ERROR,
                "Unexpected response from Mailchimp API",
                status_code=502,
                rate_limit=_rate_limit(client.rate_limit),
            )
        finally:
            await client.aclose()

        # Operations with nothing to return (deletes, 204s) still report data.
        if data is None:
            data = {}
        return CallEnvelope.ok(data, rate_limit=_rate_limit(client.rate_limit))

    async def health_check(self, user_id: str) -> CallEnvelope:
        """Ping the API with the stored token; bump ``last_validated_at`` on success."""
        envelope = await self.call(user_id, lambda client: client.ping())
        if envelope.success:
            await self._store.touch_validation(user_id)
            envelope = CallEnvelope.ok(
                {"status": "healthy", "timestamp": self._now().isoformat()},
                rate_limit=envelope.rate_limit,
            )
        return envelope

    async def _classify(
        self, user_id: str, exc: UpstreamError, client: MailchimpClient
    ) -> CallEnvelope:
        rate_limit = _rate_limit(client.rate_limit)

        if isinstance(exc, UpstreamRateLimitError):
            logger.warning("Mailchimp rate limit hit for user %s (retry in %ss)", user_id, exc.retry_after)
            return CallEnvelope.fail(
                ErrorCode.UPSTREAM_RATE_LIMITED,
                f"Rate limit exceeded. Try again in {exc.retry_after} seconds.",
                status_code=429,
                rate_limit=RateLimit(
                    remaining=0,
                    limit=exc.limit,
                    reset_time=self._now() + timedelta(seconds=exc.retry_after),
                ),
            )

        if isinstance(exc, UpstreamAuthError):
            logger.warning("Mailchimp rejected stored token for user %s; deactivating", user_id)
            await self._store.deactivate(user_id)
            self._validator.invalidate(user_id)
            return CallEnvelope.fail(
                ErrorCode.UPSTREAM_AUTH_ERROR,
                exc.message,
                status_code=exc.status_code,
                rate_limit=rate_limit,
            )

        status_code = exc.status_code
        if isinstance(exc, UpstreamApiError):
            logger.warning("Mailchimp API error for user %s: HTTP %s", user_id, status_code)
        else:
            logger.warning("Mailchimp network error for user %s: %s", user_id, exc.message)
            status_code = status_code or 503

        return CallEnvelope.fail(
            exc.error_code, exc.message, status_code=status_code, rate_limit=rate_limit
        )
