"""
Error taxonomy for the Mailchimp connection layer.

Every failure that crosses the Upstream Call Wrapper is reported as a
``CallEnvelope`` carrying one of the ``ErrorCode`` values below.  The
exception classes exist for the seams *below* the wrapper (OAuth flow,
stores, scoped client) and for the HTTP layer's redirect mapping.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    STATE_INVALID = "StateInvalid"
    TOKEN_EXCHANGE_FAILED = "TokenExchangeFailed"
    METADATA_FETCH_FAILED = "MetadataFetchFailed"
    NOT_CONNECTED = "NotConnected"
    INACTIVE = "Inactive"
    CORRUPTED_CONNECTION = "CorruptedConnection"
    UPSTREAM_RATE_LIMITED = "UpstreamRateLimited"
    UPSTREAM_AUTH_ERROR = "UpstreamAuthError"
    UPSTREAM_NETWORK_ERROR = "UpstreamNetworkError"
    UPSTREAM_GENERIC_ERROR = "UpstreamGenericError"


_RECONNECT = {ErrorCode.NOT_CONNECTED, ErrorCode.INACTIVE, ErrorCode.UPSTREAM_AUTH_ERROR}
_RETRY_CONNECT = {
    ErrorCode.STATE_INVALID,
    ErrorCode.TOKEN_EXCHANGE_FAILED,
    ErrorCode.METADATA_FETCH_FAILED,
}
_TRANSIENT = {ErrorCode.UPSTREAM_RATE_LIMITED, ErrorCode.UPSTREAM_NETWORK_ERROR}


def user_message(code: ErrorCode) -> str:
    """Map an error code to the text shown by the presentation layer."""
    if code in _RECONNECT:
        return "Your Mailchimp connection needs attention. Please reconnect your account."
    if code in _RETRY_CONNECT:
        return "We could not connect your Mailchimp account. Please try connecting again."
    if code in _TRANSIENT:
        return "Mailchimp is temporarily unavailable. Please try again in a moment."
    if code is ErrorCode.CORRUPTED_CONNECTION:
        return "Your stored Mailchimp connection is unreadable. Please reconnect your account."
    return "An error occurred with your Mailchimp connection."


# ── Connection lifecycle ────────────────────────────────────────────────


class ConnectorError(Exception):
    """Base class for expected failures in the connection layer."""

    error_code: ErrorCode = ErrorCode.UPSTREAM_GENERIC_ERROR


class StorageError(Exception):
    """A store write failed.  Fatal: aborts the request."""


class CipherConfigurationError(Exception):
    """The token encryption key is missing or malformed.  Fatal."""


class TokenDecryptionError(Exception):
    """Ciphertext could not be decrypted with any configured key."""


class StateInvalidError(ConnectorError):
    error_code = ErrorCode.STATE_INVALID

    def __init__(self) -> None:
        # One message for every cause: wrong owner, wrong provider, expired, replayed.
        super().__init__("Invalid or expired OAuth state")


class TokenExchangeFailedError(ConnectorError):
    error_code = ErrorCode.TOKEN_EXCHANGE_FAILED


class MetadataFetchFailedError(ConnectorError):
    error_code = ErrorCode.METADATA_FETCH_FAILED


class CorruptedConnectionError(ConnectorError):
    error_code = ErrorCode.CORRUPTED_CONNECTION

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Stored connection for user {user_id} cannot be decrypted")
        self.user_id = user_id


# ── Upstream API ────────────────────────────────────────────────────────


class UpstreamError(ConnectorError):
    """Raised by the scoped client for any failed upstream request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        title: Optional[str] = None,
        instance: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.title = title
        self.instance = instance


class UpstreamApiError(UpstreamError):
    error_code = ErrorCode.UPSTREAM_GENERIC_ERROR


class UpstreamAuthError(UpstreamError):
    error_code = ErrorCode.UPSTREAM_AUTH_ERROR


class UpstreamRateLimitError(UpstreamError):
    error_code = ErrorCode.UPSTREAM_RATE_LIMITED

    def __init__(self, message: str, *, retry_after: int, limit: int, **kwargs) -> None:
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after
        self.limit = limit


class UpstreamNetworkError(UpstreamError):
    error_code = ErrorCode.UPSTREAM_NETWORK_ERROR
