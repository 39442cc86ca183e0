"""
BaseConnector — abstract interface for OAuth2 provider adapters.

The OAuth Flow Controller only talks to this interface; the concrete
provider (Mailchimp) lives behind it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    token_type: str = "bearer"
    scope: Optional[str] = None


@dataclass(frozen=True)
class AccountMetadata:
    """Account attributes returned by the provider's metadata endpoint."""

    server_prefix: str
    account_id: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug stored in ``authorization_state.provider``."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque single-use CSRF token.

        Returns
        -------
        The full URL to redirect the user to.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange the authorization code for an access token.

        Raises ``TokenExchangeFailedError`` on any non-2xx response,
        transport failure or timeout.
        """
        ...

    @abstractmethod
    async def fetch_metadata(self, access_token: str) -> AccountMetadata:
        """
        Look up the account (and API shard) behind ``access_token``.

        Raises ``MetadataFetchFailedError`` on any failure.
        """
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client id, secret, redirect URI).
        """
        return True
