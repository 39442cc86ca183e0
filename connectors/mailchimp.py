"""
MailchimpConnector — OAuth2 web flow for Mailchimp.

Mailchimp access tokens do not expire and come without a refresh token;
the account's API shard (``dc``) is only known after a metadata lookup.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from config.settings import config
from connectors.base import AccountMetadata, BaseConnector, TokenResponse
from connectors.errors import MetadataFetchFailedError, TokenExchangeFailedError

logger = logging.getLogger(__name__)

# Mailchimp OAuth2 endpoints
_MAILCHIMP_AUTH_URL = "https://login.mailchimp.com/oauth2/authorize"
_MAILCHIMP_TOKEN_URL = "https://login.mailchimp.com/oauth2/token"
_MAILCHIMP_METADATA_URL = "https://login.mailchimp.com/oauth2/metadata"


class MailchimpConnector(BaseConnector):
    """OAuth2 connector for Mailchimp."""

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client_id = client_id if client_id is not None else config.mailchimp_client_id
        self._client_secret = (
            client_secret if client_secret is not None else config.mailchimp_client_secret
        )
        self._redirect_uri = (
            redirect_uri if redirect_uri is not None else config.mailchimp_redirect_uri
        )
        self._timeout = timeout if timeout is not None else config.oauth_http_timeout_seconds
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "mailchimp"

    @property
    def display_name(self) -> str:
        return "Mailchimp"

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._redirect_uri)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def get_auth_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "state": state,
        }
        return f"{_MAILCHIMP_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange auth code for an access token."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    _MAILCHIMP_TOKEN_URL,
                    data={
                        "grant_type": "authorization_code",
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "redirect_uri": self._redirect_uri,
                        "code": code,
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Mailchimp token exchange rejected: HTTP %s", exc.response.status_code)
            raise TokenExchangeFailedError(
                f"Token exchange failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Mailchimp token exchange transport failure: %s", type(exc).__name__)
            raise TokenExchangeFailedError("Token exchange request failed") from exc
        except ValueError as exc:
            raise TokenExchangeFailedError("Token endpoint returned invalid JSON") from exc

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise TokenExchangeFailedError("Token endpoint response had no access_token")

        return TokenResponse(
            access_token=access_token,
            token_type=data.get("token_type", "bearer"),
            scope=data.get("scope"),
        )

    async def fetch_metadata(self, access_token: str) -> AccountMetadata:
        """Fetch the API shard and login details for a fresh token."""
        try:
            async with self._client() as client:
                resp = await client.get(
                    _MAILCHIMP_METADATA_URL,
                    headers={"Authorization": f"OAuth {access_token}"},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Mailchimp metadata fetch rejected: HTTP %s", exc.response.status_code)
            raise MetadataFetchFailedError(
                f"Metadata fetch failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Mailchimp metadata transport failure: %s", type(exc).__name__)
            raise MetadataFetchFailedError("Metadata request failed") from exc
        except ValueError as exc:
            raise MetadataFetchFailedError("Metadata endpoint returned invalid JSON") from exc

        if not isinstance(data, dict) or not data.get("dc"):
            raise MetadataFetchFailedError("Metadata response had no server prefix")

        login = data.get("login") or {}
        user_id = data.get("user_id")
        return AccountMetadata(
            server_prefix=data["dc"],
            account_id=str(user_id) if user_id is not None else None,
            email=login.get("login_email") or login.get("email"),
            username=login.get("login_name"),
            extra={
                "dc": data["dc"],
                "role": data.get("role"),
                "account_name": data.get("accountname"),
                "login": login,
                "api_endpoint": data.get("api_endpoint"),
            },
        )
