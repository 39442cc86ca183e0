"""
MailchimpClient — user-scoped client for the Mailchimp Marketing API.

One instance is built per call with that user's token and shard, so
credentials never cross requests.  Non-2xx responses and transport
failures are raised as the ``Upstream*`` exceptions from
``connectors.errors``; the Upstream Call Wrapper turns them into envelopes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from connectors.errors import (
    UpstreamApiError,
    UpstreamAuthError,
    UpstreamNetworkError,
    UpstreamRateLimitError,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


@dataclass(frozen=True)
class RateLimitInfo:
    remaining: int
    limit: int
    reset_time: datetime


def _int_header(headers: httpx.Headers, name: str, default: int) -> int:
    try:
        return int(headers.get(name, default))
    except (TypeError, ValueError):
        return default


class MailchimpClient:
    """Thin async wrapper over ``https://{dc}.api.mailchimp.com/3.0``."""

    def __init__(
        self,
        access_token: str,
        server_prefix: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = f"https://{server_prefix}.api.mailchimp.com/3.0"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )
        self.rate_limit: Optional[RateLimitInfo] = None

    def __repr__(self) -> str:
        return f"MailchimpClient(base_url={self.base_url!r})"

    async def __aenter__(self) -> "MailchimpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Core request ────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        try:
            resp = await self._http.request(method, path, params=params, json=json)
        except httpx.TimeoutException as exc:
            raise UpstreamNetworkError(f"Request timeout calling {path}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamNetworkError(f"Network request failed calling {path}") from exc

        self._record_rate_limit(resp.headers)

        if resp.is_error:
            self._raise_for_response(resp)

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamApiError(
                "Malformed response from Mailchimp API", status_code=resp.status_code
            ) from exc

    def _record_rate_limit(self, headers: httpx.Headers) -> None:
        remaining = headers.get("X-RateLimit-Remaining")
        limit = headers.get("X-RateLimit-Limit")
        reset = headers.get("X-RateLimit-Reset")
        if not (remaining and limit and reset):
            return
        try:
            self.rate_limit = RateLimitInfo(
                remaining=int(remaining),
                limit=int(limit),
                reset_time=datetime.fromtimestamp(int(reset), tz=timezone.utc),
            )
        except ValueError:
            logger.debug("Ignoring unparsable rate-limit headers")

    def _raise_for_response(self, resp: httpx.Response) -> None:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        detail = body.get("detail") or resp.reason_phrase or f"HTTP {resp.status_code}"
        extra = {"title": body.get("title"), "instance": body.get("instance")}

        if resp.status_code == 429:
            raise UpstreamRateLimitError(
                detail,
                retry_after=_int_header(resp.headers, "Retry-After", DEFAULT_RETRY_AFTER_SECONDS),
                limit=_int_header(resp.headers, "X-RateLimit-Limit", 0),
                **extra,
            )
        if resp.status_code in (401, 403):
            raise UpstreamAuthError(detail, status_code=resp.status_code, **extra)
        raise UpstreamApiError(detail, status_code=resp.status_code, **extra)

    # ── Verbs ───────────────────────────────────────────────────────────

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        return await self.request("GET", path, params=params or None)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, json=body)

    async def patch(self, path: str, body: Any = None) -> Any:
        return await self.request("PATCH", path, json=body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, json=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    # ── Operations used by the dashboard ────────────────────────────────

    async def ping(self) -> Dict[str, Any]:
        return await self.get("/ping")

    async def get_root(self) -> Dict[str, Any]:
        return await self.get("/")

    async def get_lists(self, count: int = 10, offset: int = 0) -> Dict[str, Any]:
        return await self.get("/lists", {"count": count, "offset": offset})

    async def get_campaigns(
        self, count: int = 10, offset: int = 0, status: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.get("/campaigns", {"count": count, "offset": offset, "status": status})

    async def get_reports(self, count: int = 10, offset: int = 0) -> Dict[str, Any]:
        return await self.get("/reports", {"count": count, "offset": offset})
