"""httpx plumbing: OAuth header injection and optional request logging."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from castor.config import DEFAULT_OAUTH_CONFIG

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator, Mapping

    from castor.auth.store import TokenStore
    from castor.config import OAuthConfig

logger = logging.getLogger(__name__)

#: Headers the SDK sets that must not reach the OAuth endpoint.
_STRIPPED_HEADERS = ("accept", "x-api-key")
_REDACTED_HEADERS = frozenset({"authorization", "x-api-key"})


class OAuthBearerAuth(httpx.Auth):
    """Authenticates every outgoing request with the store's current token.

    Runs inside httpx's auth flow, so it also covers the SDK's own retries.
    The token store decides whether a refresh is needed; this class only
    rewrites headers.
    """

    def __init__(self, token_store: TokenStore, *, oauth: OAuthConfig = DEFAULT_OAUTH_CONFIG):
        self.token_store = token_store
        self.oauth = oauth

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("OAuthBearerAuth only works with httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.token_store.get_access_token()
        request.headers["Authorization"] = f"Bearer {token}"
        request.headers["anthropic-beta"] = self.oauth.beta_header
        for name in _STRIPPED_HEADERS:
            if name in request.headers:
                del request.headers[name]
        yield request


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        name: "[REDACTED]" if name.lower() in _REDACTED_HEADERS else value
        for name, value in headers.items()
    }


async def log_request(request: httpx.Request) -> None:
    """httpx ``request`` event hook: method, URL, headers and body at DEBUG."""
    try:
        body = request.content.decode("utf-8", errors="replace")
    except httpx.RequestNotRead:
        body = "<streaming>"
    logger.debug(
        "HTTP request %s %s headers=%s body=%s",
        request.method,
        request.url,
        redact_headers(request.headers),
        body,
    )


async def log_response(response: httpx.Response) -> None:
    """httpx ``response`` event hook. The body is not read so streams stay intact."""
    logger.debug(
        "HTTP response %s %s %s headers=%s",
        response.status_code,
        response.request.method,
        response.request.url,
        redact_headers(response.headers),
    )


def debug_event_hooks() -> dict[str, list]:
    return {"request": [log_request], "response": [log_response]}
