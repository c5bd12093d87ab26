"""OAuth authorization-code flow with PKCE.

Collecting the code is up to the caller: open ``auth_url`` in a browser,
let the user paste the code shown on the callback page, then pass it to
``OAuthFlow.complete``.

Example:
    flow = OAuthFlow()
    request = flow.prepare()
    print("Visit:", request.auth_url)
    credentials = await flow.complete(request, input("Code: "))
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import hashlib
import logging
import secrets
from typing import TYPE_CHECKING

import httpx

from castor.auth.store import post_token_request
from castor.config import DEFAULT_OAUTH_CONFIG
from castor.errors import AuthError

if TYPE_CHECKING:
    from castor.auth.credentials import Credentials
    from castor.config import OAuthConfig

logger = logging.getLogger(__name__)

_RANDOM_BYTES = 32


def _b64url(data: bytes) -> str:
    """Base64url without padding (RFC 7636)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_pkce_pair() -> tuple[str, str]:
    """Return ``(verifier, S256 challenge)``."""
    verifier = _b64url(secrets.token_bytes(_RANDOM_BYTES))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


def clean_auth_code(code: str) -> str:
    """Drop the ``#fragment`` and ``&param`` tails some callback pages append."""
    return code.split("#", 1)[0].split("&", 1)[0].strip()


@dataclass
class OAuthFlowRequest:
    """One authorization attempt. Exchanged at most once."""

    verifier: str = field(repr=False)
    state: str = field(repr=False)
    auth_url: str
    redirect_uri: str
    consumed: bool = False


class OAuthFlow:
    """Builds authorization URLs and exchanges codes for credentials."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        oauth: OAuthConfig = DEFAULT_OAUTH_CONFIG,
    ) -> None:
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self.oauth = oauth

    def prepare(self, redirect_uri: str | None = None) -> OAuthFlowRequest:
        """Start an attempt: fresh PKCE verifier, CSRF state and authorization URL."""
        verifier, challenge = generate_pkce_pair()
        state = _b64url(secrets.token_bytes(_RANDOM_BYTES))
        redirect = redirect_uri or self.oauth.redirect_uri
        params = {
            "code": "true",
            "client_id": self.oauth.client_id,
            "redirect_uri": redirect,
            "response_type": "code",
            "scope": self.oauth.scope,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        auth_url = str(httpx.URL(self.oauth.authorize_url, params=params))
        return OAuthFlowRequest(
            verifier=verifier,
            state=state,
            auth_url=auth_url,
            redirect_uri=redirect,
        )

    async def complete(self, request: OAuthFlowRequest, auth_code: str) -> Credentials:
        """Exchange *auth_code* for credentials.

        Raises:
            AuthError: *request* was already exchanged, or the token endpoint
                rejected the code.
        """
        if request.consumed:
            raise AuthError(
                "OAuth flow request has already been exchanged",
                hint="Call prepare() again to start a new authorization attempt.",
            )
        request.consumed = True

        logger.info("Exchanging authorization code for tokens")
        return await post_token_request(
            self._get_http_client(),
            self.oauth,
            {
                "code": clean_auth_code(auth_code),
                "state": request.state,
                "grant_type": "authorization_code",
                "client_id": self.oauth.client_id,
                "redirect_uri": request.redirect_uri,
                "code_verifier": request.verifier,
            },
            action="Token exchange",
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
