"""Credential store: hands out access tokens, refreshing them when they expire.

Refreshes are coalesced: when many requests find the token expired at once,
exactly one refresh call goes out and every caller receives its result.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from castor._singleflight import SingleFlight
from castor.auth.credentials import Credentials
from castor.config import DEFAULT_OAUTH_CONFIG
from castor.errors import AuthError, FormatError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.config import OAuthConfig

    OnTokenRefreshed = Callable[[Credentials], Awaitable[None]]

logger = logging.getLogger(__name__)

_TOKEN_REQUEST_TIMEOUT_S = 30.0


async def post_token_request(
    client: httpx.AsyncClient,
    oauth: OAuthConfig,
    payload: dict[str, Any],
    *,
    action: str,
) -> Credentials:
    """POST *payload* to the token endpoint and parse the issued credentials.

    Raises:
        AuthError: Transport failure, a non-200 answer (``body`` carries the
            response text verbatim), or a response without usable tokens.
    """
    try:
        response = await client.post(
            oauth.token_url,
            headers=dict(oauth.default_headers),
            json=payload,
        )
    except httpx.HTTPError as e:
        raise AuthError(
            f"{action} request failed: {e}",
            hint="Check network connectivity to the OAuth token endpoint.",
        ) from e

    if response.status_code != 200:
        raise AuthError(
            f"{action} failed: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        return Credentials.from_dict(response.json())
    except (ValueError, FormatError) as e:
        raise AuthError(
            f"{action} returned an unusable token response: {e}",
            status_code=response.status_code,
            body=response.text,
        ) from e


class TokenStore:
    """Holds the current OAuth credentials and refreshes them on demand.

    ``credentials`` is a plain read; ``get_access_token()`` refreshes when the
    token is within five minutes of expiry. A failed refresh raises
    ``AuthError`` and leaves the previous credentials in place.

    Example:
        store = TokenStore(Credentials.from_json(raw), on_token_refreshed=save)
        token = await store.get_access_token()
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        http_client: httpx.AsyncClient | None = None,
        oauth: OAuthConfig = DEFAULT_OAUTH_CONFIG,
        on_token_refreshed: OnTokenRefreshed | None = None,
    ) -> None:
        self._credentials = credentials
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self.oauth = oauth
        self.on_token_refreshed = on_token_refreshed
        self._refresh_flight: SingleFlight[Credentials] = SingleFlight()

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    async def get_access_token(self) -> str:
        """Return a usable access token, refreshing first if needed."""
        current = self._credentials
        if not current.is_expired:
            return current.access_token
        refreshed = await self._refresh_flight.run(self._refresh_if_expired)
        return refreshed.access_token

    async def _refresh_if_expired(self) -> Credentials:
        # A caller that waited on the lock may find a refresh already landed.
        if not self._credentials.is_expired:
            return self._credentials

        new_credentials = await self.refresh()
        self._credentials = new_credentials
        logger.info(
            "OAuth access token refreshed; valid until %s",
            new_credentials.expires_at.isoformat(),
        )
        await self._notify_refreshed(new_credentials)
        return new_credentials

    async def refresh(self) -> Credentials:
        """Exchange the refresh token for new credentials.

        Does not install the result; ``get_access_token`` does that. No
        retries happen here. A response without a new refresh token keeps the
        current one.
        """
        logger.debug("Requesting OAuth token refresh from %s", self.oauth.token_url)
        current = self._credentials
        new_credentials = await post_token_request(
            self._get_http_client(),
            self.oauth,
            {
                "grant_type": "refresh_token",
                "client_id": self.oauth.client_id,
                "refresh_token": current.refresh_token,
            },
            action="Token refresh",
        )
        if not new_credentials.refresh_token:
            new_credentials = dataclasses.replace(
                new_credentials, refresh_token=current.refresh_token
            )
        return new_credentials

    async def persist(self, credentials: Credentials) -> None:
        """Store refreshed credentials somewhere durable. No-op by default."""

    async def _notify_refreshed(self, credentials: Credentials) -> None:
        # The new token is already usable in memory; storage failures must
        # not fail the request that triggered the refresh.
        try:
            await self.persist(credentials)
        except Exception:
            logger.warning("Failed to persist refreshed credentials", exc_info=True)

        if self.on_token_refreshed is None:
            return
        try:
            await self.on_token_refreshed(credentials)
        except Exception:
            logger.warning("on_token_refreshed callback failed", exc_info=True)

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=_TOKEN_REQUEST_TIMEOUT_S)
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this store created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class FileTokenStore(TokenStore):
    """Token store backed by a JSON credentials file.

    With ``auto_save`` on, refreshed credentials are written back to the same
    file.
    """

    def __init__(
        self,
        credentials: Credentials,
        path: str | Path,
        *,
        auto_save: bool = True,
        http_client: httpx.AsyncClient | None = None,
        oauth: OAuthConfig = DEFAULT_OAUTH_CONFIG,
        on_token_refreshed: OnTokenRefreshed | None = None,
    ) -> None:
        super().__init__(
            credentials,
            http_client=http_client,
            oauth=oauth,
            on_token_refreshed=on_token_refreshed,
        )
        self.path = Path(path).expanduser()
        self.auto_save = auto_save

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> FileTokenStore:
        """Load credentials from *path*.

        Raises:
            AuthError: The file does not exist or cannot be read.
            FormatError: The file content is not valid credentials JSON.
        """
        resolved = Path(path).expanduser()
        try:
            raw = resolved.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise AuthError(
                f"Token file not found: {resolved}",
                hint="Log in once to create it, or pass credentials explicitly.",
            ) from e
        except OSError as e:
            raise AuthError(f"Cannot read token file {resolved}: {e}") from e
        return cls(Credentials.from_json(raw), resolved, **kwargs)

    @classmethod
    def try_from_file(cls, path: str | Path, **kwargs: Any) -> FileTokenStore | None:
        """Like ``from_file`` but returns ``None`` when loading fails."""
        try:
            return cls.from_file(path, **kwargs)
        except (AuthError, FormatError) as e:
            logger.debug("No usable credentials at %s: %s", path, e)
            return None

    async def persist(self, credentials: Credentials) -> None:
        if not self.auto_save:
            return
        await asyncio.to_thread(self._write, credentials)
        logger.debug("Saved refreshed credentials to %s", self.path)

    def _write(self, credentials: Credentials) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(credentials.to_json(), encoding="utf-8")


class SystemTokenStore(FileTokenStore):
    """File token store at the per-user Claude credentials location."""

    def __init__(
        self, credentials: Credentials, path: str | Path | None = None, **kwargs: Any
    ) -> None:
        super().__init__(credentials, path or self.default_path(), **kwargs)

    @staticmethod
    def default_path() -> Path:
        """``~/.claude/.credentials.json`` (under ``%USERPROFILE%`` on Windows)."""
        return Path.home() / ".claude" / ".credentials.json"

    @classmethod
    def from_system(cls, **kwargs: Any) -> SystemTokenStore:
        return cls.from_file(cls.default_path(), **kwargs)

    @classmethod
    def try_from_system(cls, **kwargs: Any) -> SystemTokenStore | None:
        try:
            return cls.from_system(**kwargs)
        except (AuthError, FormatError) as e:
            logger.debug("No usable system credentials: %s", e)
            return None
