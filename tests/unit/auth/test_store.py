"""Token store: refresh gating, single-flight coalescing, and persistence."""

from __future__ import annotations

import asyncio
from datetime import timedelta
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from castor.auth.credentials import Credentials
from castor.auth.store import FileTokenStore, SystemTokenStore, TokenStore
from castor.config import DEFAULT_OAUTH_CONFIG
from castor.errors import AuthError, FormatError
from tests.helpers import make_credentials

pytestmark = pytest.mark.unit

_EXPIRED = timedelta(minutes=-10)


class TokenEndpoint:
    """MockTransport handler standing in for the OAuth token endpoint."""

    def __init__(
        self, *, status: int = 200, delay_s: float = 0.0, rotate_refresh_token: bool = True
    ) -> None:
        self.status = status
        self.delay_s = delay_s
        self.rotate_refresh_token = rotate_refresh_token
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.status != 200:
            return httpx.Response(self.status, text='{"error":"invalid_grant"}')
        n = len(self.requests)
        body: dict[str, Any] = {
            "token_type": "Bearer",
            "access_token": f"access-new-{n}",
            "expires_in": 28800,
        }
        if self.rotate_refresh_token:
            body["refresh_token"] = f"refresh-new-{n}"
        return httpx.Response(200, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_network() -> None:
    endpoint = TokenEndpoint()
    store = TokenStore(make_credentials(), http_client=endpoint.client())

    assert await store.get_access_token() == "access-old"
    assert endpoint.requests == []


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_swapped_in() -> None:
    endpoint = TokenEndpoint()
    refreshed: list[Credentials] = []

    async def on_refreshed(creds: Credentials) -> None:
        refreshed.append(creds)

    store = TokenStore(
        make_credentials(expires_in=_EXPIRED),
        http_client=endpoint.client(),
        on_token_refreshed=on_refreshed,
    )

    token = await store.get_access_token()

    assert token == "access-new-1"
    assert store.credentials.access_token == "access-new-1"
    assert store.credentials.is_expired is False
    assert [c.access_token for c in refreshed] == ["access-new-1"]

    [request] = endpoint.requests
    assert str(request.url) == DEFAULT_OAUTH_CONFIG.token_url
    assert request.method == "POST"
    assert json.loads(request.content) == {
        "grant_type": "refresh_token",
        "client_id": DEFAULT_OAUTH_CONFIG.client_id,
        "refresh_token": "refresh-old",
    }
    assert request.headers["Origin"] == "https://claude.ai"


@pytest.mark.asyncio
async def test_refresh_without_new_refresh_token_keeps_the_old_one(tmp_path: Path) -> None:
    endpoint = TokenEndpoint(rotate_refresh_token=False)
    path = tmp_path / "credentials.json"
    store = FileTokenStore(
        make_credentials(expires_in=_EXPIRED), path, http_client=endpoint.client()
    )

    assert await store.get_access_token() == "access-new-1"
    assert store.credentials.refresh_token == "refresh-old"
    assert json.loads(path.read_text())["refresh_token"] == "refresh-old"

    # The next refresh still presents a usable refresh token.
    await store.refresh()
    assert json.loads(endpoint.requests[-1].content)["refresh_token"] == "refresh-old"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh() -> None:
    endpoint = TokenEndpoint(delay_s=0.05)
    store = TokenStore(make_credentials(expires_in=_EXPIRED), http_client=endpoint.client())

    tokens = await asyncio.gather(*(store.get_access_token() for _ in range(10)))

    assert len(endpoint.requests) == 1
    assert set(tokens) == {"access-new-1"}


@pytest.mark.asyncio
async def test_failed_refresh_raises_and_keeps_previous_credentials() -> None:
    endpoint = TokenEndpoint(status=400)
    old = make_credentials(expires_in=_EXPIRED)
    store = TokenStore(old, http_client=endpoint.client())

    with pytest.raises(AuthError) as exc:
        await store.get_access_token()

    assert exc.value.status_code == 400
    assert exc.value.body == '{"error":"invalid_grant"}'
    assert "invalid_grant" in str(exc.value)
    assert store.credentials is old


@pytest.mark.asyncio
async def test_concurrent_callers_all_see_the_refresh_failure() -> None:
    endpoint = TokenEndpoint(status=401, delay_s=0.05)
    store = TokenStore(make_credentials(expires_in=_EXPIRED), http_client=endpoint.client())

    results = await asyncio.gather(
        *(store.get_access_token() for _ in range(5)), return_exceptions=True
    )

    assert len(endpoint.requests) == 1
    assert all(isinstance(r, AuthError) for r in results)


@pytest.mark.asyncio
async def test_callback_failure_does_not_fail_the_request(caplog: pytest.LogCaptureFixture) -> None:
    async def broken(_: Credentials) -> None:
        raise OSError("disk full")

    store = TokenStore(
        make_credentials(expires_in=_EXPIRED),
        http_client=TokenEndpoint().client(),
        on_token_refreshed=broken,
    )

    assert await store.get_access_token() == "access-new-1"
    assert "on_token_refreshed callback failed" in caplog.text


@pytest.mark.asyncio
async def test_unusable_token_response_is_an_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "Bearer"})

    store = TokenStore(
        make_credentials(expires_in=_EXPIRED),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    with pytest.raises(AuthError, match="unusable"):
        await store.refresh()


# =============================================================================
# File-backed stores
# =============================================================================


def _write_credentials(path: Path, creds: Credentials) -> None:
    path.write_text(creds.to_json(), encoding="utf-8")


@pytest.mark.asyncio
async def test_file_store_writes_refreshed_credentials(tmp_path: Path) -> None:
    path = tmp_path / "credentials.json"
    _write_credentials(path, make_credentials(expires_in=_EXPIRED))

    store = FileTokenStore.from_file(path, http_client=TokenEndpoint().client())
    await store.get_access_token()

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["access_token"] == "access-new-1"
    assert saved["refresh_token"] == "refresh-new-1"
    assert isinstance(saved["expires_at"], int)


@pytest.mark.asyncio
async def test_file_store_without_auto_save_leaves_file_alone(tmp_path: Path) -> None:
    path = tmp_path / "credentials.json"
    _write_credentials(path, make_credentials(expires_in=_EXPIRED))
    before = path.read_text(encoding="utf-8")

    store = FileTokenStore.from_file(path, auto_save=False, http_client=TokenEndpoint().client())
    await store.get_access_token()

    assert path.read_text(encoding="utf-8") == before
    assert store.credentials.access_token == "access-new-1"


@pytest.mark.asyncio
async def test_persistence_failure_is_logged_not_raised(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "credentials.json"
    _write_credentials(path, make_credentials(expires_in=_EXPIRED))
    store = FileTokenStore.from_file(path, http_client=TokenEndpoint().client())

    def fail(_: Any) -> None:
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(store, "_write", fail)

    assert await store.get_access_token() == "access-new-1"
    assert "Failed to persist refreshed credentials" in caplog.text


def test_from_file_errors(tmp_path: Path) -> None:
    with pytest.raises(AuthError, match="not found"):
        FileTokenStore.from_file(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("[]", encoding="utf-8")
    with pytest.raises(FormatError):
        FileTokenStore.from_file(bad)

    assert FileTokenStore.try_from_file(tmp_path / "missing.json") is None
    assert FileTokenStore.try_from_file(bad) is None


def test_system_store_reads_home_credentials(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
    assert SystemTokenStore.try_from_system() is None

    target = tmp_path / ".claude" / ".credentials.json"
    target.parent.mkdir()
    _write_credentials(target, make_credentials())

    store = SystemTokenStore.from_system(auto_save=False)

    assert isinstance(store, SystemTokenStore)
    assert store.path == target
    assert store.credentials.access_token == "access-old"
