"""OAuth credentials and their JSON representation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import json
from typing import Any

from castor.errors import FormatError

#: Tokens count as expired this long before their real expiry, so a refresh
#: happens before a request can fail with 401.
EXPIRY_BUFFER = timedelta(minutes=5)

_DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _resolve_expires_at(data: dict[str, Any]) -> datetime:
    """Read ``expires_at`` (epoch ms or ISO-8601) or derive it from ``expires_in`` seconds."""
    raw = data.get("expires_at")
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return _from_epoch_ms(raw)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as e:
            raise FormatError(f"Invalid expires_at timestamp: {raw!r}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    if raw is not None:
        raise FormatError(f"Unsupported expires_at value: {raw!r}")

    expires_in = data.get("expires_in")
    if isinstance(expires_in, str):
        try:
            expires_in = int(expires_in)
        except ValueError:
            expires_in = None
    if isinstance(expires_in, int) and not isinstance(expires_in, bool):
        return _utcnow() + timedelta(seconds=expires_in)

    raise FormatError(
        "Credentials carry neither expires_at nor expires_in",
        hint="Expected expires_at in epoch milliseconds or expires_in in seconds.",
    )


@dataclass(frozen=True, repr=False)
class Credentials:
    """An OAuth token set.

    Immutable: a refresh produces a new instance rather than updating this one.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = "Bearer"

    @property
    def is_expired(self) -> bool:
        """True once the token is within ``EXPIRY_BUFFER`` of expiry."""
        return _utcnow() >= self.expires_at - EXPIRY_BUFFER

    @classmethod
    def from_token(
        cls,
        token: str,
        *,
        token_type: str = "Bearer",
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
    ) -> Credentials:
        """Wrap a bare access token, valid for one hour unless told otherwise."""
        return cls(
            access_token=token,
            refresh_token=refresh_token or "",
            expires_at=expires_at or _utcnow() + _DEFAULT_TOKEN_LIFETIME,
            token_type=token_type,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credentials:
        """Build credentials from a token-endpoint response or a credentials file.

        Raises:
            FormatError: Required fields are missing or malformed.
        """
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise FormatError("Credentials are missing access_token")
        refresh_token = data.get("refresh_token") or ""
        if not isinstance(refresh_token, str):
            raise FormatError("Credentials refresh_token must be a string")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_resolve_expires_at(data),
            token_type=str(data.get("token_type") or "Bearer"),
        )

    @classmethod
    def from_json(cls, raw: str) -> Credentials:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FormatError(f"Credentials are not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise FormatError("Invalid JSON format for credentials: expected an object")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize with ``expires_at`` as epoch milliseconds."""
        return {
            "token_type": self.token_type,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": _to_epoch_ms(self.expires_at),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def __repr__(self) -> str:
        return (
            f"Credentials(token_type={self.token_type!r}, "
            f"access_token={self.access_token[:4]}****, "
            f"refresh_token={self.refresh_token[:4]}****, "
            f"expires_at={self.expires_at.isoformat()})"
        )
