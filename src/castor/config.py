"""Configuration: frozen Config plus the fixed OAuth settings."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

load_dotenv()

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MAX_TOKENS = 4096

_API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"
_BASE_URL_ENV_VAR = "ANTHROPIC_BASE_URL"
_CREDENTIALS_ENV_VAR = "CASTOR_CREDENTIALS_PATH"
_DEBUG_ENV_VAR = "CASTOR_DEBUG_REQUESTS"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _default_oauth_headers() -> Mapping[str, str]:
    return MappingProxyType(
        {
            "Content-Type": "application/json",
            "User-Agent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
                "AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/131.0.0.0 Safari/537.36"
            ),
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": "https://claude.ai/",
            "Origin": "https://claude.ai",
        }
    )


@dataclass(frozen=True)
class OAuthConfig:
    """Fixed OAuth settings shared by the token store, PKCE flow and auth wrapper.

    Built once and passed to the components that need it; the defaults are the
    provider-hosted values.
    """

    client_id: str = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
    authorize_url: str = "https://claude.ai/oauth/authorize"
    token_url: str = "https://console.anthropic.com/v1/oauth/token"
    redirect_uri: str = "https://console.anthropic.com/oauth/code/callback"
    scope: str = "org:create_api_key user:profile user:inference"
    beta_header: str = (
        "oauth-2025-04-20,claude-code-20250219,"
        "interleaved-thinking-2025-05-14,fine-grained-tool-streaming-2025-05-14"
    )
    default_headers: Mapping[str, str] = field(default_factory=_default_oauth_headers)


#: Process-wide default; components take an ``OAuthConfig`` argument and fall
#: back to this instance.
DEFAULT_OAUTH_CONFIG = OAuthConfig()


@dataclass(frozen=True)
class Config:
    """Immutable client configuration.

    Exactly one authentication mode is used: an API key, or OAuth credentials
    loaded from ``credentials_path``. Both are auto-resolved from the
    environment (``ANTHROPIC_API_KEY``, ``CASTOR_CREDENTIALS_PATH``) when not
    passed explicitly. A client built directly from a token store does not
    need a Config at all.

    Example:
        config = Config(credentials_path="~/.claude/.credentials.json")
        client = AnthropicChatClient.from_config(config)
    """

    api_key: str | None = None
    credentials_path: Path | None = None
    base_url: str | None = None
    #: Handed to the Anthropic SDK; castor itself never retries.
    max_retries: int = 3
    #: Used when a request sets neither ``max_completion_tokens`` nor ``max_tokens``.
    default_max_tokens: int = DEFAULT_MAX_TOKENS
    #: Log every outgoing request and incoming response at DEBUG level.
    debug_log_requests: bool = False
    #: Write refreshed OAuth credentials back to ``credentials_path``.
    auto_save: bool = True
    oauth: OAuthConfig = field(default_factory=lambda: DEFAULT_OAUTH_CONFIG)

    def __post_init__(self) -> None:
        """Auto-resolve environment values and validate configuration."""
        if self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be ≥ 0, got {self.max_retries}",
                hint="This is the Anthropic SDK's transport retry budget.",
            )
        if self.default_max_tokens < 1:
            raise ConfigurationError(
                f"default_max_tokens must be ≥ 1, got {self.default_max_tokens}",
                hint="Anthropic requires max_tokens on every request.",
            )

        if self.api_key is None and self.credentials_path is None:
            object.__setattr__(self, "api_key", os.environ.get(_API_KEY_ENV_VAR))
            if not self.api_key:
                raw_path = os.environ.get(_CREDENTIALS_ENV_VAR)
                if raw_path:
                    object.__setattr__(self, "credentials_path", Path(raw_path))

        if self.credentials_path is not None:
            object.__setattr__(
                self, "credentials_path", Path(self.credentials_path).expanduser()
            )

        if self.base_url is None:
            object.__setattr__(
                self,
                "base_url",
                os.environ.get(_BASE_URL_ENV_VAR) or DEFAULT_BASE_URL,
            )

        if not self.debug_log_requests:
            flag = os.environ.get(_DEBUG_ENV_VAR, "").strip().lower()
            object.__setattr__(self, "debug_log_requests", flag in _TRUTHY)

        if self.api_key and self.credentials_path is not None:
            raise ConfigurationError(
                "api_key and credentials_path are mutually exclusive",
                hint="Use an API key or OAuth credentials, not both.",
            )
        if not self.api_key and self.credentials_path is None:
            raise ConfigurationError(
                "No Anthropic credentials configured",
                hint=(
                    f"Set {_API_KEY_ENV_VAR} or {_CREDENTIALS_ENV_VAR}, or pass "
                    "api_key=... / credentials_path=..."
                ),
            )

    @property
    def uses_oauth(self) -> bool:
        """Whether requests authenticate with OAuth bearer tokens."""
        return self.credentials_path is not None

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(api_key={'[REDACTED]' if self.api_key else None}, "
            f"credentials_path={self.credentials_path!r}, base_url={self.base_url!r}, "
            f"max_retries={self.max_retries})"
        )

    __repr__ = __str__
