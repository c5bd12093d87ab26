"""castor: OpenAI chat-completions on top of Anthropic's Messages API.

Public API:
    - AnthropicChatClient: OpenAI-shaped async client (``client.chat.completions.create``)
    - ChatCompletionStream: streaming result; close it if not read to the end
    - Config: Configuration dataclass
    - Credentials / TokenStore / FileTokenStore / SystemTokenStore: OAuth credentials
    - OAuthFlow: PKCE authorization-code flow
"""

from __future__ import annotations

import logging

from castor.auth import (
    Credentials,
    FileTokenStore,
    OAuthBearerAuth,
    OAuthFlow,
    OAuthFlowRequest,
    SystemTokenStore,
    TokenStore,
)
from castor.client import AnthropicChatClient, ChatCompletionStream
from castor.config import DEFAULT_OAUTH_CONFIG, Config, OAuthConfig
from castor.errors import (
    APIError,
    AuthError,
    CastorError,
    ConfigurationError,
    FormatError,
    RateLimitError,
    StreamError,
    UnsupportedOperationError,
    ValidationError,
)
from castor.types import ChatCompletion, ChatCompletionChunk, ChatCompletionRequest

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_OAUTH_CONFIG",
    "APIError",
    "AnthropicChatClient",
    "AuthError",
    "CastorError",
    "ChatCompletion",
    "ChatCompletionChunk",
    "ChatCompletionRequest",
    "ChatCompletionStream",
    "Config",
    "ConfigurationError",
    "Credentials",
    "FileTokenStore",
    "FormatError",
    "OAuthBearerAuth",
    "OAuthConfig",
    "OAuthFlow",
    "OAuthFlowRequest",
    "RateLimitError",
    "StreamError",
    "SystemTokenStore",
    "TokenStore",
    "UnsupportedOperationError",
    "ValidationError",
]
