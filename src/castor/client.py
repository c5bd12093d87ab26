"""OpenAI-shaped async client backed by Anthropic's Messages API."""

from __future__ import annotations

import asyncio
import base64
import inspect
import logging
from typing import TYPE_CHECKING, Any, NoReturn

import anthropic
import httpx

from castor._errors import find_auth_error, wrap_provider_error
from castor.auth.store import FileTokenStore
from castor.auth.transport import OAuthBearerAuth, debug_event_hooks
from castor.config import DEFAULT_MAX_TOKENS, DEFAULT_OAUTH_CONFIG
from castor.errors import (
    CastorError,
    ConfigurationError,
    UnsupportedOperationError,
    ValidationError,
)
from castor.translate._utils import field_of
from castor.translate.request import (
    DEFAULT_MODEL,
    RequestConverter,
    parse_request,
    resolve_model,
)
from castor.translate.response import ResponseConverter
from castor.translate.stream import StreamEventTransformer
from castor.translate.tools import to_anthropic_tools
from castor.types import FunctionDefinition, ToolDefinition

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.auth.credentials import Credentials
    from castor.auth.store import TokenStore
    from castor.config import Config, OAuthConfig
    from castor.types import ChatCompletion, ChatCompletionChunk

logger = logging.getLogger(__name__)

# The SDK insists on some credential at construction; the OAuth auth flow
# replaces this value on every request.
_OAUTH_PLACEHOLDER_TOKEN = "castor-oauth"
_DOCUMENT_MAX_TOKENS = 8192


class AnthropicChatClient:
    """Drop-in stand-in for ``openai.AsyncOpenAI`` that talks to Anthropic.

    Authenticates with either an API key or an OAuth ``TokenStore``. Only
    chat completions are translated; every other OpenAI endpoint raises
    ``UnsupportedOperationError`` without touching the network.

    Example:
        client = AnthropicChatClient(token_store=FileTokenStore.from_file(path))
        completion = await client.chat.completions.create(
            model="claude-sonnet-4-20250514",
            messages=[{"role": "user", "content": "Hi"}],
        )
        print(completion.choices[0].message.content)
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        token_store: TokenStore | None = None,
        base_url: str | None = None,
        max_retries: int = 3,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        debug_log_requests: bool = False,
        oauth: OAuthConfig = DEFAULT_OAUTH_CONFIG,
        http_client: httpx.AsyncClient | None = None,
        anthropic_client: Any = None,
    ) -> None:
        if anthropic_client is None:
            if api_key and token_store is not None:
                raise ConfigurationError(
                    "api_key and token_store are mutually exclusive",
                    hint="Use an API key or OAuth credentials, not both.",
                )
            if not api_key and token_store is None:
                raise ConfigurationError(
                    "Either api_key or token_store is required",
                    hint="Pass api_key=... or token_store=FileTokenStore.from_file(...).",
                )

        self.api_key = api_key
        self.token_store = token_store
        self.base_url = base_url
        self.max_retries = max_retries
        self.debug_log_requests = debug_log_requests
        self.oauth = oauth
        self._http_client = http_client
        self._client: Any = anthropic_client

        self._request_converter = RequestConverter(default_max_tokens=default_max_tokens)
        self._response_converter = ResponseConverter()

        self.chat = _Chat(self)
        self.embeddings = _Embeddings()
        self.completions = _Completions()
        self.images = _Images()
        self.models = _Models()
        self.fine_tuning = _FineTuning()
        self.moderations = _Moderations()
        self.beta = _Beta()

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> AnthropicChatClient:
        """Build a client from a resolved ``Config``.

        OAuth mode loads credentials from ``config.credentials_path``.
        """
        options: dict[str, Any] = {
            "base_url": config.base_url,
            "max_retries": config.max_retries,
            "default_max_tokens": config.default_max_tokens,
            "debug_log_requests": config.debug_log_requests,
            "oauth": config.oauth,
        }
        if config.uses_oauth:
            assert config.credentials_path is not None
            options["token_store"] = FileTokenStore.from_file(
                config.credentials_path,
                auto_save=config.auto_save,
                oauth=config.oauth,
            )
        else:
            options["api_key"] = config.api_key
        options.update(kwargs)
        return cls(**options)

    @property
    def credentials(self) -> Credentials | None:
        """Current OAuth credentials, or ``None`` in API-key mode."""
        return self.token_store.credentials if self.token_store is not None else None

    def _get_client(self) -> Any:
        """Lazily build the Anthropic SDK client."""
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> anthropic.AsyncAnthropic:
        event_hooks = debug_event_hooks() if self.debug_log_requests else None

        if self.token_store is None:
            http_client = self._http_client
            if http_client is None and event_hooks is not None:
                http_client = anthropic.DefaultAsyncHttpxClient(event_hooks=event_hooks)
            return anthropic.AsyncAnthropic(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=self.max_retries,
                http_client=http_client,
            )

        auth = OAuthBearerAuth(self.token_store, oauth=self.oauth)
        if self._http_client is not None:
            http_client = self._http_client
            http_client.auth = auth
            if event_hooks is not None:
                http_client.event_hooks = event_hooks
        else:
            http_client = anthropic.DefaultAsyncHttpxClient(
                auth=auth, event_hooks=event_hooks or {}
            )
        return anthropic.AsyncAnthropic(
            auth_token=_OAUTH_PLACEHOLDER_TOKEN,
            base_url=self.base_url,
            max_retries=self.max_retries,
            http_client=http_client,
        )

    async def _create_message(self, create_kwargs: dict[str, Any], *, phase: str) -> Any:
        client = self._get_client()
        try:
            if self.token_store is not None:
                # Refresh here, outside the SDK's retry loop: a rejected refresh
                # must fail the call after one token request.
                await self.token_store.get_access_token()
            return await client.messages.create(**create_kwargs)
        except asyncio.CancelledError:
            raise
        except CastorError:
            raise
        except Exception as e:
            _raise_sdk_error(e, phase=phase)

    async def create_chat_completion(
        self, **kwargs: Any
    ) -> ChatCompletion | ChatCompletionStream:
        """Run one chat-completions request.

        Returns a ``ChatCompletion``, or with ``stream=True`` a
        ``ChatCompletionStream`` of ``ChatCompletionChunk``. The stream holds an
        open connection until it is exhausted or closed.

        Raises:
            ValidationError: The request is malformed or has no messages left.
            AuthError: The OAuth token could not be refreshed.
            APIError: The Anthropic call failed.
        """
        request = parse_request(kwargs)
        create_kwargs = self._request_converter.convert(request)
        logger.debug(
            "Sending chat completion as Anthropic model=%s stream=%s",
            create_kwargs["model"],
            request.stream,
        )
        response = await self._create_message(create_kwargs, phase="generate")
        if request.stream:
            return ChatCompletionStream(response, request.model)
        return self._response_converter.convert(response, request.model)

    async def create_document_completion(
        self,
        *,
        prompt: str,
        document: bytes,
        tool_name: str,
        input_schema: dict[str, Any],
        tool_description: str | None = None,
        media_type: str = "application/pdf",
        title: str | None = None,
        system: str | None = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = _DOCUMENT_MAX_TOKENS,
    ) -> dict[str, Any]:
        """Ask about a document and get structured output back.

        The model is forced to call *tool_name*, whose *input_schema* is the
        output shape; the tool input is returned as a dict.

        Raises:
            ValidationError: The response contains no call to *tool_name*.
        """
        document_block: dict[str, Any] = {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": media_type,
                "data": base64.standard_b64encode(document).decode("ascii"),
            },
        }
        if title is not None:
            document_block["title"] = title

        tool = ToolDefinition(
            function=FunctionDefinition(
                name=tool_name,
                description=tool_description,
                parameters=input_schema,
            )
        )
        create_kwargs: dict[str, Any] = {
            "model": resolve_model(model),
            "max_tokens": max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [{"type": "text", "text": prompt}, document_block],
                }
            ],
            "tools": to_anthropic_tools([tool]),
            "tool_choice": {"type": "tool", "name": tool_name},
        }
        if system is not None:
            create_kwargs["system"] = system

        response = await self._create_message(create_kwargs, phase="document")
        for block in field_of(response, "content", None) or ():
            if field_of(block, "type") == "tool_use" and field_of(block, "name") == tool_name:
                return dict(field_of(block, "input", None) or {})

        raise ValidationError(
            f"No structured output found: expected a call to tool {tool_name!r}",
            hint=f"Response stop_reason was {field_of(response, 'stop_reason')!r}.",
        )

    async def aclose(self) -> None:
        """Release the SDK client and any HTTP client owned by the token store."""
        client = self._client
        self._client = None
        if client is not None:
            close = getattr(client, "close", None)
            if callable(close):
                await close()
        if self.token_store is not None:
            await self.token_store.aclose()

    async def __aenter__(self) -> AnthropicChatClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class ChatCompletionStream:
    """Async iterator of ``ChatCompletionChunk`` that owns the Anthropic stream.

    The upstream stream is closed when iteration ends, when it fails, or on
    ``aclose()``. Use ``async with`` or call ``aclose()`` when the stream may
    be dropped before it is exhausted.

    Example:
        async with await client.chat.completions.create(..., stream=True) as stream:
            async for chunk in stream:
                print(chunk.choices[0].delta.content or "", end="")
    """

    def __init__(self, events: Any, request_model: str) -> None:
        self._events = events
        self._chunks = self._iterate(StreamEventTransformer(request_model))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _iterate(
        self, transformer: StreamEventTransformer
    ) -> AsyncIterator[ChatCompletionChunk]:
        try:
            async for chunk in transformer.stream(self._events):
                yield chunk
        except (asyncio.CancelledError, CastorError):
            raise
        except Exception as e:
            _raise_sdk_error(e, phase="stream")

    def __aiter__(self) -> ChatCompletionStream:
        return self

    async def __anext__(self) -> ChatCompletionChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._chunks.__anext__()
        except BaseException:
            # Exhaustion, failure and cancellation all end the stream.
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Stop iterating and close the upstream stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._chunks.aclose()
        await _close_stream(self._events)

    async def __aenter__(self) -> ChatCompletionStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _raise_sdk_error(exc: Exception, *, phase: str) -> NoReturn:
    """Re-raise an SDK failure as a castor error. Call from an ``except`` block."""
    auth_error = find_auth_error(exc)
    if auth_error is not None:
        # Token refresh failures arrive wrapped in the SDK's connection error;
        # the refresh failure already carries its own cause.
        raise auth_error
    raise wrap_provider_error(exc, phase=phase, message=f"Anthropic {phase} failed") from exc


async def _close_stream(events: Any) -> None:
    closer = getattr(events, "close", None) or getattr(events, "aclose", None)
    if not callable(closer):
        return
    try:
        result = closer()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        logger.warning("Closing Anthropic stream failed: %s", exc)


# =============================================================================
# OpenAI-shaped resources
# =============================================================================


class _ChatCompletions:
    def __init__(self, client: AnthropicChatClient) -> None:
        self._client = client

    async def create(
        self, **kwargs: Any
    ) -> ChatCompletion | ChatCompletionStream:
        return await self._client.create_chat_completion(**kwargs)


class _Chat:
    def __init__(self, client: AnthropicChatClient) -> None:
        self.completions = _ChatCompletions(client)


def _unsupported(operation: str, *, alternative: str | None = None, hint: str | None = None):
    """Build an async endpoint method that always raises ``UnsupportedOperationError``."""

    async def endpoint(*args: Any, **kwargs: Any) -> Any:
        raise UnsupportedOperationError(operation, alternative=alternative, hint=hint)

    endpoint.__name__ = operation.rsplit(".", 1)[-1]
    endpoint.__qualname__ = operation
    return staticmethod(endpoint)


class _Embeddings:
    create = _unsupported(
        "embeddings.create",
        hint="Anthropic has no embeddings API; use a dedicated embedding service.",
    )


class _Completions:
    create = _unsupported("completions.create", alternative="chat.completions.create")


class _Images:
    generate = _unsupported(
        "images.generate",
        hint="Anthropic has no image generation API.",
    )


class _Models:
    list = _unsupported(
        "models.list",
        hint="Pass Anthropic model ids directly; see Anthropic's model documentation.",
    )
    retrieve = _unsupported(
        "models.retrieve",
        hint="Pass Anthropic model ids directly; see Anthropic's model documentation.",
    )


class _FineTuningJobs:
    create = _unsupported("fine_tuning.jobs.create")


class _FineTuning:
    def __init__(self) -> None:
        self.jobs = _FineTuningJobs()


class _Moderations:
    create = _unsupported(
        "moderations.create",
        hint="Anthropic has no moderation API; use a dedicated moderation service.",
    )


class _Assistants:
    create = _unsupported(
        "beta.assistants.create", alternative="chat.completions.create with tools"
    )


class _Threads:
    create = _unsupported(
        "beta.threads.create", alternative="chat.completions.create with the full message list"
    )


class _Beta:
    def __init__(self) -> None:
        self.assistants = _Assistants()
        self.threads = _Threads()
