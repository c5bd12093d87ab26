"""OpenAI chat-completions request → Anthropic ``messages.create`` kwargs."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

import pydantic

from castor.config import DEFAULT_MAX_TOKENS
from castor.errors import ValidationError
from castor.translate.content import convert_messages, extract_system_prompt
from castor.translate.tools import to_anthropic_tool_choice, to_anthropic_tools
from castor.types import UNSUPPORTED_PARAMS, ChatCompletionRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

#: OpenAI's closed list of chat model ids. Any other string is treated as a
#: free-form (Anthropic) model id and passed through.
LEGACY_OPENAI_MODELS: frozenset[str] = frozenset(
    {
        "gpt-4o",
        "gpt-4o-2024-05-13",
        "gpt-4o-2024-08-06",
        "gpt-4o-2024-11-20",
        "chatgpt-4o-latest",
        "gpt-4o-mini",
        "gpt-4o-mini-2024-07-18",
        "gpt-4",
        "gpt-4-0314",
        "gpt-4-0613",
        "gpt-4-32k",
        "gpt-4-32k-0314",
        "gpt-4-32k-0613",
        "gpt-4-turbo",
        "gpt-4-turbo-2024-04-09",
        "gpt-4-turbo-preview",
        "gpt-4-0125-preview",
        "gpt-4-1106-preview",
        "gpt-4-vision-preview",
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4.1-nano",
        "gpt-3.5-turbo",
        "gpt-3.5-turbo-16k",
        "gpt-3.5-turbo-0301",
        "gpt-3.5-turbo-0613",
        "gpt-3.5-turbo-1106",
        "gpt-3.5-turbo-0125",
        "gpt-3.5-turbo-16k-0613",
        "o1",
        "o1-mini",
        "o1-preview",
        "o3",
        "o3-mini",
        "o4-mini",
    }
)

LEGACY_MODEL_MAP: dict[str, str] = {
    "gpt-4o": "claude-sonnet-4-20250514",
    "gpt-4o-mini": "claude-haiku-4-5-20251001",
    "gpt-4": "claude-3-opus-20240229",
    "gpt-4-turbo": "claude-sonnet-4-20250514",
    "gpt-3.5-turbo": "claude-3-5-haiku-20241022",
}


def resolve_model(model: str) -> str:
    """Map OpenAI model ids onto Anthropic ones; pass anything else through."""
    if model in LEGACY_OPENAI_MODELS:
        return LEGACY_MODEL_MAP.get(model, DEFAULT_MODEL)
    return model


def resolve_stop_sequences(stop: str | list[str] | None) -> list[str] | None:
    if stop is None:
        return None
    if isinstance(stop, str):
        return [stop]
    return list(stop)


def parse_request(payload: Mapping[str, Any] | ChatCompletionRequest) -> ChatCompletionRequest:
    """Validate a raw chat-completions payload.

    Raises:
        ValidationError: The payload does not match the chat-completions schema.
    """
    if isinstance(payload, ChatCompletionRequest):
        return payload
    try:
        return ChatCompletionRequest.model_validate(dict(payload))
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid chat completion request: {e.error_count()} validation error(s)",
            hint=str(e),
        ) from e


class RequestConverter:
    """Converts chat-completions requests into Anthropic Messages requests.

    Pure: no I/O. Parameters without an Anthropic equivalent are logged and
    dropped; only an empty message list is a hard failure.
    """

    def __init__(self, *, default_max_tokens: int = DEFAULT_MAX_TOKENS) -> None:
        self.default_max_tokens = default_max_tokens

    def convert(self, request: ChatCompletionRequest) -> dict[str, Any]:
        """Build ``messages.create`` keyword arguments for *request*."""
        self._warn_unsupported(request)

        system_prompt = extract_system_prompt(request.messages)
        messages = convert_messages(request.messages)

        max_tokens = request.max_completion_tokens
        if max_tokens is None:
            max_tokens = request.max_tokens
        if max_tokens is None:
            max_tokens = self.default_max_tokens

        create_kwargs: dict[str, Any] = {
            "model": resolve_model(request.model),
            "messages": messages,
            "max_tokens": max_tokens,
        }

        if system_prompt is not None:
            create_kwargs["system"] = system_prompt
        if request.temperature is not None:
            create_kwargs["temperature"] = request.temperature
        if request.top_p is not None:
            create_kwargs["top_p"] = request.top_p
        if request.top_k is not None:
            create_kwargs["top_k"] = request.top_k

        stop_sequences = resolve_stop_sequences(request.stop)
        if stop_sequences is not None:
            create_kwargs["stop_sequences"] = stop_sequences

        tools = to_anthropic_tools(request.tools)
        if tools is not None:
            create_kwargs["tools"] = tools
        tool_choice = to_anthropic_tool_choice(
            request.tool_choice, request.parallel_tool_calls
        )
        if tool_choice is not None:
            create_kwargs["tool_choice"] = tool_choice

        if request.stream:
            create_kwargs["stream"] = True

        return create_kwargs

    @staticmethod
    def _warn_unsupported(request: ChatCompletionRequest) -> None:
        for name in UNSUPPORTED_PARAMS:
            if getattr(request, name) is not None:
                logger.warning(
                    "Parameter %r is not supported by Anthropic and will be ignored", name
                )

        if request.n is not None and request.n > 1:
            logger.warning(
                "Parameter 'n' > 1 is not supported by Anthropic. Only 1 choice will be returned."
            )
        if request.functions is not None:
            logger.warning("Parameter 'functions' is deprecated. Use 'tools' instead.")
        if request.function_call is not None:
            logger.warning(
                "Parameter 'function_call' is deprecated. Use 'tool_choice' instead."
            )

        for name in request.model_extra or {}:
            logger.warning("Unknown parameter %r will be ignored", name)
