"""Anthropic ``Message`` → OpenAI ``ChatCompletion``."""

from __future__ import annotations

from typing import Any

from castor.translate._utils import field_of, generate_completion_id, unix_now
from castor.translate.stop_reason import to_finish_reason
from castor.translate.tools import extract_tool_calls
from castor.types import ChatCompletion, ChatCompletionMessage, Choice, CompletionUsage


def extract_text(content: Any) -> str | None:
    """Text of a message: plain string as-is, text blocks joined by newlines.

    Empty text is reported as ``None``.
    """
    if content is None:
        return None
    if isinstance(content, str):
        return content or None
    text_parts = [
        field_of(block, "text", "")
        for block in content
        if field_of(block, "type") == "text"
    ]
    if not text_parts:
        return None
    return "\n".join(text_parts) or None


def convert_usage(usage: Any) -> CompletionUsage | None:
    if usage is None:
        return None
    return CompletionUsage.from_counts(
        int(field_of(usage, "input_tokens", 0) or 0),
        int(field_of(usage, "output_tokens", 0) or 0),
    )


class ResponseConverter:
    """Converts one non-streaming Anthropic response into a ChatCompletion."""

    def convert(self, message: Any, request_model: str) -> ChatCompletion:
        content = field_of(message, "content")
        tool_calls = (
            extract_tool_calls(content)
            if content is not None and not isinstance(content, str)
            else None
        )

        choice = Choice(
            index=0,
            message=ChatCompletionMessage(
                content=extract_text(content),
                tool_calls=tool_calls,
            ),
            finish_reason=to_finish_reason(field_of(message, "stop_reason")),
        )

        return ChatCompletion(
            id=field_of(message, "id") or generate_completion_id(),
            created=unix_now(),
            model=field_of(message, "model") or request_model,
            choices=[choice],
            usage=convert_usage(field_of(message, "usage")),
        )
