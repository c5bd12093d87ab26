"""Message and content-part conversion from OpenAI to Anthropic.

Anthropic keeps the system prompt outside the message list and expects tool
results inside a ``user`` turn, so the message list is rebuilt rather than
mapped one-to-one.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, assert_never

from castor.errors import FormatError, ValidationError
from castor.translate.tools import to_tool_result_block
from castor.types import (
    AssistantMessage,
    AudioPart,
    DeveloperMessage,
    FunctionMessage,
    ImagePart,
    RefusalPart,
    SystemMessage,
    TextPart,
    ToolMessage,
    UserMessage,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from castor.types import ContentPart, Message

logger = logging.getLogger(__name__)

# data:[<mediatype>][;base64],<data>
_DATA_URL_RE = re.compile(r"data:([^;,]+)(?:;base64)?,(.+)", re.DOTALL)
_BASE64_IMAGE_TYPES = frozenset({"image/png", "image/gif", "image/webp"})
_DEFAULT_IMAGE_TYPE = "image/jpeg"


def _join_text(content: str | Sequence[Any] | None) -> str:
    """Flatten string-or-parts content to text, parts joined with newlines."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "\n".join(part.text for part in content if isinstance(part, TextPart))


def extract_system_prompt(messages: Sequence[Message]) -> str | None:
    """Fold every system/developer message into one system prompt.

    Messages keep their original order and are separated by a blank line.
    Returns ``None`` when there are no such messages.
    """
    system_parts = [
        _join_text(message.content)
        for message in messages
        if isinstance(message, (SystemMessage, DeveloperMessage))
    ]
    if not system_parts:
        return None
    return "\n\n".join(system_parts)


def convert_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert OpenAI messages to the Anthropic message list.

    ``tool`` messages are held back and emitted together as one ``user``
    message of ``tool_result`` blocks, right before the next user/assistant
    message or at the end of the list.
    """
    result: list[dict[str, Any]] = []
    pending_tool_results: dict[str, str] = {}

    def flush_tool_results() -> None:
        if not pending_tool_results:
            return
        result.append(
            {
                "role": "user",
                "content": [
                    to_tool_result_block(call_id, content)
                    for call_id, content in pending_tool_results.items()
                ],
            }
        )
        pending_tool_results.clear()

    for message in messages:
        if isinstance(message, (SystemMessage, DeveloperMessage)):
            continue  # folded into the system prompt
        elif isinstance(message, UserMessage):
            flush_tool_results()
            result.append({"role": "user", "content": _convert_user_content(message)})
        elif isinstance(message, AssistantMessage):
            flush_tool_results()
            result.append(
                {"role": "assistant", "content": _convert_assistant_content(message)}
            )
        elif isinstance(message, ToolMessage):
            pending_tool_results[message.tool_call_id] = _join_text(message.content)
        elif isinstance(message, FunctionMessage):
            logger.warning("Function messages are deprecated. Use tool messages instead.")
        else:
            assert_never(message)

    flush_tool_results()

    if not result:
        raise ValidationError(
            "At least one non-system message is required",
            hint="Anthropic requires at least one user or assistant message.",
        )
    return result


def _convert_user_content(message: UserMessage) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    blocks: list[dict[str, Any]] = []
    for part in message.content:
        block = _convert_content_part(part)
        if block is not None:
            blocks.append(block)
    return blocks


def _convert_content_part(part: ContentPart) -> dict[str, Any] | None:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        return convert_image_url(part.image_url.url)
    if isinstance(part, AudioPart):
        logger.warning("Audio input is not supported by Anthropic and will be ignored.")
        return None
    if isinstance(part, RefusalPart):
        return {"type": "text", "text": f"[Refusal]: {part.refusal}"}
    assert_never(part)


def convert_image_url(url: str) -> dict[str, Any]:
    """Build an image block from a remote URL or a base64 data URL.

    Raises:
        FormatError: *url* is a ``data:`` URL that cannot be parsed.
    """
    if not url.startswith("data:"):
        return {"type": "image", "source": {"type": "url", "url": url}}

    match = _DATA_URL_RE.match(url)
    if match is None:
        raise FormatError(
            f"Invalid data URL format: {url[:64]}",
            hint="Expected data:<media-type>;base64,<data>.",
        )
    media_type = match.group(1)
    if media_type not in _BASE64_IMAGE_TYPES:
        media_type = _DEFAULT_IMAGE_TYPE
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": match.group(2)},
    }


def _convert_assistant_content(message: AssistantMessage) -> str | list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []

    text = _assistant_text(message.content)
    if text:
        blocks.append({"type": "text", "text": text})

    for tool_call in message.tool_calls or ():
        blocks.append(
            {
                "type": "tool_use",
                "id": tool_call.id,
                "name": tool_call.function.name,
                "input": parse_tool_arguments(tool_call.function.arguments),
            }
        )

    if not blocks:
        return ""
    if len(blocks) == 1 and blocks[0]["type"] == "text":
        return blocks[0]["text"]
    return blocks


def _assistant_text(content: str | Sequence[Any] | None) -> str:
    if content is None or isinstance(content, str):
        return content or ""
    pieces: list[str] = []
    for part in content:
        if isinstance(part, TextPart):
            pieces.append(part.text)
        elif isinstance(part, RefusalPart):
            pieces.append(f"[Refusal]: {part.refusal}")
    return "\n".join(pieces)


def parse_tool_arguments(arguments: str) -> dict[str, Any]:
    """Decode tool-call arguments into the object Anthropic expects as ``input``.

    Never raises: non-object JSON is wrapped as ``{"value": parsed}`` and text
    that is not JSON at all as ``{"value": arguments}``, each with a warning.
    """
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        logger.warning(
            "Failed to parse tool arguments as JSON: %s. Wrapping raw string in 'value' key.",
            e,
        )
        return {"value": arguments}
    if isinstance(parsed, dict):
        return parsed
    logger.warning("Tool arguments is not a JSON object, wrapping in 'value' key")
    return {"value": parsed}
