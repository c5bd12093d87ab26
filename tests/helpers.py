"""Test helpers: builders for Anthropic stream events and responses.

Events are plain dicts shaped like the SDK's raw stream events; the
translation layer reads both dicts and SDK model objects.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

from castor.auth.credentials import Credentials
from tests.conftest import CLAUDE_MODEL


def message_start(message_id: str = "msg_01", model: str = CLAUDE_MODEL) -> dict[str, Any]:
    return {
        "type": "message_start",
        "message": {
            "id": message_id,
            "type": "message",
            "role": "assistant",
            "model": model,
            "content": [],
            "usage": {"input_tokens": 12, "output_tokens": 1},
        },
    }


def block_start(index: int, block: dict[str, Any]) -> dict[str, Any]:
    return {"type": "content_block_start", "index": index, "content_block": block}


def text_block_start(index: int) -> dict[str, Any]:
    return block_start(index, {"type": "text", "text": ""})


def tool_block_start(index: int, tool_id: str, name: str, kind: str = "tool_use") -> dict[str, Any]:
    return block_start(index, {"type": kind, "id": tool_id, "name": name, "input": {}})


def text_delta(index: int, text: str) -> dict[str, Any]:
    return {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}}


def json_delta(index: int, partial_json: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "input_json_delta", "partial_json": partial_json},
    }


def thinking_delta(index: int, thinking: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "thinking_delta", "thinking": thinking},
    }


def block_stop(index: int) -> dict[str, Any]:
    return {"type": "content_block_stop", "index": index}


def message_delta(stop_reason: str | None, output_tokens: int = 5) -> dict[str, Any]:
    return {
        "type": "message_delta",
        "delta": {"stop_reason": stop_reason, "stop_sequence": None},
        "usage": {"output_tokens": output_tokens},
    }


def message_stop() -> dict[str, Any]:
    return {"type": "message_stop"}


def text_stream(*fragments: str, stop_reason: str = "end_turn") -> list[dict[str, Any]]:
    """A complete single-text-block stream."""
    return [
        message_start(),
        text_block_start(0),
        *(text_delta(0, fragment) for fragment in fragments),
        block_stop(0),
        message_delta(stop_reason),
        message_stop(),
    ]


def sdk_message(
    *blocks: Any,
    stop_reason: str | None = "end_turn",
    message_id: str = "msg_01",
    model: str = CLAUDE_MODEL,
    input_tokens: int = 10,
    output_tokens: int = 5,
) -> SimpleNamespace:
    """Attribute-style stand-in for ``anthropic.types.Message``."""
    return SimpleNamespace(
        id=message_id,
        type="message",
        role="assistant",
        model=model,
        content=list(blocks),
        stop_reason=stop_reason,
        stop_sequence=None,
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def text_block(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def tool_use_block(tool_id: str, name: str, tool_input: dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=tool_id, name=name, input=tool_input)


def make_credentials(
    *,
    access_token: str = "access-old",
    refresh_token: str = "refresh-old",
    expires_in: timedelta = timedelta(hours=1),
) -> Credentials:
    return Credentials(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(UTC) + expires_in,
    )
