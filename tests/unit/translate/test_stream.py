"""Stream re-multiplexing: Anthropic block events → OpenAI delta chunks."""

from __future__ import annotations

from typing import Any

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.errors import StreamError
from castor.translate.stream import BlockKind, StreamEventTransformer
from castor.types import ChatCompletionChunk
from tests.helpers import (
    block_start,
    block_stop,
    json_delta,
    message_delta,
    message_start,
    message_stop,
    text_block_start,
    text_delta,
    text_stream,
    thinking_delta,
    tool_block_start,
)

pytestmark = pytest.mark.unit


def _run(events: list[dict[str, Any]], request_model: str = "gpt-4o") -> list[ChatCompletionChunk]:
    transformer = StreamEventTransformer(request_model)
    chunks: list[ChatCompletionChunk] = []
    for event in events:
        chunks.extend(transformer.transform(event))
    return chunks


def _content(chunks: list[ChatCompletionChunk]) -> str:
    return "".join(c.choices[0].delta.content or "" for c in chunks)


def _arguments_by_ordinal(chunks: list[ChatCompletionChunk]) -> dict[int, str]:
    arguments: dict[int, str] = {}
    for chunk in chunks:
        for call in chunk.choices[0].delta.tool_calls or ():
            piece = call.function.arguments if call.function else None
            arguments[call.index] = arguments.get(call.index, "") + (piece or "")
    return arguments


def test_text_stream_chunk_sequence() -> None:
    chunks = _run(text_stream("Hel", "lo"))

    assert len(chunks) == 4
    role, first, second, final = chunks
    assert role.choices[0].delta.role == "assistant"
    assert first.choices[0].delta.content == "Hel"
    assert second.choices[0].delta.content == "lo"
    assert final.choices[0].finish_reason == "stop"
    assert final.usage is not None
    assert final.usage.prompt_tokens == 0
    assert final.usage.completion_tokens == 5
    assert final.usage.total_tokens == 5


def test_identity_is_frozen_at_message_start() -> None:
    chunks = _run(text_stream("a", "b", "c"))

    assert {c.id for c in chunks} == {"msg_01"}
    assert {c.model for c in chunks} == {"claude-sonnet-4-20250514"}
    assert len({c.created for c in chunks}) == 1
    assert all(c.object == "chat.completion.chunk" for c in chunks)


def test_tool_calls_get_stable_ordinals_after_text_block() -> None:
    events = [
        message_start(),
        text_block_start(0),
        text_delta(0, "Checking."),
        block_stop(0),
        tool_block_start(1, "toolu_a", "get_weather"),
        json_delta(1, '{"city":'),
        json_delta(1, '"Paris"}'),
        block_stop(1),
        tool_block_start(2, "toolu_b", "get_time", kind="mcp_tool_use"),
        json_delta(2, "{}"),
        block_stop(2),
        message_delta("tool_use"),
        message_stop(),
    ]

    chunks = _run(events)

    announcements = [
        call
        for c in chunks
        for call in c.choices[0].delta.tool_calls or ()
        if call.id is not None
    ]
    assert [(a.index, a.id, a.function.name, a.function.arguments) for a in announcements] == [
        (0, "toolu_a", "get_weather", ""),
        (1, "toolu_b", "get_time", ""),
    ]
    assert _arguments_by_ordinal(chunks) == {0: '{"city":"Paris"}', 1: "{}"}
    assert chunks[-1].choices[0].finish_reason == "tool_calls"


def test_json_delta_for_non_tool_block_is_dropped() -> None:
    chunks = _run([message_start(), text_block_start(0), json_delta(0, '{"x":1}')])
    assert len(chunks) == 1  # role chunk only


def test_thinking_goes_to_reasoning_content() -> None:
    events = [
        message_start(),
        block_start(0, {"type": "thinking", "thinking": ""}),
        thinking_delta(0, "Let me think"),
        {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig"}},
        block_stop(0),
    ]

    chunks = _run(events)

    assert len(chunks) == 2
    delta = chunks[1].choices[0].delta
    assert delta.reasoning_content == "Let me think"
    assert delta.content is None


@pytest.mark.parametrize(
    "event",
    [
        {"type": "ping"},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_stop"},
        {"type": "some_future_event"},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "citations_delta", "citation": {}}},
    ],
)
def test_events_without_openai_counterpart_emit_nothing(event: dict[str, Any]) -> None:
    transformer = StreamEventTransformer("m")
    transformer.transform(message_start())
    assert transformer.transform(event) == []


def test_unknown_block_kind_is_recorded_as_other() -> None:
    transformer = StreamEventTransformer("m")
    transformer.transform(message_start())

    assert transformer.transform(block_start(0, {"type": "brand_new_block"})) == []
    assert transformer.state.block_kinds[0] is BlockKind.OTHER


def test_error_event_raises_stream_error() -> None:
    transformer = StreamEventTransformer("m")
    transformer.transform(message_start())

    with pytest.raises(StreamError) as exc:
        transformer.transform(
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
        )

    assert "Overloaded" in str(exc.value)
    assert exc.value.retryable is True
    assert exc.value.phase == "stream"


@pytest.mark.asyncio
async def test_async_stream_yields_chunks_before_error() -> None:
    async def events() -> Any:
        for event in text_stream("partial")[:3]:
            yield event
        yield {"type": "error", "error": {"type": "api_error", "message": "boom"}}

    received: list[ChatCompletionChunk] = []
    with pytest.raises(StreamError, match="boom"):
        async for chunk in StreamEventTransformer("m").stream(events()):
            received.append(chunk)

    assert _content(received) == "partial"


def test_without_message_start_request_model_is_used() -> None:
    chunks = _run([text_block_start(0), text_delta(0, "hi")], request_model="gpt-4o")

    assert chunks[0].model == "gpt-4o"
    assert chunks[0].id.startswith("chatcmpl-")


_fragments = st.lists(st.text(alphabet="abcxyz {}\":,", min_size=0, max_size=5), min_size=1, max_size=4)


@given(
    blocks=st.lists(
        st.tuples(st.sampled_from(["text", "tool_use", "mcp_tool_use", "thinking"]), _fragments),
        min_size=1,
        max_size=6,
    )
)
@settings(max_examples=10, deadline=None, derandomize=True)
def test_stream_reconstruction_property(blocks: list[tuple[str, list[str]]]) -> None:
    """Property: concatenated deltas rebuild each block; tool ordinals follow block order."""
    events: list[dict[str, Any]] = [message_start()]
    expected_text = ""
    expected_args: dict[int, str] = {}
    expected_ids: list[str] = []

    for index, (kind, fragments) in enumerate(blocks):
        if kind == "text":
            events.append(text_block_start(index))
            events.extend(text_delta(index, f) for f in fragments)
            expected_text += "".join(fragments)
        elif kind == "thinking":
            events.append(block_start(index, {"type": "thinking", "thinking": ""}))
            events.extend(thinking_delta(index, f) for f in fragments)
        else:
            tool_id = f"toolu_{index}"
            events.append(tool_block_start(index, tool_id, "fn", kind=kind))
            events.extend(json_delta(index, f) for f in fragments)
            expected_args[len(expected_ids)] = "".join(fragments)
            expected_ids.append(tool_id)
        events.append(block_stop(index))
    events.extend([message_delta("end_turn"), message_stop()])

    chunks = _run(events)

    assert _content(chunks) == expected_text
    assert _arguments_by_ordinal(chunks) == expected_args
    announced = [
        call.id
        for c in chunks
        for call in c.choices[0].delta.tool_calls or ()
        if call.id is not None
    ]
    assert announced == expected_ids
    assert sum(1 for c in chunks if c.choices[0].finish_reason is not None) == 1
