"""Anthropic stream events → OpenAI ``chat.completion.chunk`` objects.

Anthropic streams content as indexed blocks (start / delta* / stop), while
OpenAI streams flat deltas with tool calls addressed by ordinal. The
transformer keeps just enough state to translate between the two:

- the message id, model and creation time, fixed at ``message_start``;
- the kind of every block index, fixed at ``content_block_start``;
- the number of tool-use blocks seen so far, which assigns tool-call ordinals.

Each source event yields zero or more chunks, in order, with nothing
buffered across events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import StreamError
from castor.translate._utils import field_of, generate_completion_id, unix_now
from castor.translate.stop_reason import to_finish_reason
from castor.types import (
    ChatCompletionChunk,
    ChoiceDelta,
    ChoiceDeltaFunctionCall,
    ChoiceDeltaToolCall,
    ChunkChoice,
    CompletionUsage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable

    from castor.types import FinishReason

logger = logging.getLogger(__name__)


class BlockKind(str, Enum):
    """Content block kinds an Anthropic stream can open."""

    TEXT = "text"
    IMAGE = "image"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    REDACTED_THINKING = "redacted_thinking"
    DOCUMENT = "document"
    SERVER_TOOL_USE = "server_tool_use"
    WEB_SEARCH_TOOL_RESULT = "web_search_tool_result"
    MCP_TOOL_USE = "mcp_tool_use"
    MCP_TOOL_RESULT = "mcp_tool_result"
    SEARCH_RESULT = "search_result"
    CODE_EXECUTION_TOOL_RESULT = "code_execution_tool_result"
    CONTAINER_UPLOAD = "container_upload"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Any) -> BlockKind:
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER

    @property
    def is_tool_use(self) -> bool:
        """Whether blocks of this kind surface as OpenAI tool calls."""
        return self in (BlockKind.TOOL_USE, BlockKind.MCP_TOOL_USE)


@dataclass
class StreamState:
    """Mutable per-stream state, owned by exactly one transformer."""

    message_id: str
    model: str
    created: int
    block_kinds: dict[int, BlockKind] = field(default_factory=dict)
    tool_call_count: int = 0
    started: bool = False

    @classmethod
    def initial(cls, request_model: str) -> StreamState:
        return cls(
            message_id=generate_completion_id(),
            model=request_model,
            created=unix_now(),
        )

    def open_block(self, index: int, kind: BlockKind) -> int | None:
        """Record *kind* at *index*; return the tool-call ordinal for tool blocks."""
        self.block_kinds[index] = kind
        if not kind.is_tool_use:
            return None
        ordinal = self.tool_call_count
        self.tool_call_count += 1
        return ordinal

    def tool_call_index(self, block_index: int) -> int | None:
        """Ordinal of the tool call living at *block_index*.

        Counts the tool blocks at lower indices, which matches the ordinal
        handed out by ``open_block`` because blocks open in index order.
        Returns ``None`` when the block is not a tool block.
        """
        kind = self.block_kinds.get(block_index)
        if kind is None or not kind.is_tool_use:
            return None
        return sum(
            1
            for i, prior in self.block_kinds.items()
            if i < block_index and prior.is_tool_use
        )


class StreamEventTransformer:
    """Re-multiplexes one Anthropic event stream into OpenAI chunks.

    Not reusable: create one transformer per streaming call.

    Example:
        transformer = StreamEventTransformer(request_model="claude-sonnet-4-5")
        async for chunk in transformer.stream(anthropic_events):
            print(chunk.choices[0].delta.content or "", end="")
    """

    def __init__(self, request_model: str) -> None:
        self.request_model = request_model
        self.state = StreamState.initial(request_model)
        self._handlers: dict[str, Callable[[Any], list[ChatCompletionChunk]]] = {
            "message_start": self._on_message_start,
            "content_block_start": self._on_content_block_start,
            "content_block_delta": self._on_content_block_delta,
            "content_block_stop": self._ignore,
            "message_delta": self._on_message_delta,
            "message_stop": self._ignore,
            "ping": self._ignore,
            "error": self._on_error,
        }

    async def stream(
        self, events: AsyncIterable[Any]
    ) -> AsyncIterator[ChatCompletionChunk]:
        """Transform *events* lazily, one source event at a time."""
        async for event in events:
            for chunk in self.transform(event):
                yield chunk

    def transform(self, event: Any) -> list[ChatCompletionChunk]:
        """Translate a single source event.

        Raises:
            StreamError: The event is an upstream ``error`` event.
        """
        event_type = field_of(event, "type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Ignoring unknown stream event type %r", event_type)
            return []
        return handler(event)

    # -- handlers -------------------------------------------------------------

    def _ignore(self, event: Any) -> list[ChatCompletionChunk]:
        return []

    def _on_message_start(self, event: Any) -> list[ChatCompletionChunk]:
        state = self.state
        if state.started:
            logger.warning("Duplicate message_start in stream %s ignored", state.message_id)
            return []
        message = field_of(event, "message")
        state.message_id = field_of(message, "id") or generate_completion_id()
        state.model = field_of(message, "model") or self.request_model
        state.created = unix_now()
        state.started = True
        return [self._chunk(delta=ChoiceDelta(role="assistant"))]

    def _on_content_block_start(self, event: Any) -> list[ChatCompletionChunk]:
        index = int(field_of(event, "index", 0))
        block = field_of(event, "content_block")
        if index in self.state.block_kinds:
            logger.warning("Block index %d started twice; keeping the first kind", index)
            return []

        kind = BlockKind.parse(field_of(block, "type"))
        ordinal = self.state.open_block(index, kind)
        if ordinal is None:
            return []

        tool_call = ChoiceDeltaToolCall(
            index=ordinal,
            id=field_of(block, "id"),
            type="function",
            function=ChoiceDeltaFunctionCall(name=field_of(block, "name"), arguments=""),
        )
        return [self._chunk(delta=ChoiceDelta(tool_calls=[tool_call]))]

    def _on_content_block_delta(self, event: Any) -> list[ChatCompletionChunk]:
        delta = field_of(event, "delta")
        delta_type = field_of(delta, "type")

        if delta_type == "text_delta":
            return [self._chunk(delta=ChoiceDelta(content=field_of(delta, "text", "")))]

        if delta_type == "input_json_delta":
            index = int(field_of(event, "index", 0))
            ordinal = self.state.tool_call_index(index)
            if ordinal is None:
                logger.debug("input_json_delta for non-tool block %d dropped", index)
                return []
            tool_call = ChoiceDeltaToolCall(
                index=ordinal,
                function=ChoiceDeltaFunctionCall(
                    arguments=field_of(delta, "partial_json", "") or ""
                ),
            )
            return [self._chunk(delta=ChoiceDelta(tool_calls=[tool_call]))]

        if delta_type == "thinking_delta":
            return [
                self._chunk(
                    delta=ChoiceDelta(reasoning_content=field_of(delta, "thinking", ""))
                )
            ]

        # signature_delta, citations_delta: no OpenAI representation.
        return []

    def _on_message_delta(self, event: Any) -> list[ChatCompletionChunk]:
        delta = field_of(event, "delta")
        output_tokens = int(field_of(field_of(event, "usage"), "output_tokens", 0) or 0)
        # message_delta never carries input tokens, so prompt_tokens stays 0.
        usage = CompletionUsage.from_counts(0, output_tokens)
        return [
            self._chunk(
                finish_reason=to_finish_reason(field_of(delta, "stop_reason")),
                usage=usage,
            )
        ]

    def _on_error(self, event: Any) -> list[ChatCompletionChunk]:
        error = field_of(event, "error")
        message = field_of(error, "message") or "unknown error"
        raise StreamError(
            f"Anthropic stream error: {message}",
            provider="anthropic",
            phase="stream",
            retryable=field_of(error, "type") == "overloaded_error",
        )

    def _chunk(
        self,
        *,
        delta: ChoiceDelta | None = None,
        finish_reason: FinishReason | None = None,
        usage: CompletionUsage | None = None,
    ) -> ChatCompletionChunk:
        state = self.state
        return ChatCompletionChunk(
            id=state.message_id,
            created=state.created,
            model=state.model,
            choices=[
                ChunkChoice(
                    index=0,
                    delta=delta if delta is not None else ChoiceDelta(),
                    finish_reason=finish_reason,
                )
            ],
            usage=usage,
        )
