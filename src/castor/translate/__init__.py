"""Translation between the OpenAI chat-completions and Anthropic Messages protocols."""

from .request import RequestConverter, parse_request, resolve_model
from .response import ResponseConverter
from .stop_reason import to_finish_reason
from .stream import BlockKind, StreamEventTransformer, StreamState

__all__ = [
    "BlockKind",
    "RequestConverter",
    "ResponseConverter",
    "StreamEventTransformer",
    "StreamState",
    "parse_request",
    "resolve_model",
    "to_finish_reason",
]
