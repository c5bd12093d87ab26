"""Anthropic ``stop_reason`` → OpenAI ``finish_reason``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from castor.types import FinishReason

logger = logging.getLogger(__name__)

# pause_turn and refusal have no exact counterpart: a paused turn ended
# normally from the caller's point of view, and content_filter is the closest
# match for a refusal.
STOP_REASON_MAP: dict[str, FinishReason] = {
    "end_turn": "stop",
    "max_tokens": "length",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "pause_turn": "stop",
    "refusal": "content_filter",
}


def to_finish_reason(stop_reason: Any) -> FinishReason | None:
    """Map an Anthropic stop reason to an OpenAI finish reason.

    ``None`` maps to ``None``. Values newer than this table map to ``"stop"``
    with a warning.
    """
    if stop_reason is None:
        return None
    reason = str(getattr(stop_reason, "value", stop_reason)).lower()
    mapped = STOP_REASON_MAP.get(reason)
    if mapped is None:
        logger.warning("Unknown Anthropic stop_reason %r; reporting 'stop'", reason)
        return "stop"
    return mapped
