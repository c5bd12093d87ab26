"""Shared helpers for the translation modules."""

from __future__ import annotations

from collections.abc import Mapping
import json
import time
from typing import Any


def field_of(obj: Any, name: str, default: Any = None) -> Any:
    """Read *name* from an SDK model or from its raw JSON mapping."""
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def generate_completion_id() -> str:
    """Return a ``chatcmpl-`` id unique within this process run."""
    return f"chatcmpl-{time.time_ns() // 1_000_000}"


def unix_now() -> int:
    return int(time.time())


def compact_json(value: Any) -> str:
    """Serialize *value* without whitespace between tokens."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
