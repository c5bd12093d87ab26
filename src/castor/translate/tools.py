"""Tool definitions, tool choice and tool calls between the two protocols."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from castor.translate._utils import compact_json, field_of
from castor.types import FunctionCall, NamedToolChoice, ToolCall

if TYPE_CHECKING:
    from collections.abc import Iterable

    from castor.types import ToolChoice, ToolDefinition

#: Anthropic block kinds that become OpenAI tool calls.
TOOL_USE_BLOCK_TYPES = frozenset({"tool_use", "mcp_tool_use"})


def _input_schema(parameters: dict[str, Any] | None) -> dict[str, Any]:
    """Anthropic rejects custom tools whose schema lacks a top-level type."""
    if not parameters:
        return {"type": "object"}
    if "type" not in parameters:
        return {"type": "object", **parameters}
    return dict(parameters)


def to_anthropic_tools(
    tools: list[ToolDefinition] | None,
) -> list[dict[str, Any]] | None:
    """Convert OpenAI function tools to Anthropic custom tools (parameters → input_schema)."""
    if not tools:
        return None
    anthropic_tools: list[dict[str, Any]] = []
    for tool in tools:
        function = tool.function
        tool_def: dict[str, Any] = {
            "name": function.name,
            "input_schema": _input_schema(function.parameters),
        }
        if function.description is not None:
            tool_def["description"] = function.description
        anthropic_tools.append(tool_def)
    return anthropic_tools


def to_anthropic_tool_choice(
    tool_choice: ToolChoice | None,
    parallel_tool_calls: bool | None,
) -> dict[str, Any] | None:
    """Map tool_choice to Anthropic format.

    ``"none"`` has no Anthropic value, so it maps to ``None`` and the field is
    omitted. ``disable_parallel_tool_use`` is only set when the caller stated
    a ``parallel_tool_calls`` preference.
    """
    if tool_choice is None or tool_choice == "none":
        return None

    if isinstance(tool_choice, NamedToolChoice):
        mapped: dict[str, Any] = {"type": "tool", "name": tool_choice.function.name}
    elif tool_choice == "required":
        mapped = {"type": "any"}
    else:
        mapped = {"type": "auto"}

    if parallel_tool_calls is not None:
        mapped["disable_parallel_tool_use"] = not parallel_tool_calls
    return mapped


def to_tool_result_block(
    tool_call_id: str,
    content: str | None,
    *,
    is_error: bool | None = None,
) -> dict[str, Any]:
    """Wrap a tool's textual result as an Anthropic ``tool_result`` block."""
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": tool_call_id,
        "content": content or "",
    }
    if is_error is not None:
        block["is_error"] = is_error
    return block


def extract_tool_calls(blocks: Iterable[Any]) -> list[ToolCall] | None:
    """Collect ``tool_use`` blocks as OpenAI tool calls; ``None`` when there are none."""
    tool_calls = [
        ToolCall(
            id=field_of(block, "id", ""),
            function=FunctionCall(
                name=field_of(block, "name", ""),
                arguments=compact_json(field_of(block, "input", None) or {}),
            ),
        )
        for block in blocks
        if field_of(block, "type") == "tool_use"
    ]
    return tool_calls or None
