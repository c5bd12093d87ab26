"""OpenAI-shaped wire types for requests, responses and stream chunks.

Messages and content parts are discriminated unions (on ``role`` and
``type``), so a payload with an unknown variant fails validation instead of
being silently misread. Response models serialize with ``model_dump()`` to
the exact JSON shape OpenAI clients expect, plus a ``provider`` tag.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Content parts
# =============================================================================


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str
    detail: str | None = None


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


class InputAudio(BaseModel):
    data: str
    format: str


class AudioPart(BaseModel):
    type: Literal["input_audio"] = "input_audio"
    input_audio: InputAudio


class RefusalPart(BaseModel):
    type: Literal["refusal"] = "refusal"
    refusal: str


ContentPart = Annotated[
    Union[TextPart, ImagePart, AudioPart, RefusalPart],
    Field(discriminator="type"),
]
AssistantContentPart = Annotated[
    Union[TextPart, RefusalPart],
    Field(discriminator="type"),
]

# =============================================================================
# Tool calls
# =============================================================================


class FunctionCall(BaseModel):
    name: str
    #: JSON-encoded arguments.
    arguments: str = ""


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


# =============================================================================
# Messages
# =============================================================================


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: str | list[TextPart]
    name: str | None = None


class DeveloperMessage(BaseModel):
    role: Literal["developer"] = "developer"
    content: str | list[TextPart]
    name: str | None = None


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str | list[ContentPart]
    name: str | None = None


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str | list[AssistantContentPart] | None = None
    refusal: str | None = None
    tool_calls: list[ToolCall] | None = None
    #: Deprecated upstream; accepted and ignored.
    function_call: FunctionCall | None = None
    name: str | None = None


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    content: str | list[TextPart]
    tool_call_id: str


class FunctionMessage(BaseModel):
    """Deprecated upstream; accepted, never converted."""

    role: Literal["function"] = "function"
    content: str | None = None
    name: str


Message = Annotated[
    Union[
        SystemMessage,
        DeveloperMessage,
        UserMessage,
        AssistantMessage,
        ToolMessage,
        FunctionMessage,
    ],
    Field(discriminator="role"),
]

# =============================================================================
# Tools
# =============================================================================


class FunctionDefinition(BaseModel):
    name: str
    description: str | None = None
    #: JSON Schema for the arguments.
    parameters: dict[str, Any] | None = None
    strict: bool | None = None


class ToolDefinition(BaseModel):
    type: Literal["function"] = "function"
    function: FunctionDefinition


class ToolChoiceFunction(BaseModel):
    name: str


class NamedToolChoice(BaseModel):
    type: Literal["function"] = "function"
    function: ToolChoiceFunction


ToolChoiceMode = Literal["none", "auto", "required"]
ToolChoice = Union[ToolChoiceMode, NamedToolChoice]

# =============================================================================
# Request
# =============================================================================

#: Parameters accepted for compatibility but with no Anthropic equivalent.
UNSUPPORTED_PARAMS: tuple[str, ...] = (
    "frequency_penalty",
    "presence_penalty",
    "logit_bias",
    "logprobs",
    "top_logprobs",
    "seed",
    "response_format",
    "audio",
    "modalities",
    "prediction",
    "user",
    "store",
    "metadata",
)


class ChatCompletionRequest(BaseModel):
    """A chat-completions request as an OpenAI client would send it.

    Unknown keys are kept in ``model_extra`` rather than rejected.
    """

    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[Message]

    temperature: float | None = None
    top_p: float | None = None
    #: Not part of OpenAI's schema; forwarded because Anthropic supports it.
    top_k: int | None = None
    stop: str | list[str] | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    tools: list[ToolDefinition] | None = None
    tool_choice: ToolChoice | None = None
    parallel_tool_calls: bool | None = None
    stream: bool | None = None

    # Tolerated, warned about, dropped.
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    logit_bias: dict[str, int] | None = None
    logprobs: bool | None = None
    top_logprobs: int | None = None
    seed: int | None = None
    response_format: dict[str, Any] | None = None
    audio: dict[str, Any] | None = None
    modalities: list[str] | None = None
    prediction: dict[str, Any] | None = None
    user: str | None = None
    store: bool | None = None
    metadata: dict[str, str] | None = None
    n: int | None = None
    functions: list[dict[str, Any]] | None = None
    function_call: str | dict[str, Any] | None = None


# =============================================================================
# Responses
# =============================================================================

FinishReason = Literal["stop", "length", "tool_calls", "content_filter", "function_call"]


class CompletionUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_counts(cls, prompt_tokens: int, completion_tokens: int) -> CompletionUsage:
        """Build usage with ``total_tokens`` always recomputed."""
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class ChatCompletionMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None


class Choice(BaseModel):
    index: int = 0
    message: ChatCompletionMessage
    finish_reason: FinishReason | None = None
    logprobs: None = None


class ChatCompletion(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: CompletionUsage | None = None
    provider: str = "anthropic"


class ChoiceDeltaFunctionCall(BaseModel):
    name: str | None = None
    arguments: str | None = None


class ChoiceDeltaToolCall(BaseModel):
    index: int
    id: str | None = None
    type: Literal["function"] | None = None
    function: ChoiceDeltaFunctionCall | None = None


class ChoiceDelta(BaseModel):
    role: Literal["assistant"] | None = None
    content: str | None = None
    #: Thinking output, kept apart from ordinary content.
    reasoning_content: str | None = None
    tool_calls: list[ChoiceDeltaToolCall] | None = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: ChoiceDelta = Field(default_factory=ChoiceDelta)
    finish_reason: FinishReason | None = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice]
    usage: CompletionUsage | None = None
    provider: str = "anthropic"
