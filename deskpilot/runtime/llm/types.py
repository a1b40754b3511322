from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..models.messages import ContextMessage


class StreamEventKind(StrEnum):
    TEXT_DELTA = "text-delta"
    REASONING_DELTA = "reasoning-delta"
    TOOL_INPUT_START = "tool-input-start"
    TOOL_CALL = "tool-call"
    STEP_FINISH = "step-finish"
    ERROR = "error"


class FinishReason(StrEnum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool-calls"
    CONTENT_FILTER = "content-filter"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    cache_write_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
        )


@dataclass(frozen=True, slots=True)
class RawToolCall:
    """A tool call as emitted by the model: arguments are still unparsed JSON text."""

    tool_call_id: str
    tool_name: str
    input: str


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True, slots=True)
class StreamEvent:
    kind: StreamEventKind
    text: str | None = None
    tool_name: str | None = None
    tool_call: RawToolCall | None = None
    finish_reason: FinishReason | None = None
    usage: TokenUsage | None = None
    provider_metadata: dict[str, Any] | None = None
    error: BaseException | None = None

    @classmethod
    def text_delta(cls, text: str) -> StreamEvent:
        return cls(kind=StreamEventKind.TEXT_DELTA, text=text)

    @classmethod
    def reasoning_delta(cls, text: str) -> StreamEvent:
        return cls(kind=StreamEventKind.REASONING_DELTA, text=text)

    @classmethod
    def tool_input_start(cls, tool_name: str) -> StreamEvent:
        return cls(kind=StreamEventKind.TOOL_INPUT_START, tool_name=tool_name)

    @classmethod
    def call(cls, tool_call: RawToolCall) -> StreamEvent:
        return cls(kind=StreamEventKind.TOOL_CALL, tool_call=tool_call)

    @classmethod
    def step_finish(
        cls,
        finish_reason: FinishReason | None,
        usage: TokenUsage | None = None,
        provider_metadata: dict[str, Any] | None = None,
    ) -> StreamEvent:
        return cls(kind=StreamEventKind.STEP_FINISH, finish_reason=finish_reason, usage=usage, provider_metadata=provider_metadata)

    @classmethod
    def failure(cls, error: BaseException) -> StreamEvent:
        return cls(kind=StreamEventKind.ERROR, error=error)


@dataclass(frozen=True, slots=True)
class StreamRequest:
    system: str
    messages: list[ContextMessage]
    tools: list[ToolSpec] = field(default_factory=list)
    tool_choice: str = "auto"
    temperature: float | None = None
    max_output_tokens: int | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CompletionResult:
    text: str
    tool_calls: list[RawToolCall]
    finish_reason: FinishReason | None
    usage: TokenUsage = field(default_factory=TokenUsage)
