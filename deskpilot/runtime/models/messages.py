from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..ids import new_message_id


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContextFile(BaseModel):
    path: str
    read_only: bool = Field(default=False, alias="readOnly")

    model_config = ConfigDict(populate_by_name=True)


@dataclass(frozen=True, slots=True)
class ImagePart:
    media_type: str
    data_b64: str

    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data_b64}"


@dataclass(frozen=True, slots=True)
class ToolCall:
    tool_call_id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True, slots=True)
class UsageReport:
    model: str
    sent_tokens: int
    received_tokens: int
    message_cost: float
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    agent_total_cost: float = 0.0


@dataclass(frozen=True, slots=True)
class ContextMessage:
    """
    One entry of the conversation history sent to the model.

    `content` is plain text, or a list of text strings and images for multimodal user messages.
    Assistant messages may carry `tool_calls`; tool messages carry `tool_call_id`/`tool_name`.
    """

    role: MessageRole
    content: str | list[str | ImagePart] = ""
    id: str = field(default_factory=new_message_id)
    reasoning: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    tool_name: str | None = None
    usage_report: UsageReport | None = None

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part for part in self.content if isinstance(part, str))


@dataclass(frozen=True, slots=True)
class ResponseMessage:
    """Streaming or final assistant output delivered to the host UI."""

    id: str
    content: str
    finished: bool
    reasoning: str | None = None
    usage_report: UsageReport | None = None
    action: str = "response"


@dataclass(slots=True)
class ToolCallRecord:
    """
    One tool invocation inside a model step; completed once execution finishes.

    `approved` is None for tools that skip approval. `aborted` marks a call the run was cancelled
    before executing; its `result` then explains that to the model.
    """

    tool_call_id: str
    tool_id: str
    key: str
    server_name: str
    tool_name: str
    arguments: dict[str, Any]
    approved: bool | None = None
    user_input: str | None = None
    result: str | None = None
    error: str | None = None
    aborted: bool = False

    @property
    def finished(self) -> bool:
        return self.result is not None

    def as_message_call(self) -> ToolCall:
        return ToolCall(tool_call_id=self.tool_call_id, name=self.key, arguments=self.arguments)
