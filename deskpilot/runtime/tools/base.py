from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel

from ..constants import TOOL_GROUP_NAME_SEPARATOR, tool_id
from ..llm.errors import CancellationToken
from ..llm.types import ToolSpec
from ..models.agent_profile import AgentProfile

if TYPE_CHECKING:
    from ..host import TaskHost


def normalize_tool_id(raw_tool_id: str) -> str:
    return re.sub(r"\s+", "_", raw_tool_id.lower())


def split_tool_id(raw_tool_id: str) -> tuple[str, str]:
    server_name, sep, tool_name = raw_tool_id.partition(TOOL_GROUP_NAME_SEPARATOR)
    if not sep:
        return "", raw_tool_id
    return server_name, tool_name


@dataclass(frozen=True, slots=True)
class ToolContext:
    tool_call_id: str
    host: TaskHost
    profile: AgentProfile
    cancel: CancellationToken
    project_dir: Path | None = None
    task_dir: Path | None = None

    @property
    def base_dir(self) -> Path:
        return self.task_dir or self.project_dir or Path.cwd()


ToolBody = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


class BuiltinTool(Protocol):
    name: str
    description: str
    input_schema: dict[str, Any]

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> Any: ...


@dataclass(frozen=True, slots=True)
class AgentTool:
    """
    A tool as offered to the model for one run.

    `tool_id` is the raw `server---tool` id used for approvals; `key` is the normalized name the
    model sees. `internal` tools skip approval and rate limiting.
    """

    tool_id: str
    server_name: str
    tool_name: str
    description: str
    input_schema: dict[str, Any]
    args_model: type[BaseModel]
    body: ToolBody
    approval_question: str = ""
    internal: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return normalize_tool_id(self.tool_id)

    def spec(self) -> ToolSpec:
        return ToolSpec(name=self.key, description=self.description, input_schema=self.input_schema)

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> Any:
        return await self.body(args, ctx)


ToolSet = dict[str, AgentTool]


def builtin_agent_tool(
    group: str,
    tool: BuiltinTool,
    *,
    args_model: type[BaseModel],
    input_schema: dict[str, Any] | None = None,
    internal: bool = False,
) -> AgentTool:
    async def _body(args: dict[str, Any], ctx: ToolContext) -> Any:
        return await tool.execute(args=args, ctx=ctx)

    return AgentTool(
        tool_id=tool_id(group, tool.name),
        server_name=group,
        tool_name=tool.name,
        description=tool.description,
        input_schema=input_schema if input_schema is not None else tool.input_schema,
        args_model=args_model,
        body=_body,
        approval_question=f"Approve {group} tool {tool.name}?",
        internal=internal,
    )
