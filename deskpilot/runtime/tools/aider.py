from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..constants import (
    AIDER_TOOL_ADD_CONTEXT_FILE,
    AIDER_TOOL_DROP_CONTEXT_FILE,
    AIDER_TOOL_GET_CONTEXT_FILES,
    AIDER_TOOL_RUN_PROMPT,
)
from .base import BuiltinTool, ToolContext


def _as_non_empty_str(value: Any, *, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing or invalid '{field_name}' (expected non-empty string).")
    return value.strip()


@dataclass(frozen=True, slots=True)
class GetContextFilesTool:
    name: str = AIDER_TOOL_GET_CONTEXT_FILES
    description: str = "Lists the files currently in the Aider context, with their read-only flag."
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> list[dict[str, Any]]:
        del args
        return [{"path": f.path, "readOnly": f.read_only} for f in ctx.host.get_context_files()]


@dataclass(frozen=True, slots=True)
class AddContextFileTool:
    name: str = AIDER_TOOL_ADD_CONTEXT_FILE
    description: str = (
        "Adds a file to the Aider context so Aider can edit it (or read it when readOnly is true)."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "readOnly": {"type": "boolean"},
            },
            "required": ["path"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        path = _as_non_empty_str(args.get("path"), field_name="path")
        read_only = bool(args.get("readOnly", False))
        if await ctx.host.add_context_file(path, read_only):
            return f"Added file {path} to the context{' as read-only' if read_only else ''}."
        return f"File {path} could not be added to the context."


@dataclass(frozen=True, slots=True)
class DropContextFileTool:
    name: str = AIDER_TOOL_DROP_CONTEXT_FILE
    description: str = "Removes a file from the Aider context."
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        path = _as_non_empty_str(args.get("path"), field_name="path")
        if await ctx.host.drop_context_file(path):
            return f"Dropped file {path} from the context."
        return f"File {path} is not in the context."


@dataclass(frozen=True, slots=True)
class RunPromptTool:
    name: str = AIDER_TOOL_RUN_PROMPT
    description: str = (
        "Sends a coding request to Aider, which edits the files in its context and reports the result.\n"
        "Add the files to change to the context first."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {"prompt": {"type": "string"}},
            "required": ["prompt"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        prompt = _as_non_empty_str(args.get("prompt"), field_name="prompt")
        return await ctx.host.run_prompt(prompt)


def aider_tools() -> list[BuiltinTool]:
    return [GetContextFilesTool(), AddContextFileTool(), DropContextFileTool(), RunPromptTool()]
