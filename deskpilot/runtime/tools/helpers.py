from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..constants import HELPERS_TOOL_INVALID_TOOL_ARGUMENTS, HELPERS_TOOL_NO_SUCH_TOOL
from .base import BuiltinTool, ToolContext


@dataclass(frozen=True, slots=True)
class NoSuchToolTool:
    name: str = HELPERS_TOOL_NO_SUCH_TOOL
    description: str = "Internal helper. Called when the model requests a tool that does not exist."
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "toolName": {"type": "string"},
                "availableTools": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["toolName"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        del ctx
        tool_name = str(args.get("toolName") or "")
        available = args.get("availableTools") or []
        listed = ", ".join(str(t) for t in available) if isinstance(available, list) and available else "(none)"
        return (
            f"Tool '{tool_name}' does not exist. Use one of the available tools instead: {listed}. "
            "Tool names must be used exactly as listed."
        )


@dataclass(frozen=True, slots=True)
class InvalidToolArgumentsTool:
    name: str = HELPERS_TOOL_INVALID_TOOL_ARGUMENTS
    description: str = "Internal helper. Called when the model calls a tool with invalid arguments."
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "toolName": {"type": "string"},
                "toolInput": {"type": "string"},
                "error": {"type": "string"},
            },
            "required": ["toolName", "error"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        del ctx
        tool_name = str(args.get("toolName") or "")
        tool_input = str(args.get("toolInput") or "")
        error = str(args.get("error") or "")
        return (
            f"Invalid arguments for tool '{tool_name}'.\n"
            f"Input: {tool_input}\n"
            f"Error: {error}\n"
            "Check the tool's input schema and call it again with corrected arguments."
        )


def helper_tools() -> list[BuiltinTool]:
    return [NoSuchToolTool(), InvalidToolArgumentsTool()]
