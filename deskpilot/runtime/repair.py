from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any

from pydantic import ValidationError

from .constants import (
    HELPERS_TOOL_GROUP_NAME,
    HELPERS_TOOL_INVALID_TOOL_ARGUMENTS,
    HELPERS_TOOL_NO_SUCH_TOOL,
    TOOL_GROUP_NAME_SEPARATOR,
    tool_id,
)
from .error_codes import ErrorCode
from .llm.errors import CancellationToken
from .llm.provider import StreamProvider
from .llm.types import RawToolCall, StreamRequest
from .models.messages import ContextMessage, MessageRole, ToolCall
from .tools.base import AgentTool, ToolSet

logger = logging.getLogger(__name__)

MAX_REPAIR_ROUNDS = 2


class NoSuchToolError(LookupError):
    code = ErrorCode.TOOL_UNKNOWN

    def __init__(self, tool_name: str, available_tools: list[str]) -> None:
        super().__init__(f"Model tried to call unavailable tool '{tool_name}'. Available tools: {', '.join(available_tools)}.")
        self.tool_name = tool_name
        self.available_tools = available_tools


class InvalidToolArgumentsError(ValueError):
    code = ErrorCode.TOOL_INVALID_ARGS

    def __init__(self, tool_name: str, tool_input: Any, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.tool_input = tool_input


class ToolCallRepairError(RuntimeError):
    code = ErrorCode.TOOL_REPAIR_FAILED

    def __init__(self, message: str, *, tool_call: RawToolCall) -> None:
        super().__init__(message)
        self.tool_call = tool_call


@dataclass(frozen=True, slots=True)
class ParsedToolCall:
    tool_call_id: str
    tool: AgentTool
    arguments: dict[str, Any]

    def as_message_call(self) -> ToolCall:
        return ToolCall(tool_call_id=self.tool_call_id, name=self.tool.key, arguments=self.arguments)


def parse_tool_call(call: RawToolCall, tools: ToolSet) -> ParsedToolCall:
    tool = tools.get(call.tool_name)
    if tool is None:
        raise NoSuchToolError(call.tool_name, list(tools))

    text = call.input.strip()
    try:
        args = json.loads(text) if text else {}
    except json.JSONDecodeError as e:
        raise InvalidToolArgumentsError(call.tool_name, call.input, f"Tool arguments are not valid JSON: {e}") from e
    if not isinstance(args, dict):
        raise InvalidToolArgumentsError(call.tool_name, args, "Tool arguments must be a JSON object.")

    try:
        tool.args_model.model_validate(args)
    except ValidationError as e:
        raise InvalidToolArgumentsError(call.tool_name, args, str(e)) from e
    return ParsedToolCall(tool_call_id=call.tool_call_id, tool=tool, arguments=args)


def _loose_json(text: str) -> dict[str, Any]:
    try:
        value = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError:
        return {"input": text}
    return value if isinstance(value, dict) else {"input": value}


class ToolCallRepairer:
    """
    Turns an unparseable tool call into one that can run.

    - unknown tool: retry with a unique `<server>---<name>` match, otherwise call the
      `helpers---no_such_tool` helper
    - invalid arguments: call the `helpers---invalid_tool_arguments` helper
    - anything else: ask the model once more with the error as the tool result
    """

    def __init__(self, provider: StreamProvider) -> None:
        self._provider = provider

    async def resolve(
        self,
        call: RawToolCall,
        *,
        tools: ToolSet,
        system: str,
        messages: list[ContextMessage],
        cancel: CancellationToken,
    ) -> ParsedToolCall:
        current = call
        for _ in range(MAX_REPAIR_ROUNDS):
            try:
                return parse_tool_call(current, tools)
            except Exception as e:
                repaired = await self.repair(current, error=e, tools=tools, system=system, messages=messages, cancel=cancel)
                if repaired is None:
                    raise ToolCallRepairError(f"Could not repair tool call '{current.tool_name}': {e}", tool_call=current) from e
                current = repaired
        try:
            return parse_tool_call(current, tools)
        except Exception as e:
            raise ToolCallRepairError(f"Could not repair tool call '{current.tool_name}': {e}", tool_call=current) from e

    async def repair(
        self,
        call: RawToolCall,
        *,
        error: BaseException,
        tools: ToolSet,
        system: str,
        messages: list[ContextMessage],
        cancel: CancellationToken,
    ) -> RawToolCall | None:
        logger.warning("Error during tool call %s: %s", call.tool_name, error)

        if isinstance(error, NoSuchToolError):
            suffix = f"{TOOL_GROUP_NAME_SEPARATOR}{error.tool_name}"
            matching = next((name for name in error.available_tools if name.endswith(suffix)), None)
            if matching is not None:
                logger.info("Found matching tool for %s: %s", error.tool_name, matching)
                return replace(call, tool_name=matching)
            return replace(
                call,
                tool_name=tool_id(HELPERS_TOOL_GROUP_NAME, HELPERS_TOOL_NO_SUCH_TOOL),
                input=json.dumps({"toolName": error.tool_name, "availableTools": error.available_tools}),
            )

        if isinstance(error, InvalidToolArgumentsError):
            logger.warning("Invalid input for tool %s: %s", error.tool_name, error)
            return replace(
                call,
                tool_name=tool_id(HELPERS_TOOL_GROUP_NAME, HELPERS_TOOL_INVALID_TOOL_ARGUMENTS),
                input=json.dumps(
                    {
                        "toolName": error.tool_name,
                        "toolInput": json.dumps(error.tool_input, ensure_ascii=False),
                        "error": str(error),
                    }
                ),
            )

        logger.info("Attempting generic repair for tool call error: %s", call.tool_name)
        request = StreamRequest(
            system=system,
            messages=[
                *messages,
                ContextMessage(
                    role=MessageRole.ASSISTANT,
                    tool_calls=[ToolCall(tool_call_id=call.tool_call_id, name=call.tool_name, arguments=_loose_json(call.input))],
                ),
                ContextMessage(
                    role=MessageRole.TOOL,
                    content=str(error),
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                ),
            ],
            tools=[tool.spec() for tool in tools.values()],
        )
        try:
            result = await self._provider.complete(request, cancel=cancel)
        except Exception as e:
            logger.error("Error during tool call repair: %s", e)
            return None

        fixed = next((c for c in result.tool_calls if c.tool_name == call.tool_name), None)
        if fixed is None:
            return None
        return replace(call, input=fixed.input)
