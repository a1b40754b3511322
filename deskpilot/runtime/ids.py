from __future__ import annotations

import time
import uuid

MESSAGE_ID_PREFIX = "msg"
RESPONSE_ID_PREFIX = "resp"
TOOL_CALL_ID_PREFIX = "call"
MCP_INIT_ID_PREFIX = "mcpinit"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def new_message_id() -> str:
    return new_id(MESSAGE_ID_PREFIX)


def new_response_id() -> str:
    """Id shared by the streamed chunks and the final message of one model step."""
    return new_id(RESPONSE_ID_PREFIX)


def new_mcp_init_id() -> str:
    return new_id(MCP_INIT_ID_PREFIX)


def new_tool_call_id() -> str:
    # OpenAI-compatible gateways may cap tool call ids at 40 chars; this is 37.
    return new_id(TOOL_CALL_ID_PREFIX)


def now_ts_ms() -> int:
    return time.time_ns() // 1_000_000
