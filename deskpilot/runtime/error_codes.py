from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNPROCESSABLE = "unprocessable"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    RESPONSE_VALIDATION = "response_validation"
    CANCELLED = "cancelled"
    MCP_CONFIG = "mcp_config"
    MCP_CONNECTION = "mcp_connection"
    TOOL_UNKNOWN = "tool_unknown"
    TOOL_INVALID_ARGS = "tool_invalid_args"
    TOOL_FAILED = "tool_failed"
    TOOL_DENIED = "tool_denied"
    TOOL_REPAIR_FAILED = "tool_repair_failed"
    UNKNOWN = "unknown"
