from __future__ import annotations

from ..error_codes import ErrorCode


class McpError(RuntimeError):
    code: ErrorCode = ErrorCode.MCP_CONNECTION

    def __init__(self, message: str, *, server_name: str | None = None) -> None:
        super().__init__(message)
        self.server_name = server_name


class McpConfigError(McpError):
    code = ErrorCode.MCP_CONFIG


class McpConnectionError(McpError):
    code = ErrorCode.MCP_CONNECTION
