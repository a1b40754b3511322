from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Implementation

from ... import __version__
from ..constants import MCP_CLIENT_TIMEOUT_S
from ..models.mcp_spec import McpServerConfig, McpTool
from .errors import McpConfigError, McpConnectionError
from .scope import prepare_stdio_launch

logger = logging.getLogger(__name__)


class McpConnectorLike(Protocol):
    server_name: str
    config: McpServerConfig
    tools: list[McpTool]

    @property
    def connected(self) -> bool: ...

    async def call_tool(self, name: str, arguments: dict[str, Any], *, timeout_s: float = ...) -> Any: ...

    async def close(self) -> None: ...


class McpConnector:
    """
    Live session with one MCP server plus the tools it listed at connect time.

    The transport and session are owned by a dedicated task so that they are entered and exited
    from the same task, whichever task later calls `close()`.
    """

    def __init__(self, *, server_name: str, config: McpServerConfig) -> None:
        self.server_name = server_name
        self.config = config
        self.tools: list[McpTool] = []
        self._session: ClientSession | None = None
        self._closing = asyncio.Event()
        self._runner: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        server_name: str,
        config: McpServerConfig,
        *,
        project_dir: str | None,
        task_dir: str | None,
    ) -> McpConnector:
        if not (config.is_local or config.is_remote):
            raise McpConfigError(
                f"MCP server {server_name} has invalid configuration: missing command or url",
                server_name=server_name,
            )

        logger.info("Initializing MCP client for server: %s", server_name)
        connector = cls(server_name=server_name, config=config)
        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        connector._runner = asyncio.create_task(
            connector._serve(ready, project_dir=project_dir, task_dir=task_dir),
            name=f"mcp-connector:{server_name}",
        )
        await ready
        logger.info("MCP client initialized for server: %s (%d tools)", server_name, len(connector.tools))
        return connector

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        *,
        timeout_s: float = MCP_CLIENT_TIMEOUT_S,
    ) -> dict[str, Any]:
        session = self._session
        if session is None:
            raise McpConnectionError(f"MCP server {self.server_name} is not connected.", server_name=self.server_name)
        result = await session.call_tool(name, arguments, read_timeout_seconds=timedelta(seconds=timeout_s))
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closing.set()
        runner = self._runner
        if runner is not None and not runner.done():
            await asyncio.wait({runner})
        logger.debug("Closed MCP connector for server: %s", self.server_name)

    async def _serve(self, ready: asyncio.Future[None], *, project_dir: str | None, task_dir: str | None) -> None:
        try:
            async with AsyncExitStack() as stack:
                session = await self._connect(stack, project_dir=project_dir, task_dir=task_dir)
                listed = await session.list_tools()
                self.tools = [
                    McpTool(
                        name=tool.name,
                        description=tool.description,
                        input_schema=dict(tool.inputSchema or {}),
                        server_name=self.server_name,
                    )
                    for tool in listed.tools
                ]
                self._session = session
                ready.set_result(None)
                await self._closing.wait()
        except Exception as e:
            if not ready.done():
                err = McpConnectionError(f"Failed to connect to MCP server {self.server_name}: {e}", server_name=self.server_name)
                err.__cause__ = e
                ready.set_exception(err)
                return
            logger.warning("MCP session for server %s ended with error: %s", self.server_name, e)
        finally:
            self._session = None
            if not ready.done():
                ready.set_exception(McpConnectionError(f"MCP connector for {self.server_name} was cancelled.", server_name=self.server_name))

    async def _connect(self, stack: AsyncExitStack, *, project_dir: str | None, task_dir: str | None) -> ClientSession:
        config = self.config
        if config.is_local:
            launch = prepare_stdio_launch(config, server_name=self.server_name, project_dir=project_dir, task_dir=task_dir)
            params = StdioServerParameters(command=launch.command, args=launch.args, env=launch.env, cwd=launch.cwd)
            logger.debug("Connecting to MCP server using stdio: %s", self.server_name)
            read, write = await stack.enter_async_context(stdio_client(params))
            return await _start_session(stack, read, write)

        url = str(config.url)
        headers = dict(config.headers) or None
        try:
            async with AsyncExitStack() as attempt:
                logger.debug("Connecting to MCP server using Streamable HTTP: %s", self.server_name)
                read, write, _ = await attempt.enter_async_context(streamablehttp_client(url, headers=headers))
                session = await _start_session(attempt, read, write)
                stack.push_async_exit(attempt.pop_all())
                return session
        except Exception as e:
            logger.debug("Streamable HTTP failed for MCP server %s: %s", self.server_name, e)

        logger.debug("Connecting to MCP server using SSE: %s", self.server_name)
        read, write = await stack.enter_async_context(sse_client(url, headers=headers))
        return await _start_session(stack, read, write)


async def _start_session(stack: AsyncExitStack, read, write) -> ClientSession:
    session = await stack.enter_async_context(
        ClientSession(
            read,
            write,
            read_timeout_seconds=timedelta(seconds=MCP_CLIENT_TIMEOUT_S),
            client_info=Implementation(name="deskpilot", version=__version__),
        )
    )
    await session.initialize()
    return session
