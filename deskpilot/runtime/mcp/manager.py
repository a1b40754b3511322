from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

from ..ids import new_mcp_init_id
from ..models.mcp_spec import McpServerConfig, McpTool
from .cache import McpToolsCache
from .connector import McpConnector, McpConnectorLike
from .scope import GLOBAL_SCOPE, calculate_server_scope, interpolate_server_config, pool_key

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[..., Awaitable[McpConnectorLike]]


class McpManager:
    """
    Pool of MCP connectors keyed by `(scope, server name)`.

    Pool slots hold tasks, not connectors: a slot is reserved before the connection attempt
    starts, so concurrent callers for the same key await one creation instead of racing.
    """

    def __init__(self, *, cache_file: Path, connector_factory: ConnectorFactory | None = None) -> None:
        self._cache = McpToolsCache(cache_file)
        self._connector_factory: ConnectorFactory = connector_factory or McpConnector.open
        self._connectors: dict[str, asyncio.Task[McpConnectorLike]] = {}
        self._current_init_id: str | None = None

    @property
    def tools_cache(self) -> McpToolsCache:
        return self._cache

    async def init(self) -> None:
        self._cache.load()

    async def init_mcp_connectors(
        self,
        mcp_servers: Mapping[str, McpServerConfig],
        *,
        project_dir: str | None = None,
        task_dir: str | None = None,
        force_reload: bool = False,
        enabled_servers: list[str] | None = None,
    ) -> list[McpConnectorLike]:
        """
        Ensure connectors exist for the selected servers and return every one that resolved.

        Failures are logged and left out of the result; they never fail the whole call.
        """

        init_id = new_mcp_init_id()
        self._current_init_id = init_id

        server_names = list(enabled_servers) if enabled_servers is not None else list(mcp_servers)
        keys: list[str] = []
        started: list[asyncio.Task[McpConnectorLike]] = []
        for server_name in server_names:
            config = mcp_servers.get(server_name)
            if config is None:
                continue
            scope = calculate_server_scope(config, project_dir=project_dir, task_dir=task_dir, server_name=server_name)
            key = pool_key(scope, server_name)
            keys.append(key)

            existing = self._connectors.get(key)
            if existing is not None and not force_reload and not self._needs_replacement(existing, config, project_dir=project_dir, task_dir=task_dir):
                continue

            task = asyncio.create_task(
                self._init_connector(
                    server_name,
                    config,
                    project_dir=project_dir,
                    task_dir=task_dir,
                    force_reload=force_reload,
                    init_id=init_id,
                    previous=existing,
                ),
                name=f"mcp-init:{key}",
            )
            self._connectors[key] = task
            started.append(task)

        if started:
            updated = False
            for result in await asyncio.gather(*started, return_exceptions=True):
                if isinstance(result, BaseException):
                    logger.error("Failed to initialize MCP connector: %s", result)
                    continue
                self._cache.update(result.server_name, result.tools)
                updated = True
            if updated:
                self._cache.save()

        return await self._resolve(keys)

    async def get_connectors(self) -> list[McpConnectorLike]:
        return await self._resolve(list(self._connectors))

    async def get_mcp_server_tools(self, server_name: str, config: McpServerConfig | None = None) -> list[McpTool] | None:
        cached = self._cache.get(server_name)
        if cached is not None:
            logger.debug("Returning cached tools for MCP server: %s", server_name)
            return cached

        key = pool_key(GLOBAL_SCOPE, server_name)
        task = self._connectors.get(key)
        if task is None and config is not None:
            task = asyncio.create_task(
                self._init_connector(server_name, config, project_dir=None, task_dir=None, force_reload=False, init_id=None, previous=None),
                name=f"mcp-init:{key}",
            )
            self._connectors[key] = task
        if task is None:
            logger.warning("No MCP connector found for server: %s", server_name)
            return None

        try:
            connector = await asyncio.shield(task)
        except Exception as e:
            logger.error("Error retrieving tools for MCP server %s: %s", server_name, e)
            raise
        return list(connector.tools)

    async def reload_all_servers(self, mcp_servers: Mapping[str, McpServerConfig], *, force: bool) -> None:
        logger.info("Reloading all MCP servers")
        self._cache.clear()
        await self.init_mcp_connectors(mcp_servers, project_dir=None, task_dir=None, force_reload=force)
        logger.info("All MCP servers reloaded")

    async def reload_single_server(self, server_name: str, config: McpServerConfig) -> list[McpTool]:
        logger.info("Reloading single MCP server: %s", server_name)
        key = pool_key(GLOBAL_SCOPE, server_name)

        existing = self._connectors.pop(key, None)
        if existing is not None:
            try:
                old = await existing
            except Exception as e:
                logger.error("Error closing connector for MCP server %s: %s", server_name, e)
            else:
                await self._close_connector(old, label=key)

        self._cache.remove(server_name)

        task = asyncio.create_task(
            self._init_connector(server_name, config, project_dir=None, task_dir=None, force_reload=False, init_id=None, previous=None),
            name=f"mcp-init:{key}",
        )
        self._connectors[key] = task
        try:
            connector = await task
        except Exception as e:
            logger.error("Failed to reload MCP server %s: %s", server_name, e)
            if self._connectors.get(key) is task:
                del self._connectors[key]
            raise

        self._cache.update(server_name, connector.tools)
        self._cache.save()
        logger.info("Reloaded MCP server: %s", server_name)
        return list(connector.tools)

    async def close(self) -> None:
        pooled = list(self._connectors.items())
        self._connectors.clear()
        for result in await asyncio.gather(*(self._close_pooled(key, task) for key, task in pooled), return_exceptions=True):
            if isinstance(result, BaseException):
                logger.error("Error closing pooled MCP connector: %s", result)
        logger.debug("All pooled MCP connectors closed")

    def _needs_replacement(
        self,
        existing: asyncio.Task[McpConnectorLike],
        config: McpServerConfig,
        *,
        project_dir: str | None,
        task_dir: str | None,
    ) -> bool:
        if not existing.done():
            return False
        if existing.cancelled() or existing.exception() is not None:
            return True
        connector = existing.result()
        if not connector.connected:
            return True
        wanted = interpolate_server_config(config, project_dir=project_dir, task_dir=task_dir)
        return connector.config != wanted

    async def _init_connector(
        self,
        server_name: str,
        config: McpServerConfig,
        *,
        project_dir: str | None,
        task_dir: str | None,
        force_reload: bool,
        init_id: str | None,
        previous: asyncio.Task[McpConnectorLike] | None,
    ) -> McpConnectorLike:
        config = interpolate_server_config(config, project_dir=project_dir, task_dir=task_dir)

        old: McpConnectorLike | None = None
        if previous is not None:
            try:
                old = await asyncio.shield(previous)
            except Exception as e:
                logger.warning("Previous MCP connector for server %s failed: %s", server_name, e)

            if old is not None:
                if init_id != self._current_init_id:
                    logger.info("MCP initialization for %s superseded by a newer request", server_name)
                    return old
                if not force_reload and old.connected and old.config == config:
                    logger.debug("Using existing MCP connector for server: %s", server_name)
                    return old

        try:
            return await self._connector_factory(server_name, config, project_dir=project_dir, task_dir=task_dir)
        except Exception as e:
            logger.error("MCP client creation failed for server %s: %s", server_name, e)
            raise
        finally:
            if old is not None:
                await self._close_connector(old, label=server_name)

    async def _resolve(self, keys: list[str]) -> list[McpConnectorLike]:
        tasks = [(key, self._connectors[key]) for key in dict.fromkeys(keys) if key in self._connectors]
        results = await asyncio.gather(*(asyncio.shield(task) for _, task in tasks), return_exceptions=True)
        out: list[McpConnectorLike] = []
        for (key, _), result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.warning("MCP connector %s is unavailable: %s", key, result)
                continue
            out.append(result)
        return out

    async def _close_pooled(self, key: str, task: asyncio.Task[McpConnectorLike]) -> None:
        try:
            connector = await task
        except Exception as e:
            logger.error("Error closing pooled MCP connector %s: %s", key, e)
            return
        await self._close_connector(connector, label=key)

    async def _close_connector(self, connector: McpConnectorLike, *, label: str) -> None:
        try:
            await connector.close()
        except Exception as e:
            logger.error("Error closing MCP connector %s: %s", label, e)
            return
        logger.info("Closed MCP connector: %s", label)
