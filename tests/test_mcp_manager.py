"""Tests for the MCP connector pool."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest
from conftest import FakeConnector, make_tool

from deskpilot.runtime.mcp.connector import McpConnector
from deskpilot.runtime.mcp.errors import McpConfigError, McpConnectionError
from deskpilot.runtime.mcp.manager import McpManager
from deskpilot.runtime.models.mcp_spec import McpServerConfig


class RecordingFactory:
    """Connector factory that records calls and can hold connections open until released."""

    def __init__(self, *, gate: asyncio.Event | None = None, fail_for: set[str] | None = None) -> None:
        self.gate = gate
        self.fail_for = fail_for or set()
        self.calls: list[tuple[str, McpServerConfig, str | None, str | None]] = []
        self.created: list[FakeConnector] = []

    async def __call__(self, server_name: str, config: McpServerConfig, *, project_dir: str | None, task_dir: str | None) -> Any:
        self.calls.append((server_name, config, project_dir, task_dir))
        if self.gate is not None:
            await self.gate.wait()
        if server_name in self.fail_for:
            raise McpConnectionError(f"cannot connect to {server_name}", server_name=server_name)
        connector = FakeConnector(server_name, config, [make_tool(f"{server_name}_tool", server_name)])
        self.created.append(connector)
        return connector


def _manager(tmp_path: Path, factory: RecordingFactory) -> McpManager:
    return McpManager(cache_file=tmp_path / "cache" / "mcp-tools-cache.json", connector_factory=factory)


class TestInitMcpConnectors:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_connection(self, tmp_path: Path) -> None:
        gate = asyncio.Event()
        factory = RecordingFactory(gate=gate)
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server")}

        first = asyncio.create_task(manager.init_mcp_connectors(servers, project_dir="/p"))
        second = asyncio.create_task(manager.init_mcp_connectors(servers, project_dir="/p"))
        await asyncio.sleep(0)
        gate.set()
        a, b = await asyncio.gather(first, second)

        assert len(factory.calls) == 1
        assert a[0] is b[0]

    @pytest.mark.asyncio
    async def test_unchanged_config_reuses_connector(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server", args=["--x"])}

        first = await manager.init_mcp_connectors(servers, project_dir="/p")
        second = await manager.init_mcp_connectors({"fs": McpServerConfig(command="server", args=["--x"])}, project_dir="/p")

        assert len(factory.calls) == 1
        assert first[0] is second[0]
        assert first[0].close_count == 0

    @pytest.mark.asyncio
    async def test_changed_config_replaces_connector_once(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)

        (old,) = await manager.init_mcp_connectors({"fs": McpServerConfig(command="server", args=["a"])}, project_dir="/p")
        (new,) = await manager.init_mcp_connectors({"fs": McpServerConfig(command="server", args=["b"])}, project_dir="/p")

        assert len(factory.calls) == 2
        assert old is not new
        assert old.close_count == 1
        assert new.close_count == 0
        assert new.config.args == ["b"]

    @pytest.mark.asyncio
    async def test_disconnected_connector_is_replaced(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server")}

        (old,) = await manager.init_mcp_connectors(servers, project_dir="/p")
        old.connected = False
        (new,) = await manager.init_mcp_connectors(servers, project_dir="/p")

        assert len(factory.calls) == 2
        assert new is not old
        assert old.close_count == 1

    @pytest.mark.asyncio
    async def test_interpolates_before_connecting(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)

        await manager.init_mcp_connectors({"fs": McpServerConfig(command="server", args=["${projectDir}"])}, project_dir="/p")

        _, config, project_dir, _ = factory.calls[0]
        assert config.args == ["/p"]
        assert project_dir == "/p"

    @pytest.mark.asyncio
    async def test_different_scopes_get_separate_connectors(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server")}

        (a,) = await manager.init_mcp_connectors(servers, project_dir="/p", task_dir="/p/wt1")
        (b,) = await manager.init_mcp_connectors(servers, project_dir="/p", task_dir="/p/wt2")

        assert a is not b
        assert len(await manager.get_connectors()) == 2

    @pytest.mark.asyncio
    async def test_failed_server_is_left_out(self, tmp_path: Path) -> None:
        factory = RecordingFactory(fail_for={"broken"})
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server"), "broken": McpServerConfig(command="nope")}

        connectors = await manager.init_mcp_connectors(servers, project_dir="/p")

        assert [c.server_name for c in connectors] == ["fs"]
        assert manager.tools_cache.get("fs") is not None
        assert manager.tools_cache.get("broken") is None

    @pytest.mark.asyncio
    async def test_failed_connector_is_retried_on_next_init(self, tmp_path: Path) -> None:
        factory = RecordingFactory(fail_for={"fs"})
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server")}

        assert await manager.init_mcp_connectors(servers, project_dir="/p") == []
        factory.fail_for.clear()
        connectors = await manager.init_mcp_connectors(servers, project_dir="/p")

        assert len(factory.calls) == 2
        assert [c.server_name for c in connectors] == ["fs"]

    @pytest.mark.asyncio
    async def test_enabled_servers_filter(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="a"), "web": McpServerConfig(command="b")}

        connectors = await manager.init_mcp_connectors(servers, project_dir="/p", enabled_servers=["web", "missing"])

        assert [c.server_name for c in connectors] == ["web"]

    @pytest.mark.asyncio
    async def test_superseded_initialization_skips_extra_connection(self, tmp_path: Path) -> None:
        gate = asyncio.Event()
        factory = RecordingFactory(gate=gate)
        manager = _manager(tmp_path, factory)
        servers = {"fs": McpServerConfig(command="server")}

        first = asyncio.create_task(manager.init_mcp_connectors(servers, project_dir="/p"))
        await asyncio.sleep(0)
        second = asyncio.create_task(manager.init_mcp_connectors(servers, project_dir="/p", force_reload=True))
        await asyncio.sleep(0)
        third = asyncio.create_task(manager.init_mcp_connectors(servers, project_dir="/p", force_reload=True))
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(first, second, third)

        # the first connection plus the one for the newest request; the middle request is superseded
        assert len(factory.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_is_written(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)

        await manager.init_mcp_connectors({"fs": McpServerConfig(command="server")}, project_dir="/p")

        assert manager.tools_cache.path.exists()
        reloaded = _manager(tmp_path, RecordingFactory())
        await reloaded.init()
        assert [t.name for t in reloaded.tools_cache.get("fs") or []] == ["fs_tool"]


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        await manager.init_mcp_connectors({"fs": McpServerConfig(command="server")}, project_dir="/p")

        await manager.close()
        assert await manager.get_connectors() == []
        await manager.close()
        assert await manager.get_connectors() == []
        assert factory.created[0].close_count == 1

    @pytest.mark.asyncio
    async def test_close_skips_failed_connectors(self, tmp_path: Path) -> None:
        factory = RecordingFactory(fail_for={"broken"})
        manager = _manager(tmp_path, factory)
        await manager.init_mcp_connectors({"broken": McpServerConfig(command="x")}, project_dir="/p")

        await manager.close()
        assert await manager.get_connectors() == []


class TestServerTools:
    @pytest.mark.asyncio
    async def test_returns_cached_tools_without_connecting(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        manager.tools_cache.update("fs", [make_tool("cached")])

        tools = await manager.get_mcp_server_tools("fs", McpServerConfig(command="server"))

        assert [t.name for t in tools or []] == ["cached"]
        assert factory.calls == []

    @pytest.mark.asyncio
    async def test_connects_globally_when_not_cached(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)

        tools = await manager.get_mcp_server_tools("fs", McpServerConfig(command="server"))

        assert [t.name for t in tools or []] == ["fs_tool"]
        assert factory.calls[0][2] is None

    @pytest.mark.asyncio
    async def test_unknown_server_without_config(self, tmp_path: Path) -> None:
        manager = _manager(tmp_path, RecordingFactory())
        assert await manager.get_mcp_server_tools("fs") is None


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_single_server_replaces_global_connector(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        config = McpServerConfig(command="server")
        await manager.init_mcp_connectors({"fs": config})

        tools = await manager.reload_single_server("fs", config)

        assert [t.name for t in tools] == ["fs_tool"]
        assert len(factory.calls) == 2
        assert factory.created[0].close_count == 1

    @pytest.mark.asyncio
    async def test_reload_single_server_failure_removes_slot(self, tmp_path: Path) -> None:
        factory = RecordingFactory(fail_for={"fs"})
        manager = _manager(tmp_path, factory)

        with pytest.raises(McpConnectionError):
            await manager.reload_single_server("fs", McpServerConfig(command="server"))
        assert await manager.get_connectors() == []

    @pytest.mark.asyncio
    async def test_reload_all_clears_cache(self, tmp_path: Path) -> None:
        factory = RecordingFactory()
        manager = _manager(tmp_path, factory)
        manager.tools_cache.update("stale", [make_tool("old")])

        await manager.reload_all_servers({"fs": McpServerConfig(command="server")}, force=True)

        assert manager.tools_cache.get("stale") is None
        assert manager.tools_cache.get("fs") is not None


class TestMcpConnector:
    @pytest.mark.asyncio
    async def test_open_rejects_config_without_command_or_url(self) -> None:
        with pytest.raises(McpConfigError):
            await McpConnector.open("empty", McpServerConfig(), project_dir=None, task_dir=None)

    @pytest.mark.asyncio
    async def test_call_tool_requires_a_session(self) -> None:
        connector = McpConnector(server_name="fs", config=McpServerConfig(command="server"))

        assert not connector.connected
        with pytest.raises(McpConnectionError):
            await connector.call_tool("read_file", {"path": "a"})

    @pytest.mark.parametrize(
        ("config", "local", "remote"),
        [
            (McpServerConfig(command="server"), True, False),
            (McpServerConfig(url="https://mcp.example.com"), False, True),
            (McpServerConfig(command="server", url="https://mcp.example.com"), True, False),
            (McpServerConfig(), False, False),
        ],
    )
    def test_server_kind(self, config: McpServerConfig, local: bool, remote: bool) -> None:
        assert (config.is_local, config.is_remote) == (local, remote)
