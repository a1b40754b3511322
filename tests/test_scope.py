"""Tests for MCP server scope calculation, interpolation and stdio launch preparation."""

from __future__ import annotations

from deskpilot.runtime.mcp.scope import (
    GLOBAL_SCOPE,
    calculate_server_scope,
    config_has_placeholder,
    interpolate_server_config,
    pool_key,
    prepare_stdio_launch,
)
from deskpilot.runtime.models.mcp_spec import McpServerConfig


def _scope(config: McpServerConfig, project_dir: str | None, task_dir: str | None) -> str:
    return calculate_server_scope(config, project_dir=project_dir, task_dir=task_dir, server_name="srv")


class TestCalculateServerScope:
    def test_plain_config_uses_task_dir(self) -> None:
        config = McpServerConfig(command="npx", args=["pkg", "/path"])
        assert _scope(config, "/p", "/p/wt") == "/p/wt"

    def test_plain_config_falls_back_to_project_dir(self) -> None:
        config = McpServerConfig(command="npx", args=["pkg"])
        assert _scope(config, "/p", None) == "/p"

    def test_plain_config_without_dirs_is_global(self) -> None:
        config = McpServerConfig(command="npx", args=["pkg", "/path"])
        assert _scope(config, None, None) == GLOBAL_SCOPE

    def test_project_placeholder_ignores_task_dir(self) -> None:
        config = McpServerConfig(command="npx", args=["${projectDir}/data"])
        assert _scope(config, "/p", "/p/wt") == "/p"
        assert _scope(config, "/p", None) == "/p"

    def test_project_placeholder_without_project_is_global(self) -> None:
        config = McpServerConfig(command="npx", args=["${projectDir}/data"])
        assert _scope(config, None, "/p/wt") == GLOBAL_SCOPE

    def test_both_placeholders(self) -> None:
        config = McpServerConfig(command="npx", args=["${projectDir}/${taskDir}"])
        assert _scope(config, "/p", "/p/wt") == "/p:/p/wt"
        assert _scope(config, "/p", None) == "/p:"
        assert _scope(config, None, "/p/wt") == GLOBAL_SCOPE

    def test_task_placeholder_only_uses_combined_scope(self) -> None:
        config = McpServerConfig(command="npx", args=["${taskDir}"])
        assert _scope(config, "/p", "/p/wt") == "/p:/p/wt"

    def test_header_placeholder_is_detected(self) -> None:
        config = McpServerConfig(url="https://mcp.example.com", headers={"X-Project": "${projectDir}"})
        assert _scope(config, "/p", "/p/wt") == "/p"

    def test_placeholder_detection_scans_every_field(self) -> None:
        for config in (
            McpServerConfig(command="${projectDir}/bin/server"),
            McpServerConfig(command="x", env={"ROOT": "${projectDir}"}),
            McpServerConfig(url="https://h/${projectDir}"),
        ):
            assert config_has_placeholder(config, "${projectDir}")

    def test_pool_key(self) -> None:
        assert pool_key("/p", "fs") == "/p:fs"


class TestInterpolateServerConfig:
    def test_args_and_env_are_substituted(self) -> None:
        config = McpServerConfig(
            command="server",
            args=["--root", "${projectDir}", "--wt", "${taskDir}"],
            env={"ROOT": "${projectDir}/x"},
        )
        out = interpolate_server_config(config, project_dir="/p", task_dir="/p/wt")
        assert out.args == ["--root", "/p", "--wt", "/p/wt"]
        assert out.env == {"ROOT": "/p/x"}
        assert config.args[1] == "${projectDir}"

    def test_url_and_headers_are_left_alone(self) -> None:
        config = McpServerConfig(url="https://h/${projectDir}", headers={"X": "${projectDir}"})
        out = interpolate_server_config(config, project_dir="/p", task_dir=None)
        assert out.url == "https://h/${projectDir}"
        assert out.headers == {"X": "${projectDir}"}

    def test_missing_task_dir_falls_back_to_project_dir(self) -> None:
        config = McpServerConfig(command="server", args=["${taskDir}"])
        out = interpolate_server_config(config, project_dir="/p", task_dir=None)
        assert out.args == ["/p"]


class TestPrepareStdioLaunch:
    def test_inherits_path_and_home(self) -> None:
        config = McpServerConfig(command="server", env={"TOKEN": "t"})
        launch = prepare_stdio_launch(
            config,
            server_name="srv",
            project_dir="/p",
            task_dir=None,
            platform="linux",
            environ={"PATH": "/usr/bin", "HOME": "/home/u", "SECRET": "s"},
        )
        assert launch.env == {"TOKEN": "t", "PATH": "/usr/bin", "HOME": "/home/u"}
        assert launch.cwd == "/p"

    def test_config_path_wins(self) -> None:
        config = McpServerConfig(command="server", env={"PATH": "/opt/bin"})
        launch = prepare_stdio_launch(
            config, server_name="srv", project_dir=None, task_dir=None, platform="linux", environ={"PATH": "/usr/bin"}
        )
        assert launch.env["PATH"] == "/opt/bin"
        assert launch.cwd is None

    def test_windows_npx_runs_through_cmd(self) -> None:
        config = McpServerConfig(command="npx", args=["-y", "pkg"])
        launch = prepare_stdio_launch(config, server_name="srv", project_dir=None, task_dir=None, platform="win32", environ={})
        assert launch.command == "cmd.exe"
        assert launch.args == ["/c", "npx", "-y", "pkg"]

    def test_docker_run_gets_init(self) -> None:
        config = McpServerConfig(command="docker", args=["run", "-i", "image"])
        launch = prepare_stdio_launch(config, server_name="srv", project_dir=None, task_dir=None, platform="linux", environ={})
        assert launch.args == ["run", "--init", "-i", "image"]

    def test_docker_container_run_gets_init_once(self) -> None:
        config = McpServerConfig(command="docker", args=["container", "run", "--init", "image"])
        launch = prepare_stdio_launch(config, server_name="srv", project_dir=None, task_dir=None, platform="linux", environ={})
        assert launch.args == ["container", "run", "--init", "image"]

    def test_cwd_prefers_task_dir(self) -> None:
        config = McpServerConfig(command="server")
        launch = prepare_stdio_launch(config, server_name="srv", project_dir="/p", task_dir="/p/wt", platform="linux", environ={})
        assert launch.cwd == "/p/wt"
