from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass

from ..models.mcp_spec import McpServerConfig

logger = logging.getLogger(__name__)

PROJECT_DIR_PLACEHOLDER = "${projectDir}"
TASK_DIR_PLACEHOLDER = "${taskDir}"
GLOBAL_SCOPE = "global"


def config_has_placeholder(config: McpServerConfig, placeholder: str) -> bool:
    return any(placeholder in value for value in config.string_values())


def calculate_server_scope(
    config: McpServerConfig,
    *,
    project_dir: str | None,
    task_dir: str | None,
    server_name: str = "",
) -> str:
    """
    Pool scope for a server config in a given project/task context.

    Servers that do not reference `${projectDir}` or `${taskDir}` are scoped to the most specific
    directory available. `${projectDir}`-only servers share one connector per project. Anything
    referencing `${taskDir}` is scoped to the (project, task) pair.
    """

    has_project = config_has_placeholder(config, PROJECT_DIR_PLACEHOLDER)
    has_task = config_has_placeholder(config, TASK_DIR_PLACEHOLDER)

    if not has_project and not has_task:
        scope = task_dir or project_dir or GLOBAL_SCOPE
    elif has_project and not has_task:
        scope = project_dir or GLOBAL_SCOPE
    else:
        scope = f"{project_dir}:{task_dir or ''}" if project_dir else GLOBAL_SCOPE

    logger.debug(
        "Calculated MCP scope server=%s scope=%s has_project=%s has_task=%s",
        server_name,
        scope,
        has_project,
        has_task,
    )
    return scope


def pool_key(scope: str, server_name: str) -> str:
    return f"{scope}:{server_name}"


def interpolate_value(value: str, *, project_dir: str | None, task_dir: str | None) -> str:
    out = value.replace(PROJECT_DIR_PLACEHOLDER, project_dir or ".")
    return out.replace(TASK_DIR_PLACEHOLDER, task_dir or project_dir or ".")


def interpolate_server_config(
    config: McpServerConfig,
    *,
    project_dir: str | None,
    task_dir: str | None,
) -> McpServerConfig:
    """
    Return a copy with placeholders substituted in `env` values and `args`.

    `command`, `url` and `headers` are left as written.
    """

    def _sub(value: str) -> str:
        return interpolate_value(value, project_dir=project_dir, task_dir=task_dir)

    return config.model_copy(
        update={
            "env": {key: _sub(value) for key, value in config.env.items()},
            "args": [_sub(arg) for arg in config.args],
        },
        deep=True,
    )


@dataclass(frozen=True, slots=True)
class StdioLaunch:
    command: str
    args: list[str]
    env: dict[str, str]
    cwd: str | None


def prepare_stdio_launch(
    config: McpServerConfig,
    *,
    server_name: str,
    project_dir: str | None,
    task_dir: str | None,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> StdioLaunch:
    """
    Resolve the subprocess command line for a local MCP server.

    - PATH/HOME are inherited from the host when the config does not set them.
    - On Windows `npx` is launched through `cmd.exe /c`.
    - `docker run` gets `--init` so the container forwards SIGINT/SIGTERM.
    """

    if config.command is None:
        raise ValueError(f"MCP server {server_name} has no command.")

    platform = platform if platform is not None else sys.platform
    environ = environ if environ is not None else os.environ

    env = dict(config.env)
    for key in ("PATH", "HOME"):
        if not env.get(key) and environ.get(key):
            env[key] = environ[key]

    command = config.command
    args = list(config.args)
    if platform == "win32" and command == "npx":
        command = "cmd.exe"
        args = ["/c", "npx", *args]

    if command == "docker":
        run_index = args.index("run") if "run" in args else -1
        if run_index == 0 or (run_index == 1 and args[0] == "container"):
            if "--init" not in args:
                args.insert(run_index + 1, "--init")
                logger.debug("Added --init after docker run for MCP server %s", server_name)
        else:
            logger.warning("Could not find 'run' subcommand in docker args for MCP server %s", server_name)

    return StdioLaunch(command=command, args=args, env=env, cwd=task_dir or project_dir or None)
