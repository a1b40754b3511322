from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import ConfigError, DeskpilotSettings, load_settings, make_provider_factory
from .logging_setup import configure_logging
from .runtime.agent import Agent
from .runtime.host import ApprovalAnswer, ApprovalReply, LogLevel
from .runtime.mcp.errors import McpError
from .runtime.mcp.manager import McpManager
from .runtime.models.messages import ContextFile, ContextMessage, ResponseMessage, UsageReport
from .runtime.usage import StaticPricingProvider

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 5
EXIT_INTERRUPTED = 130


def _configure_text_io() -> None:
    """Best-effort UTF-8 normalization for terminals with a non-UTF-8 default encoding."""
    try:
        if hasattr(sys.stdin, "reconfigure"):
            sys.stdin.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="backslashreplace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="backslashreplace")
    except (OSError, ValueError):
        return


class ConsoleTaskHost:
    """Terminal host: streams text to stdout, status to stderr, and answers approvals per `approve_mode`."""

    def __init__(
        self,
        *,
        project_dir: Path,
        task_dir: Path | None = None,
        approve_mode: str = "ask",
        context_files: list[ContextFile] | None = None,
    ) -> None:
        self._project_dir = project_dir
        self._task_dir = task_dir
        self._approve_mode = approve_mode
        self._context_files: list[ContextFile] = list(context_files or [])
        self._agent_total_cost = 0.0

    @property
    def project_dir(self) -> Path | None:
        return self._project_dir

    @property
    def task_dir(self) -> Path | None:
        return self._task_dir

    @property
    def agent_total_cost(self) -> float:
        return self._agent_total_cost

    def _track(self, report: UsageReport | None) -> None:
        if report is not None:
            self._agent_total_cost += report.message_cost

    def process_response_message(self, message: ResponseMessage) -> None:
        if not message.finished:
            sys.stdout.write(message.content)
            sys.stdout.flush()
            return
        self._track(message.usage_report)
        if message.content:
            sys.stdout.write("\n")
            sys.stdout.flush()

    def add_tool_message(
        self,
        tool_call_id: str,
        server_name: str,
        tool_name: str,
        args: dict[str, Any] | None,
        result: str | None = None,
        usage_report: UsageReport | None = None,
    ) -> None:
        self._track(usage_report)
        if result is None:
            print(f"[tool] {server_name}/{tool_name} {json.dumps(args or {}, ensure_ascii=False)}", file=sys.stderr)
            return
        preview = result if len(result) <= 500 else result[:499] + "…"
        print(f"[tool] {server_name}/{tool_name} -> {preview}", file=sys.stderr)

    def add_log_message(self, level: LogLevel, text: str | None = None) -> None:
        if level is LogLevel.LOADING or not text:
            return
        print(f"[{level.value}] {text}", file=sys.stderr)

    async def request_approval(self, tool_id: str, question_text: str, question_subject: str | None) -> ApprovalReply:
        if self._approve_mode == "always":
            return ApprovalReply(answer=ApprovalAnswer.YES)
        if self._approve_mode == "never":
            return ApprovalReply(answer=ApprovalAnswer.NO)

        print(question_text, file=sys.stderr)
        if question_subject:
            print(question_subject, file=sys.stderr)
        raw = await asyncio.to_thread(input, "[y]es / [n]o / [a]lways / [r]un (or type a reason to deny): ")
        answer = raw.strip()
        try:
            return ApprovalReply(answer=ApprovalAnswer(answer.lower()))
        except ValueError:
            return ApprovalReply(answer=ApprovalAnswer.NO, user_input=answer or None)

    def get_context_files(self) -> list[ContextFile]:
        return list(self._context_files)

    def get_context_messages(self) -> list[ContextMessage]:
        return []

    def get_repo_map(self) -> str | None:
        return None

    async def add_context_file(self, path: str, read_only: bool) -> bool:
        if any(f.path == path for f in self._context_files):
            return False
        self._context_files.append(ContextFile(path=path, read_only=read_only))
        return True

    async def drop_context_file(self, path: str) -> bool:
        before = len(self._context_files)
        self._context_files = [f for f in self._context_files if f.path != path]
        return len(self._context_files) != before

    async def run_prompt(self, prompt: str) -> str:
        raise RuntimeError("No coding assistant is attached to the command line host.")


def _load(args: argparse.Namespace) -> DeskpilotSettings:
    return load_settings(Path(args.settings).expanduser() if args.settings else None)


async def _mcp_tools(settings: DeskpilotSettings, server_name: str) -> int:
    config = settings.mcp_servers.get(server_name)
    if config is None:
        print(f"Unknown MCP server: {server_name}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    manager = McpManager(cache_file=settings.tools_cache_file)
    await manager.init()
    try:
        tools = await manager.get_mcp_server_tools(server_name, config)
    finally:
        await manager.close()
    for tool in tools or []:
        summary = (tool.description or "").strip().splitlines()
        print(f"{tool.name}\t{summary[0] if summary else ''}")
    return EXIT_OK


async def _mcp_reload(settings: DeskpilotSettings, server_name: str | None, force: bool) -> int:
    manager = McpManager(cache_file=settings.tools_cache_file)
    await manager.init()
    try:
        if server_name is None:
            await manager.reload_all_servers(settings.mcp_servers, force=force)
            for name in sorted(settings.mcp_servers):
                tools = manager.tools_cache.get(name)
                status = f"{len(tools)} tools" if tools is not None else "failed"
                print(f"{name}\t{status}")
            return EXIT_OK

        config = settings.mcp_servers.get(server_name)
        if config is None:
            print(f"Unknown MCP server: {server_name}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        tools = await manager.reload_single_server(server_name, config)
        print(f"{server_name}\t{len(tools)} tools")
        return EXIT_OK
    finally:
        await manager.close()


async def _run(settings: DeskpilotSettings, args: argparse.Namespace) -> int:
    profile = settings.profile(args.profile)
    project_dir = Path(args.project).expanduser().resolve()
    task_dir = Path(args.task_dir).expanduser().resolve() if args.task_dir else None
    files = [ContextFile(path=p, read_only=False) for p in args.file or []]
    files += [ContextFile(path=p, read_only=True) for p in args.read_only or []]
    host = ConsoleTaskHost(project_dir=project_dir, task_dir=task_dir, approve_mode=args.approve, context_files=files)

    manager = McpManager(cache_file=settings.tools_cache_file)
    await manager.init()
    agent = Agent(
        mcp_manager=manager,
        provider_factory=make_provider_factory(settings),
        mcp_servers=settings.mcp_servers,
        agent_profiles=settings.agent_profiles,
        pricing=StaticPricingProvider(settings.model_pricing),
    )
    try:
        result = await agent.run(host, profile, args.prompt)
    finally:
        await manager.close()

    usage = result.usage
    print(
        f"tokens sent={usage.sent_tokens} received={usage.received_tokens} cached={usage.cache_read_tokens} cost=${usage.cost:.6f}",
        file=sys.stderr,
    )
    if result.error is not None:
        return EXIT_ERROR
    return EXIT_INTERRUPTED if result.aborted else EXIT_OK


def _cmd_mcp_tools(args: argparse.Namespace) -> int:
    return asyncio.run(_mcp_tools(_load(args), args.server))


def _cmd_mcp_reload(args: argparse.Namespace) -> int:
    return asyncio.run(_mcp_reload(_load(args), args.server, bool(args.force)))


def _cmd_run(args: argparse.Namespace) -> int:
    return asyncio.run(_run(_load(args), args))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deskpilot",
        description="Coding agent runtime with MCP tool servers.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--settings", default=None, help="Settings file (default: $DESKPILOT_HOME/settings.json).")
    parser.add_argument("--log-level", default=None, help="Log level (default: WARNING, or $DESKPILOT_LOG_LEVEL).")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    mcp_parser = subparsers.add_parser("mcp", help="Inspect and reload MCP servers.")
    mcp_subparsers = mcp_parser.add_subparsers(dest="mcp_cmd", required=True)

    tools_parser = mcp_subparsers.add_parser("tools", help="List the tools of a configured server.")
    tools_parser.add_argument("server", help="Server name from the settings file.")
    tools_parser.set_defaults(func=_cmd_mcp_tools)

    reload_parser = mcp_subparsers.add_parser("reload", help="Reconnect servers and refresh the tools cache.")
    reload_parser.add_argument("server", nargs="?", default=None, help="Server name (default: all servers).")
    reload_parser.add_argument("--force", action="store_true", help="Reconnect even when the config is unchanged.")
    reload_parser.set_defaults(func=_cmd_mcp_reload)

    run_parser = subparsers.add_parser("run", help="Run one agent prompt.")
    run_parser.add_argument("prompt", help="Prompt text.")
    run_parser.add_argument("--profile", default="default", help="Agent profile id (default: default).")
    run_parser.add_argument("--project", default=".", help="Project directory (default: current directory).")
    run_parser.add_argument("--task-dir", default=None, help="Task working directory (e.g. a worktree).")
    run_parser.add_argument("--file", action="append", help="Editable context file (repeatable).")
    run_parser.add_argument("--read-only", action="append", help="Read-only context file (repeatable).")
    run_parser.add_argument(
        "--approve",
        choices=("ask", "always", "never"),
        default="ask",
        help="How to answer tool approval requests (default: ask).",
    )
    run_parser.set_defaults(func=_cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    _configure_text_io()
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, Path(args.log_file).expanduser() if args.log_file else None)

    try:
        func = getattr(args, "func")
        return int(func(args))
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except McpError as e:
        print(f"MCP server {e.server_name}: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
