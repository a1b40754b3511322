"""Shared fakes and factories for deskpilot tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from deskpilot.runtime.host import ApprovalAnswer, ApprovalReply, LogLevel
from deskpilot.runtime.llm.errors import CancellationToken
from deskpilot.runtime.llm.types import (
    CompletionResult,
    FinishReason,
    RawToolCall,
    StreamEvent,
    StreamRequest,
    TokenUsage,
)
from deskpilot.runtime.models.agent_profile import AgentProfile
from deskpilot.runtime.models.mcp_spec import McpServerConfig, McpTool
from deskpilot.runtime.models.messages import ContextFile, ContextMessage, ResponseMessage, UsageReport


def make_profile(**overrides: Any) -> AgentProfile:
    """AgentProfile with test defaults, overridable via kwargs."""
    defaults: dict[str, Any] = {
        "id": "test",
        "name": "Test",
        "provider": "openai",
        "model": "test-model",
        "use_aider_tools": False,
        "include_repo_map": False,
    }
    defaults.update(overrides)
    return AgentProfile(**defaults)


def make_tool(name: str, server_name: str = "fs", **schema_props: Any) -> McpTool:
    properties = schema_props or {"path": {"type": "string"}}
    return McpTool(
        name=name,
        description=f"{name} tool",
        input_schema={"type": "object", "properties": properties, "required": list(properties)},
        server_name=server_name,
    )


class FakeHost:
    """Records everything the agent sends to the UI and answers approvals from a queue."""

    def __init__(
        self,
        *,
        project_dir: Path | None = None,
        task_dir: Path | None = None,
        replies: list[ApprovalReply] | None = None,
        context_files: list[ContextFile] | None = None,
        context_messages: list[ContextMessage] | None = None,
        repo_map: str | None = None,
    ) -> None:
        self._project_dir = project_dir
        self._task_dir = task_dir
        self.replies = list(replies or [])
        self.context_files = list(context_files or [])
        self.context_messages = list(context_messages or [])
        self.repo_map = repo_map
        self.responses: list[ResponseMessage] = []
        self.tool_messages: list[dict[str, Any]] = []
        self.logs: list[tuple[LogLevel, str | None]] = []
        self.approval_requests: list[tuple[str, str, str | None]] = []
        self.prompts: list[str] = []

    @property
    def project_dir(self) -> Path | None:
        return self._project_dir

    @property
    def task_dir(self) -> Path | None:
        return self._task_dir

    @property
    def agent_total_cost(self) -> float:
        return 0.0

    def process_response_message(self, message: ResponseMessage) -> None:
        self.responses.append(message)

    def add_tool_message(
        self,
        tool_call_id: str,
        server_name: str,
        tool_name: str,
        args: dict[str, Any] | None,
        result: str | None = None,
        usage_report: UsageReport | None = None,
    ) -> None:
        self.tool_messages.append(
            {
                "tool_call_id": tool_call_id,
                "server_name": server_name,
                "tool_name": tool_name,
                "args": args,
                "result": result,
                "usage_report": usage_report,
            }
        )

    def add_log_message(self, level: LogLevel, text: str | None = None) -> None:
        self.logs.append((level, text))

    async def request_approval(self, tool_id: str, question_text: str, question_subject: str | None) -> ApprovalReply:
        self.approval_requests.append((tool_id, question_text, question_subject))
        if self.replies:
            return self.replies.pop(0)
        return ApprovalReply(answer=ApprovalAnswer.YES)

    def get_context_files(self) -> list[ContextFile]:
        return list(self.context_files)

    def get_context_messages(self) -> list[ContextMessage]:
        return list(self.context_messages)

    def get_repo_map(self) -> str | None:
        return self.repo_map

    async def add_context_file(self, path: str, read_only: bool) -> bool:
        self.context_files.append(ContextFile(path=path, read_only=read_only))
        return True

    async def drop_context_file(self, path: str) -> bool:
        before = len(self.context_files)
        self.context_files = [f for f in self.context_files if f.path != path]
        return len(self.context_files) != before

    async def run_prompt(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return f"ran: {prompt}"

    def log_texts(self, level: LogLevel) -> list[str]:
        return [text for lvl, text in self.logs if lvl is level and text]


class FakeConnector:
    def __init__(self, server_name: str, config: McpServerConfig, tools: list[McpTool] | None = None) -> None:
        self.server_name = server_name
        self.config = config
        self.tools = list(tools or [])
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.close_count = 0
        self.connected = True

    async def call_tool(self, name: str, arguments: dict[str, Any], *, timeout_s: float = 600.0) -> dict[str, Any]:
        self.calls.append((name, arguments))
        return {"content": [{"type": "text", "text": f"{name} ok"}], "isError": False}

    async def close(self) -> None:
        self.close_count += 1


class ScriptedProvider:
    """Replays one list of stream events per model step; a plain answer once the script runs out."""

    def __init__(
        self,
        steps: list[list[StreamEvent]] | None = None,
        *,
        name: str = "openai",
        model: str = "test-model",
        completions: list[CompletionResult] | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.steps = list(steps or [])
        self.completions = list(completions or [])
        self.requests: list[StreamRequest] = []
        self.complete_requests: list[StreamRequest] = []

    async def stream(self, request: StreamRequest, *, cancel: CancellationToken) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        events = self.steps.pop(0) if self.steps else answer("done")
        for event in events:
            yield event

    async def complete(self, request: StreamRequest, *, cancel: CancellationToken) -> CompletionResult:
        self.complete_requests.append(request)
        if not self.completions:
            raise RuntimeError("no scripted completion")
        return self.completions.pop(0)


def answer(text: str, *, usage: TokenUsage | None = None, finish: FinishReason = FinishReason.STOP) -> list[StreamEvent]:
    return [StreamEvent.text_delta(text), StreamEvent.step_finish(finish, usage or TokenUsage(10, 5))]


def tool_step(*calls: tuple[str, str, str], usage: TokenUsage | None = None) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    for call_id, name, raw in calls:
        events.append(StreamEvent.tool_input_start(name))
        events.append(StreamEvent.call(RawToolCall(tool_call_id=call_id, tool_name=name, input=raw)))
    events.append(StreamEvent.step_finish(FinishReason.TOOL_CALLS, usage or TokenUsage(10, 5)))
    return events


@pytest.fixture()
def host(tmp_path: Path) -> FakeHost:
    return FakeHost(project_dir=tmp_path)
