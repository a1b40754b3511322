from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from .models.messages import ContextFile, ContextMessage, ResponseMessage, UsageReport


class LogLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    LOADING = "loading"


class ApprovalAnswer(StrEnum):
    YES = "y"
    NO = "n"
    ALWAYS = "a"
    RUN = "r"


@dataclass(frozen=True, slots=True)
class ApprovalReply:
    answer: ApprovalAnswer
    user_input: str | None = None

    @property
    def approved(self) -> bool:
        return self.answer is not ApprovalAnswer.NO


class TaskHost(Protocol):
    """
    The task/session the agent runs inside: UI channel, approval prompt, context providers and
    the VCS-integration (aider) bridge. Implemented by the desktop shell or the CLI.
    """

    @property
    def project_dir(self) -> Path | None: ...

    @property
    def task_dir(self) -> Path | None: ...

    @property
    def agent_total_cost(self) -> float: ...

    def process_response_message(self, message: ResponseMessage) -> None: ...

    def add_tool_message(
        self,
        tool_call_id: str,
        server_name: str,
        tool_name: str,
        args: dict[str, Any] | None,
        result: str | None = None,
        usage_report: UsageReport | None = None,
    ) -> None: ...

    def add_log_message(self, level: LogLevel, text: str | None = None) -> None: ...

    async def request_approval(self, tool_id: str, question_text: str, question_subject: str | None) -> ApprovalReply: ...

    def get_context_files(self) -> list[ContextFile]: ...

    def get_context_messages(self) -> list[ContextMessage]: ...

    def get_repo_map(self) -> str | None: ...

    async def add_context_file(self, path: str, read_only: bool) -> bool: ...

    async def drop_context_file(self, path: str) -> bool: ...

    async def run_prompt(self, prompt: str) -> str: ...
