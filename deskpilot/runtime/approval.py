from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from .constants import POWER_TOOL_BASH, POWER_TOOL_GROUP_NAME, tool_id
from .host import ApprovalAnswer, TaskHost
from .models.agent_profile import AgentProfile, ToolApprovalState
from .tools.base import AgentTool

logger = logging.getLogger(__name__)

DENIED_RESULT = "Tool execution denied by user."
_BASH_TOOL_ID = tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_BASH)


@dataclass(frozen=True, slots=True)
class ApprovalOutcome:
    approved: bool
    user_input: str | None = None


def denied_result_text(outcome: ApprovalOutcome) -> str:
    if outcome.user_input:
        return f"{DENIED_RESULT} User input: {outcome.user_input}"
    return DENIED_RESULT


class ApprovalGate:
    """
    Per-run approval decisions.

    The profile's approval state is consulted first; "ask" (or no entry) prompts the host.
    "Always for this tool" and "approve everything" answers are remembered for this gate only.
    """

    def __init__(self, *, host: TaskHost, profile: AgentProfile) -> None:
        self._host = host
        self._profile = profile
        self._always_for_run: set[str] = set()
        self._approve_all = False

    async def check(self, tool: AgentTool, args: dict[str, Any] | None) -> ApprovalOutcome:
        if tool.internal:
            return ApprovalOutcome(approved=True)

        state = self._profile.approval_state(tool.tool_id)
        if state is ToolApprovalState.ALWAYS:
            return ApprovalOutcome(approved=True)
        if state is ToolApprovalState.NEVER:
            logger.warning("Tool %s is disabled by the profile", tool.tool_id)
            return ApprovalOutcome(approved=False)
        if self._approve_all or tool.tool_id in self._always_for_run:
            return ApprovalOutcome(approved=True)
        if self._bash_command_allowed(tool, args):
            logger.debug("Bash command matches the allowed pattern, skipping approval")
            return ApprovalOutcome(approved=True)

        subject = json.dumps(args, ensure_ascii=False) if args else None
        reply = await self._host.request_approval(tool.tool_id, tool.approval_question, subject)
        if reply.answer is ApprovalAnswer.ALWAYS:
            self._always_for_run.add(tool.tool_id)
        elif reply.answer is ApprovalAnswer.RUN:
            self._approve_all = True

        if not reply.approved:
            logger.warning("Tool execution denied by user: %s", tool.tool_id)
            return ApprovalOutcome(approved=False, user_input=reply.user_input)
        logger.debug("Tool execution approved: %s", tool.tool_id)
        return ApprovalOutcome(approved=True, user_input=reply.user_input)

    def _bash_command_allowed(self, tool: AgentTool, args: dict[str, Any] | None) -> bool:
        if tool.tool_id != _BASH_TOOL_ID or not args:
            return False
        pattern = self._profile.bash_settings(tool.tool_id).allowed_pattern
        command = args.get("command")
        if not pattern or not isinstance(command, str):
            return False
        try:
            return re.search(pattern, command) is not None
        except re.error as e:
            logger.warning("Invalid allowed pattern for bash tool: %s", e)
            return False
