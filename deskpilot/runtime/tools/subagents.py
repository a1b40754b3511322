from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..constants import SUBAGENTS_TOOL_RUN_TASK
from ..models.agent_profile import AgentProfile
from .base import BuiltinTool, ToolContext

SubagentRunner = Callable[[AgentProfile, str, ToolContext], Awaitable[str]]


def _describe(profiles: list[AgentProfile]) -> str:
    lines = [
        "Delegates a self-contained task to a specialised sub-agent and returns its final answer.",
        "The sub-agent does not see this conversation unless its profile says so; include every detail it needs in the prompt.",
        "Available sub-agents:",
    ]
    for profile in profiles:
        summary = profile.subagent.description.strip() or profile.name
        lines.append(f"- {profile.id}: {summary}")
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class RunSubagentTaskTool:
    profiles: list[AgentProfile]
    runner: SubagentRunner
    name: str = SUBAGENTS_TOOL_RUN_TASK
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        subagent_id = args.get("subagentId")
        prompt = args.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("Missing or invalid 'prompt' (expected non-empty string).")
        profile = next((p for p in self.profiles if p.id == subagent_id), None)
        if profile is None:
            known = ", ".join(p.id for p in self.profiles) or "(none)"
            raise ValueError(f"Unknown sub-agent {subagent_id!r}. Available: {known}")
        return await self.runner(profile, prompt.strip(), ctx)


def subagent_profiles(all_profiles: list[AgentProfile], *, current: AgentProfile) -> list[AgentProfile]:
    return [p for p in all_profiles if p.subagent.enabled and p.id != current.id]


def subagent_tools(profiles: list[AgentProfile], runner: SubagentRunner) -> list[BuiltinTool]:
    if not profiles:
        return []
    schema = {
        "type": "object",
        "properties": {
            "subagentId": {"type": "string", "enum": [p.id for p in profiles]},
            "prompt": {"type": "string"},
        },
        "required": ["subagentId", "prompt"],
    }
    return [RunSubagentTaskTool(profiles=list(profiles), runner=runner, description=_describe(profiles), input_schema=schema)]
