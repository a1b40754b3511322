from __future__ import annotations

import importlib.resources
import logging
import platform
from datetime import datetime
from pathlib import Path

from ..constants import (
    AIDER_TOOL_GROUP_NAME,
    POWER_TOOL_GROUP_NAME,
    RULES_DIR,
    SUBAGENTS_TOOL_GROUP_NAME,
    SUBAGENTS_TOOL_RUN_TASK,
    TODO_TOOL_GROUP_NAME,
    TODO_TOOL_SET_ITEMS,
    TODO_TOOL_UPDATE_ITEM_COMPLETION,
    tool_id,
)
from ..models.agent_profile import AgentProfile
from .template import render_prompt_template

logger = logging.getLogger(__name__)


def load_default_system_prompt() -> str:
    return (
        importlib.resources.files("deskpilot.runtime.prompts")
        .joinpath("system_main.md")
        .read_text(encoding="utf-8", errors="replace")
    )


def _tools_section(profile: AgentProfile) -> str:
    lines: list[str] = []
    if profile.use_aider_tools:
        lines.append(
            f"- `{AIDER_TOOL_GROUP_NAME}` tools manage the files in the coding context and delegate code edits "
            "to the coding assistant. Add the files to edit before running a prompt."
        )
    if profile.use_power_tools:
        lines.append(
            f"- `{POWER_TOOL_GROUP_NAME}` tools read, search, write and edit files in the project and run shell "
            "commands. Paths are relative to the project directory."
        )
    if profile.use_todo_tools:
        lines.append(
            f"- For multi-step work, record a plan with `{tool_id(TODO_TOOL_GROUP_NAME, TODO_TOOL_SET_ITEMS)}` and "
            f"tick items off with `{tool_id(TODO_TOOL_GROUP_NAME, TODO_TOOL_UPDATE_ITEM_COMPLETION)}`."
        )
    if profile.use_subagents and not profile.is_subagent:
        lines.append(
            f"- Delegate self-contained subtasks to a specialised sub-agent with "
            f"`{tool_id(SUBAGENTS_TOOL_GROUP_NAME, SUBAGENTS_TOOL_RUN_TASK)}`."
        )
    if not lines:
        return ""
    return "## Tools\n\n" + "\n".join(lines)


def read_rules_files(project_dir: Path | None) -> str:
    """Concatenate the project's rule files (`.deskpilot/rules/*.md`)."""
    if project_dir is None:
        return ""
    rules_dir = project_dir / RULES_DIR
    if not rules_dir.is_dir():
        return ""
    parts: list[str] = []
    for path in sorted(rules_dir.glob("*.md")):
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read rule file %s: %s", path, e)
            continue
        parts.append(f'<rule-file name="{path.name}">\n{content.strip()}\n</rule-file>')
    return "\n\n".join(parts)


def build_system_prompt(
    profile: AgentProfile,
    *,
    project_dir: Path | None,
    task_dir: Path | None = None,
    now: datetime | None = None,
) -> str:
    base = profile.subagent.system_prompt if profile.is_subagent and profile.subagent.system_prompt else load_default_system_prompt()
    text = render_prompt_template(
        base,
        now=now,
        vars={
            "PROJECT_DIR": str(project_dir) if project_dir is not None else "(none)",
            "TASK_DIR": str(task_dir or project_dir or "(none)"),
            "OS_NAME": f"{platform.system()} {platform.release()}".strip(),
            "TOOLS_SECTION": _tools_section(profile),
        },
    ).rstrip()

    rules = read_rules_files(project_dir)
    if rules:
        text += f"\n\n## Project rules\n\n{rules}"
    if profile.custom_instructions.strip():
        text += f"\n\n## Custom instructions\n\n{profile.custom_instructions.strip()}"
    return text + "\n"
