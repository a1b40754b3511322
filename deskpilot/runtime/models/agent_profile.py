from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..constants import (
    AIDER_TOOL_ADD_CONTEXT_FILE,
    AIDER_TOOL_DROP_CONTEXT_FILE,
    AIDER_TOOL_GET_CONTEXT_FILES,
    AIDER_TOOL_GROUP_NAME,
    AIDER_TOOL_RUN_PROMPT,
    POWER_TOOL_BASH,
    POWER_TOOL_FILE_EDIT,
    POWER_TOOL_FILE_READ,
    POWER_TOOL_FILE_WRITE,
    POWER_TOOL_GLOB,
    POWER_TOOL_GREP,
    POWER_TOOL_GROUP_NAME,
    POWER_TOOL_SEMANTIC_SEARCH,
    tool_id,
)
from .spec_common import CamelModel, _clean_non_empty_str, _dedupe_str_list


class ToolApprovalState(StrEnum):
    ALWAYS = "always"
    NEVER = "never"
    ASK = "ask"


class ContextMemoryMode(StrEnum):
    OFF = "off"
    FULL_CONTEXT = "full-context"
    LAST_MESSAGE = "last-message"


class SubagentConfig(CamelModel):
    enabled: bool = False
    system_prompt: str = ""
    description: str = ""
    context_memory: ContextMemoryMode = ContextMemoryMode.OFF


class BashToolSettings(CamelModel):
    allowed_pattern: str = ""
    denied_pattern: str = ""


class AgentProfile(CamelModel):
    """
    Immutable configuration for one agent run.

    `tool_approvals` is keyed by the raw `server---tool` id. A missing entry means "ask".
    `min_time_between_tool_calls` is in milliseconds. `provider_options` are passed to the model
    endpoint as extra request fields (e.g. `{"reasoning_effort": "low"}`).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    provider: str = ""
    model: str = ""
    max_iterations: int = Field(default=20, ge=1)
    max_tokens: int | None = Field(default=2000, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    min_time_between_tool_calls: int = Field(default=0, ge=0)
    provider_options: dict[str, Any] = Field(default_factory=dict)
    enabled_servers: list[str] = Field(default_factory=list)
    tool_approvals: dict[str, ToolApprovalState] = Field(default_factory=dict)
    tool_settings: dict[str, BashToolSettings] = Field(default_factory=dict)
    include_context_files: bool = True
    include_repo_map: bool = True
    use_power_tools: bool = False
    use_aider_tools: bool = True
    use_todo_tools: bool = False
    use_subagents: bool = False
    custom_instructions: str = ""
    subagent: SubagentConfig = Field(default_factory=SubagentConfig)
    is_subagent: bool = False

    @field_validator("id", "name")
    @classmethod
    def _validate_required_strs(cls, v: str, info) -> str:
        return _clean_non_empty_str(v, field_name=str(info.field_name))

    @field_validator("enabled_servers")
    @classmethod
    def _validate_enabled_servers(cls, v: list[str]) -> list[str]:
        return _dedupe_str_list(v)

    def approval_state(self, tool_id: str) -> ToolApprovalState | None:
        return self.tool_approvals.get(tool_id)

    def is_tool_disabled(self, tool_id: str) -> bool:
        return self.tool_approvals.get(tool_id) is ToolApprovalState.NEVER

    def bash_settings(self, tool_id: str) -> BashToolSettings:
        return self.tool_settings.get(tool_id) or BashToolSettings()


DEFAULT_AGENT_PROFILE = AgentProfile(
    id="default",
    name="Default",
    provider="anthropic",
    model="claude-3-haiku-20240307",
    max_iterations=20,
    max_tokens=2000,
    min_time_between_tool_calls=0,
    tool_approvals={
        tool_id(AIDER_TOOL_GROUP_NAME, AIDER_TOOL_GET_CONTEXT_FILES): ToolApprovalState.ALWAYS,
        tool_id(AIDER_TOOL_GROUP_NAME, AIDER_TOOL_ADD_CONTEXT_FILE): ToolApprovalState.ALWAYS,
        tool_id(AIDER_TOOL_GROUP_NAME, AIDER_TOOL_DROP_CONTEXT_FILE): ToolApprovalState.ALWAYS,
        tool_id(AIDER_TOOL_GROUP_NAME, AIDER_TOOL_RUN_PROMPT): ToolApprovalState.ASK,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FILE_EDIT): ToolApprovalState.ASK,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FILE_READ): ToolApprovalState.ALWAYS,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FILE_WRITE): ToolApprovalState.ASK,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_GLOB): ToolApprovalState.ALWAYS,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_GREP): ToolApprovalState.ALWAYS,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_SEMANTIC_SEARCH): ToolApprovalState.ALWAYS,
        tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_BASH): ToolApprovalState.ASK,
    },
    include_context_files=True,
    include_repo_map=True,
    use_power_tools=False,
    use_aider_tools=True,
)
