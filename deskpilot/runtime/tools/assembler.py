from __future__ import annotations

import logging
from typing import Any

from ..constants import (
    AIDER_TOOL_GROUP_NAME,
    HELPERS_TOOL_GROUP_NAME,
    POWER_TOOL_GROUP_NAME,
    SUBAGENTS_TOOL_GROUP_NAME,
    TODO_TOOL_GROUP_NAME,
    tool_id,
)
from ..mcp.connector import McpConnectorLike
from ..mcp.manager import McpManager
from ..models.agent_profile import AgentProfile
from ..models.mcp_spec import McpTool
from .aider import aider_tools
from .base import AgentTool, BuiltinTool, ToolContext, ToolSet, builtin_agent_tool
from .helpers import helper_tools
from .power import power_tools
from .schema import PydanticSchemaConverter, SchemaConverter
from .schema_compat import SchemaAdapter, declared_input_schema, schema_adapter_for
from .subagents import SubagentRunner, subagent_tools
from .todo import TodoStore, todo_tools

logger = logging.getLogger(__name__)


class ToolAssembler:
    """Builds the per-run tool set: MCP tools of enabled servers plus the enabled built-in families."""

    def __init__(
        self,
        *,
        mcp_manager: McpManager,
        converter: SchemaConverter | None = None,
        schema_adapters: dict[str, SchemaAdapter] | None = None,
    ) -> None:
        self._mcp_manager = mcp_manager
        self._converter = converter or PydanticSchemaConverter()
        self._schema_adapters = schema_adapters

    async def build(
        self,
        *,
        profile: AgentProfile,
        provider_name: str,
        connectors: list[McpConnectorLike] | None = None,
        todo_store: TodoStore | None = None,
        subagent_profiles: list[AgentProfile] | None = None,
        subagent_runner: SubagentRunner | None = None,
    ) -> ToolSet:
        adapter = schema_adapter_for(provider_name, self._schema_adapters)
        if connectors is None:
            connectors = await self._mcp_manager.get_connectors()

        tools: ToolSet = {}
        for connector in connectors:
            if connector.server_name not in profile.enabled_servers:
                continue
            for mcp_tool in connector.tools:
                raw_id = tool_id(connector.server_name, mcp_tool.name)
                if profile.is_tool_disabled(raw_id):
                    logger.debug("Skipping tool due to 'never' approval state: %s", raw_id)
                    continue
                tool = self._mcp_agent_tool(connector, mcp_tool, adapter=adapter)
                tools[tool.key] = tool

        if profile.use_aider_tools:
            self._add_builtins(tools, AIDER_TOOL_GROUP_NAME, aider_tools(), profile=profile, adapter=adapter)
        if profile.use_power_tools:
            self._add_builtins(tools, POWER_TOOL_GROUP_NAME, power_tools(), profile=profile, adapter=adapter)
        if profile.use_subagents and not profile.is_subagent and subagent_runner is not None:
            self._add_builtins(
                tools,
                SUBAGENTS_TOOL_GROUP_NAME,
                subagent_tools(subagent_profiles or [], subagent_runner),
                profile=profile,
                adapter=adapter,
            )
        if profile.use_todo_tools:
            self._add_builtins(tools, TODO_TOOL_GROUP_NAME, todo_tools(todo_store or TodoStore()), profile=profile, adapter=adapter)
        self._add_builtins(tools, HELPERS_TOOL_GROUP_NAME, helper_tools(), profile=profile, adapter=adapter, internal=True)

        logger.info("Assembled %d tools for profile %s", len(tools), profile.id)
        return tools

    def _mcp_agent_tool(self, connector: McpConnectorLike, mcp_tool: McpTool, *, adapter: SchemaAdapter) -> AgentTool:
        server_name = connector.server_name
        raw_id = tool_id(server_name, mcp_tool.name)

        async def _call(args: dict[str, Any], ctx: ToolContext) -> Any:
            del ctx
            return await connector.call_tool(mcp_tool.name, args)

        return AgentTool(
            tool_id=raw_id,
            server_name=server_name,
            tool_name=mcp_tool.name,
            description=mcp_tool.description or "",
            input_schema=declared_input_schema(mcp_tool.input_schema, adapter=adapter),
            args_model=self._converter.to_args_model(raw_id, mcp_tool.input_schema),
            body=_call,
            approval_question=f"Approve tool {mcp_tool.name} from {server_name} MCP server?",
        )

    def _add_builtins(
        self,
        tools: ToolSet,
        group: str,
        builtins: list[BuiltinTool],
        *,
        profile: AgentProfile,
        adapter: SchemaAdapter,
        internal: bool = False,
    ) -> None:
        for builtin in builtins:
            raw_id = tool_id(group, builtin.name)
            if not internal and profile.is_tool_disabled(raw_id):
                logger.debug("Skipping tool due to 'never' approval state: %s", raw_id)
                continue
            tool = builtin_agent_tool(
                group,
                builtin,
                args_model=self._converter.to_args_model(raw_id, builtin.input_schema),
                input_schema=declared_input_schema(builtin.input_schema, adapter=adapter),
                internal=internal,
            )
            tools[tool.key] = tool
