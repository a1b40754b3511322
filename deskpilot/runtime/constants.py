from __future__ import annotations

TOOL_GROUP_NAME_SEPARATOR = "---"

MAX_RETRIES = 3
MCP_CLIENT_TIMEOUT_S = 600.0
MCP_TOOLS_CACHE_VERSION = 1
MCP_TOOLS_CACHE_FILE = "mcp-tools-cache.json"

HELPERS_TOOL_GROUP_NAME = "helpers"
HELPERS_TOOL_NO_SUCH_TOOL = "no_such_tool"
HELPERS_TOOL_INVALID_TOOL_ARGUMENTS = "invalid_tool_arguments"

AIDER_TOOL_GROUP_NAME = "aider"
AIDER_TOOL_GET_CONTEXT_FILES = "get_context_files"
AIDER_TOOL_ADD_CONTEXT_FILE = "add_context_file"
AIDER_TOOL_DROP_CONTEXT_FILE = "drop_context_file"
AIDER_TOOL_RUN_PROMPT = "run_prompt"

POWER_TOOL_GROUP_NAME = "power"
POWER_TOOL_FILE_READ = "file_read"
POWER_TOOL_FILE_WRITE = "file_write"
POWER_TOOL_FILE_EDIT = "file_edit"
POWER_TOOL_GLOB = "glob"
POWER_TOOL_GREP = "grep"
POWER_TOOL_BASH = "bash"
POWER_TOOL_SEMANTIC_SEARCH = "semantic_search"

TODO_TOOL_GROUP_NAME = "todo"
TODO_TOOL_SET_ITEMS = "set_items"
TODO_TOOL_GET_ITEMS = "get_items"
TODO_TOOL_UPDATE_ITEM_COMPLETION = "update_item_completion"
TODO_TOOL_CLEAR_ITEMS = "clear_items"

SUBAGENTS_TOOL_GROUP_NAME = "subagents"
SUBAGENTS_TOOL_RUN_TASK = "run_task"

RULES_DIR = ".deskpilot/rules"


def tool_id(group: str, name: str) -> str:
    return f"{group}{TOOL_GROUP_NAME_SEPARATOR}{name}"
