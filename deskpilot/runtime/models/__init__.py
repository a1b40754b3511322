from .agent_profile import (
    DEFAULT_AGENT_PROFILE,
    AgentProfile,
    BashToolSettings,
    ContextMemoryMode,
    SubagentConfig,
    ToolApprovalState,
)
from .mcp_spec import McpServerConfig, McpTool
from .messages import (
    ContextFile,
    ContextMessage,
    ImagePart,
    MessageRole,
    ResponseMessage,
    ToolCall,
    ToolCallRecord,
    UsageReport,
)

__all__ = [
    "AgentProfile",
    "BashToolSettings",
    "ContextFile",
    "ContextMemoryMode",
    "ContextMessage",
    "DEFAULT_AGENT_PROFILE",
    "ImagePart",
    "McpServerConfig",
    "McpTool",
    "MessageRole",
    "ResponseMessage",
    "SubagentConfig",
    "ToolApprovalState",
    "ToolCall",
    "ToolCallRecord",
    "UsageReport",
]
