from .assembler import ToolAssembler
from .base import AgentTool, BuiltinTool, ToolContext, ToolSet, normalize_tool_id, split_tool_id
from .schema import EmptyArgs, PydanticSchemaConverter, SchemaConverter
from .schema_compat import GeminiSchemaAdapter, IdentitySchemaAdapter, SchemaAdapter, schema_adapter_for
from .todo import TodoStore

__all__ = [
    "AgentTool",
    "BuiltinTool",
    "EmptyArgs",
    "GeminiSchemaAdapter",
    "IdentitySchemaAdapter",
    "PydanticSchemaConverter",
    "SchemaAdapter",
    "SchemaConverter",
    "TodoStore",
    "ToolAssembler",
    "ToolContext",
    "ToolSet",
    "normalize_tool_id",
    "schema_adapter_for",
    "split_tool_id",
]
