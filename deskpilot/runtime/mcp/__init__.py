from .cache import McpToolsCache
from .connector import McpConnector, McpConnectorLike
from .errors import McpConfigError, McpConnectionError, McpError
from .manager import McpManager
from .scope import calculate_server_scope, interpolate_server_config, pool_key

__all__ = [
    "McpConfigError",
    "McpConnectionError",
    "McpConnector",
    "McpConnectorLike",
    "McpError",
    "McpManager",
    "McpToolsCache",
    "calculate_server_scope",
    "interpolate_server_config",
    "pool_key",
]
