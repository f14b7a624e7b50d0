"""MCP Client - Tool provider connections and the tool catalog.

Each provider runs as a subprocess speaking MCP over stdio. Its tools are
collected into one catalog under namespaced public names.
"""

from mcp_client.catalog import ToolCatalog
from mcp_client.connection import (
    SCRIPT_INTERPRETERS,
    ProviderConnection,
    resolve_launch_command,
)

__all__ = [
    "SCRIPT_INTERPRETERS",
    "ProviderConnection",
    "ToolCatalog",
    "resolve_launch_command",
]
