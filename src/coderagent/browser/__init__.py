from .actions import ActionResult, ControlPath
from .manager import BrowserManager, BrowserSettings, ConnectionState
from .mcp_client import McpClient, McpClientManager, McpServerConfig, McpServerStatus
from .tools import BrowserTools

__all__ = [
    "ActionResult",
    "BrowserManager",
    "BrowserSettings",
    "BrowserTools",
    "ConnectionState",
    "ControlPath",
    "McpClient",
    "McpClientManager",
    "McpServerConfig",
    "McpServerStatus",
]
