"""
MCP module - Transport client, server registry and tool bridge.

Exports the JSON-RPC client, the server registry and the bridge that
exposes remote MCP tools to the model.
"""

from .bridge import ToolBridge
from .client import (
    MCPClient,
    MCPConnectionError,
    MCPError,
    MCPProtocolError,
)
from .models import (
    RegistryValidationError,
    ServerConfig,
    SessionState,
    SessionStatus,
    ToolCallRequest,
    ToolCallResult,
    ToolDefinition,
)
from .registry import ServerRegistry

__all__ = [
    # Client
    "MCPClient",
    "MCPError",
    "MCPConnectionError",
    "MCPProtocolError",
    # Models
    "RegistryValidationError",
    "ServerConfig",
    "SessionState",
    "SessionStatus",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDefinition",
    # Registry / bridge
    "ServerRegistry",
    "ToolBridge",
]
