"""
Configuration module for toolbridge.

Exports the main components for convenient imports.
"""

from .loader import load_config
from .schema import (
    AppConfig,
    LLMConfig,
    LoggingConfig,
    MCPConfig,
    MCPServerEntry,
    OrchestrationConfig,
    ToolServerConfig,
)

__all__ = [
    "load_config",
    "AppConfig",
    "LLMConfig",
    "LoggingConfig",
    "MCPConfig",
    "MCPServerEntry",
    "OrchestrationConfig",
    "ToolServerConfig",
]
