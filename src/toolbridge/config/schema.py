"""
Pydantic models for toolbridge configuration.

Defines all configuration schemas using Pydantic v2 for validation,
defaults, and serialization.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class LLMConfig(BaseModel):
    """Model provider configuration."""

    provider: str = "litellm"
    model: str = "deepseek/deepseek-chat"
    api_base: str | None = None
    api_key_env: str = "DEEPSEEK_API_KEY"
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: int = 60
    retries: int = 2

    model_config = {"extra": "forbid"}


class OrchestrationConfig(BaseModel):
    """Tool-calling loop configuration."""

    max_iterations: int = Field(
        default=5,
        ge=1,
        description="Maximum number of model turns that may request tools",
    )
    parallel_tools: bool = Field(
        default=False,
        description=(
            "If True, tool calls of a single turn run on a thread pool. "
            "Result order always matches request order."
        ),
    )

    model_config = {"extra": "forbid"}


class LoggingConfig(BaseModel):
    """Logging system configuration."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class MCPServerEntry(BaseModel):
    """A tool server declared in the configuration file."""

    id: str | None = None
    name: str
    url: str = Field(min_length=1, description="JSON-RPC endpoint of the server")
    headers: dict[str, str] = Field(default_factory=dict)
    token: str | None = None
    token_env: str | None = None
    enabled: bool = True

    model_config = {"extra": "forbid"}

    @field_validator("url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Server URL is required")
        return value


class MCPConfig(BaseModel):
    """Transport and server list configuration."""

    timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds applied to every outbound MCP call",
    )
    protocol_version: str = "2024-11-05"
    client_name: str = "toolbridge"
    client_version: str = "1.0.0"
    servers: list[MCPServerEntry] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class ToolServerConfig(BaseModel):
    """Reference tool endpoint configuration."""

    name: str = "weather-mcp-server"
    version: str = "1.0.0"
    host: str = "127.0.0.1"
    port: int = 8090
    path: str = "/mcp"
    response_format: Literal["json", "sse"] = "json"
    weather_api_url: str = "https://api.open-meteo.com/v1/forecast"
    geocoding_api_url: str = "https://geocoding-api.open-meteo.com/v1/search"
    timeout: float = 10.0
    max_sessions: int = Field(
        default=1024,
        ge=1,
        description="Issued session ids remembered before the oldest is dropped",
    )

    model_config = {"extra": "forbid"}

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        if not value.startswith("/"):
            return "/" + value
        return value


class AppConfig(BaseModel):
    """Complete application configuration.

    This is the root of the configuration tree. It combines all sections
    and is the entry point for validation.
    """

    llm: LLMConfig = Field(default_factory=LLMConfig)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    server: ToolServerConfig = Field(default_factory=ToolServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}
