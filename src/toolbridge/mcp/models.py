"""
Data model shared by the transport, registry and bridge.

ServerConfig is owned by the ServerRegistry. Its session is an immutable
value (SessionState) that is replaced on every successful handshake, so a
re-handshake is an explicit transition instead of an in-place field write.
"""

import os
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..config.schema import MCPServerEntry


class RegistryValidationError(ValueError):
    """Raised synchronously for invalid input, before any network call."""

    pass


class SessionStatus(str, Enum):
    """Handshake status of a server."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class SessionState(BaseModel):
    """Immutable session state of a server.

    UNAUTHENTICATED carries no id. AUTHENTICATED carries the id the server
    returned in the Mcp-Session-Id header of the initialize response.
    """

    status: SessionStatus = SessionStatus.UNAUTHENTICATED
    session_id: str | None = None
    established_at: datetime | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def unauthenticated(cls) -> "SessionState":
        return cls()

    @classmethod
    def authenticated(cls, session_id: str) -> "SessionState":
        return cls(
            status=SessionStatus.AUTHENTICATED,
            session_id=session_id,
            established_at=datetime.now(),
        )


class ServerConfig(BaseModel):
    """A registered tool server.

    Attributes:
        id: Registry identity, generated on add() when missing
        name: Human-readable name
        url: JSON-RPC endpoint (HTTP POST)
        headers: Static headers sent on every call (e.g. Authorization)
        enabled: Disabled servers are kept but never refreshed or called
        session: Current handshake state
        created_at: Registration time
    """

    id: str | None = None
    name: str = ""
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True
    session: SessionState = Field(default_factory=SessionState.unauthenticated)
    created_at: datetime | None = None

    model_config = ConfigDict(extra="forbid")

    @property
    def session_id(self) -> str | None:
        """Session id of the last successful handshake, if any."""
        return self.session.session_id

    def establish_session(self, session_id: str) -> None:
        """Transition to AUTHENTICATED with a new session id."""
        self.session = SessionState.authenticated(session_id)

    def reset_session(self) -> None:
        """Transition back to UNAUTHENTICATED."""
        self.session = SessionState.unauthenticated()

    @classmethod
    def from_entry(cls, entry: MCPServerEntry) -> "ServerConfig":
        """Build a ServerConfig from a configuration file entry.

        Token precedence: an explicit Authorization header, then `token`,
        then the environment variable named by `token_env`.
        """
        headers = dict(entry.headers)
        if "Authorization" not in headers:
            token = entry.token
            if not token and entry.token_env:
                token = os.environ.get(entry.token_env)
            if token:
                headers["Authorization"] = f"Bearer {token}"

        return cls(
            id=entry.id,
            name=entry.name,
            url=entry.url,
            headers=headers,
            enabled=entry.enabled,
        )

    def __repr__(self) -> str:
        return (
            f"<ServerConfig(id='{self.id}', name='{self.name}', "
            f"url='{self.url}', session={self.session.status.value})>"
        )


class ToolDefinition(BaseModel):
    """A tool advertised by a server in its tools/list catalog."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)
    server_id: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_function_schema(self) -> dict[str, Any]:
        """Model-facing function schema (OpenAI function calling format)."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolCallRequest(BaseModel):
    """Direct invocation of a tool on a given server."""

    server_id: str = ""
    tool_name: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class ToolCallResult(BaseModel):
    """Outcome of one tool invocation.

    Attributes:
        success: False for transport, protocol and validation failures
        content: MCP result payload when success=True
        error: Failure message when success=False
        execution_time_ms: Elapsed wall time, always populated
        tool_call_id: Correlation id of the model's tool call, if any
        tool_name: Name of the invoked tool
        server_id: Server that handled the call, if resolved
        arguments: Parsed arguments sent to the server
    """

    success: bool
    content: Any = None
    error: str | None = None
    execution_time_ms: int = 0
    tool_call_id: str | None = None
    tool_name: str | None = None
    server_id: str | None = None
    arguments: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


def new_server_id() -> str:
    return str(uuid.uuid4())
