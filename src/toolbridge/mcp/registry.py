"""
Registry of configured MCP servers and their cached tool catalogs.

Shared by every concurrent chat request. Writers take a lock and publish a
new dict (copy-on-write); readers only dereference the current dict, so
they always see either the previous or the next complete snapshot, never a
half-updated catalog.
"""

import threading
from datetime import datetime
from typing import Any

import structlog

from ..config.schema import MCPConfig
from .client import MCPClient
from .models import (
    RegistryValidationError,
    ServerConfig,
    ToolCallRequest,
    ToolCallResult,
    ToolDefinition,
    new_server_id,
)

logger = structlog.get_logger()


class ServerRegistry:
    """Lifecycle and lookup for tool servers.

    The registry exclusively owns the ServerConfig objects it holds. The
    only outside write is the MCPClient storing the negotiated session
    during a handshake the registry initiated.
    """

    def __init__(self, client: MCPClient) -> None:
        self.client = client
        self.log = logger.bind(component="server_registry")
        self._lock = threading.Lock()
        self._servers: dict[str, ServerConfig] = {}
        self._catalogs: dict[str, tuple[ToolDefinition, ...]] = {}

    # ── CRUD ──────────────────────────────────────────────────────────────

    def add(self, config: ServerConfig) -> ServerConfig:
        """Register a server, handshake with it and load its tools.

        A failed handshake is logged but does not reject the server: it stays
        registered without tools until a later refresh or test_connection.

        Raises:
            RegistryValidationError: If the URL is empty
        """
        if not config.url or not config.url.strip():
            raise RegistryValidationError("Server URL is required")

        if not config.id:
            config.id = new_server_id()
        if not config.name:
            config.name = config.url
        config.created_at = datetime.now()
        config.enabled = True

        with self._lock:
            servers = dict(self._servers)
            servers[config.id] = config
            self._servers = servers

        self.log.info("registry.server.added", server_id=config.id, name=config.name, url=config.url)

        if self.client.handshake(config):
            self.refresh_tools(config.id)
        else:
            self.log.warning("registry.server.handshake_failed", server_id=config.id, name=config.name)

        return config

    def remove(self, server_id: str) -> None:
        """Unregister a server and drop its catalog. Unknown ids are a no-op."""
        with self._lock:
            if server_id not in self._servers:
                self.log.info("registry.server.remove_unknown", server_id=server_id)
                return
            servers = dict(self._servers)
            removed = servers.pop(server_id)
            catalogs = dict(self._catalogs)
            catalogs.pop(server_id, None)
            self._servers = servers
            self._catalogs = catalogs

        self.log.info("registry.server.removed", server_id=server_id, name=removed.name)

    def get(self, server_id: str) -> ServerConfig | None:
        return self._servers.get(server_id)

    def all_servers(self) -> list[ServerConfig]:
        return list(self._servers.values())

    # ── Catalogs ──────────────────────────────────────────────────────────

    def refresh_tools(self, server_id: str) -> list[ToolDefinition]:
        """Reload the catalog of one server and publish it atomically.

        Returns:
            The new catalog, or [] if the server is unknown or disabled
        """
        server = self._servers.get(server_id)
        if server is None or not server.enabled:
            self.log.debug("registry.refresh.skipped", server_id=server_id)
            return []

        tools = tuple(self.client.list_tools(server))

        with self._lock:
            # The server may have been removed while its catalog was loading
            if server_id not in self._servers:
                self.log.info("registry.refresh.discarded", server_id=server_id)
                return []
            catalogs = dict(self._catalogs)
            catalogs[server_id] = tools
            self._catalogs = catalogs

        self.log.info("registry.refresh.done", server=server.name, tools=len(tools))
        return list(tools)

    def refresh_all(self) -> int:
        """Refresh every enabled server. Returns the total number of tools."""
        return sum(len(self.refresh_tools(server.id)) for server in self.all_servers())

    def all_tools(self) -> list[ToolDefinition]:
        """Flatten every cached catalog into one list."""
        catalogs = self._catalogs
        return [tool for tools in catalogs.values() for tool in tools]

    def tools_for(self, server_id: str) -> list[ToolDefinition]:
        return list(self._catalogs.get(server_id, ()))

    # ── Operations ────────────────────────────────────────────────────────

    def test_connection(self, server_id: str) -> bool:
        """Re-handshake with a server. A success starts a new session."""
        server = self._servers.get(server_id)
        if server is None:
            return False
        return self.client.handshake(server)

    def execute(self, request: ToolCallRequest) -> ToolCallResult:
        """Invoke a tool directly on a given server.

        Raises:
            RegistryValidationError: Missing server id / tool name, unknown
                server, or disabled server. Nothing is sent in that case.
        """
        if not request.server_id:
            raise RegistryValidationError("Server ID is required")
        if not request.tool_name:
            raise RegistryValidationError("Tool name is required")

        server = self._servers.get(request.server_id)
        if server is None:
            raise RegistryValidationError(f"Server not found: {request.server_id}")
        if not server.enabled:
            raise RegistryValidationError(f"Server is disabled: {server.name}")

        return self.client.call_tool(server, request.tool_name, request.arguments)

    def load_from_config(self, config: MCPConfig) -> list[ServerConfig]:
        """Register every enabled server entry of the configuration."""
        added = []
        for entry in config.servers:
            if not entry.enabled:
                self.log.info("registry.config.server_disabled", name=entry.name)
                continue
            added.append(self.add(ServerConfig.from_entry(entry)))
        return added

    def stats(self) -> dict[str, Any]:
        return {
            "servers": len(self._servers),
            "tools": sum(len(tools) for tools in self._catalogs.values()),
        }

    def __repr__(self) -> str:
        stats = self.stats()
        return f"<ServerRegistry({stats['servers']} servers, {stats['tools']} tools)>"

    def __len__(self) -> int:
        return len(self._servers)
