"""
HTTP client for MCP (Model Context Protocol) servers.

Implements the requester side of JSON-RPC 2.0 over HTTP with support for:
- Initialization handshake (initialize + notifications/initialized)
- Session ID tracking (Mcp-Session-Id), written back to the ServerConfig
- SSE (Server-Sent Events) and plain JSON responses
- Static per-server headers (e.g. Bearer tokens)

One client serves every registered server: the per-server state lives in
the ServerConfig passed to each call. The public methods never raise;
transport and protocol failures become False / [] / a failed ToolCallResult.
"""

import time
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from ..config.schema import MCPConfig
from .models import ServerConfig, ToolCallResult, ToolDefinition
from .protocol import (
    ACCEPT_HEADER,
    JSON_MEDIA_TYPE,
    SESSION_HEADER,
    JsonRpcResponse,
    build_request,
    decode_body,
)

logger = structlog.get_logger()


class MCPError(Exception):
    """Base error for MCP operations."""

    pass


class MCPConnectionError(MCPError):
    """Network, timeout or non-2xx error talking to an MCP server."""

    pass


class MCPProtocolError(MCPError):
    """JSON-RPC error object, or a body that cannot be decoded."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class MCPClient:
    """HTTP client for MCP servers.

    Connection flow for a server:
    1. POST initialize -> session ID from response headers
    2. POST tools/list (with session ID) -> tool catalog
    3. POST tools/call (with session ID) -> tool results

    Every request carries Content-Type: application/json, an Accept header
    listing JSON and event-stream, the server's static headers and, once
    known, the session header.
    """

    def __init__(self, config: MCPConfig | None = None, http: httpx.Client | None = None):
        """Initialize the client.

        Args:
            config: Transport configuration (timeout, protocol version, client info)
            http: Preconfigured httpx client. Mostly useful for tests.
        """
        self.config = config or MCPConfig()
        self.log = logger.bind(component="mcp_client")
        self._owns_http = http is None
        self.http = http or httpx.Client(
            timeout=self.config.timeout,
            follow_redirects=True,
        )

    # ── Public API ────────────────────────────────────────────────────────

    def handshake(self, server: ServerConfig) -> bool:
        """Perform the initialize handshake with a server.

        On success the session id found in the Mcp-Session-Id response
        header is stored on the server (a new AUTHENTICATED session). A
        response without that header still counts as a successful
        handshake: stateless servers never issue one.

        Returns:
            True if the server accepted the initialize request
        """
        self.log.info("mcp.initialize.start", server=server.name, url=server.url)

        params = {
            "protocolVersion": self.config.protocol_version,
            "capabilities": {},
            "clientInfo": {
                "name": self.config.client_name,
                "version": self.config.client_version,
            },
        }

        try:
            # The initialize request never carries a previous session id
            response, data = self._post(server, "initialize", params, with_session=False)
            result = self._unwrap(data)
        except MCPError as e:
            self.log.error(
                "mcp.initialize.failed",
                server=server.name,
                error=str(e),
                code=getattr(e, "code", None),
            )
            return False

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            server.establish_session(session_id)
            self.log.info(
                "mcp.initialize.session",
                server=server.name,
                session_id=session_id[:12] + "...",
            )
        else:
            self.log.warning("mcp.initialize.no_session_id", server=server.name)

        result = result if isinstance(result, dict) else {}
        server_info = result.get("serverInfo")
        if not isinstance(server_info, dict):
            server_info = {}
        self.log.info(
            "mcp.initialize.success",
            server=server.name,
            server_name=server_info.get("name", "unknown"),
            server_version=server_info.get("version", "unknown"),
            protocol=result.get("protocolVersion", "unknown"),
        )

        self._notify_initialized(server)
        return True

    def list_tools(self, server: ServerConfig) -> list[ToolDefinition]:
        """List the tools advertised by a server.

        Returns:
            Tool definitions owned by server.id, or [] on any error
        """
        self.log.info("mcp.list_tools.start", server=server.name)

        try:
            _, data = self._post(server, "tools/list", {})
            result = self._unwrap(data)
        except MCPError as e:
            self.log.error(
                "mcp.list_tools.failed",
                server=server.name,
                error=str(e),
                code=getattr(e, "code", None),
            )
            return []

        if not isinstance(result, dict) or not isinstance(result.get("tools"), list):
            self.log.warning("mcp.list_tools.no_tools", server=server.name)
            return []

        tools = []
        for raw in result["tools"]:
            tool = self._to_tool(server, raw)
            if tool is None:
                self.log.warning("mcp.list_tools.invalid_entry", server=server.name, entry=raw)
                continue
            tools.append(tool)

        self.log.info("mcp.list_tools.success", server=server.name, count=len(tools))
        return tools

    def call_tool(
        self,
        server: ServerConfig,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        tool_call_id: str | None = None,
    ) -> ToolCallResult:
        """Execute a tool on a server.

        Never raises. The elapsed time is always populated.

        Args:
            server: Target server
            tool_name: Name of the tool on that server
            arguments: Tool arguments
            tool_call_id: Correlation id to carry into the result

        Returns:
            ToolCallResult with the MCP result as content, or the error message
        """
        arguments = arguments or {}
        self.log.info(
            "mcp.call_tool.start",
            server=server.name,
            tool=tool_name,
            args=self._sanitize_args(arguments),
        )
        start = time.monotonic()

        def _result(**kwargs: Any) -> ToolCallResult:
            return ToolCallResult(
                execution_time_ms=_elapsed_ms(start),
                tool_call_id=tool_call_id,
                tool_name=tool_name,
                server_id=server.id,
                arguments=arguments,
                **kwargs,
            )

        try:
            _, data = self._post(server, "tools/call", {"name": tool_name, "arguments": arguments})
            result = self._unwrap(data)
        except MCPError as e:
            self.log.error(
                "mcp.call_tool.failed",
                server=server.name,
                tool=tool_name,
                error=str(e),
                code=getattr(e, "code", None),
            )
            return _result(success=False, error=str(e))

        # Tool-level failure reported inside a well-formed result
        if isinstance(result, dict) and result.get("isError"):
            message = extract_text(result) or "Tool reported an error"
            self.log.warning("mcp.call_tool.tool_error", server=server.name, tool=tool_name)
            return _result(success=False, content=result, error=message)

        outcome = _result(success=True, content=result)
        self.log.info(
            "mcp.call_tool.success",
            server=server.name,
            tool=tool_name,
            elapsed_ms=outcome.execution_time_ms,
        )
        return outcome

    def ping(self, server: ServerConfig) -> bool:
        """Health check through the JSON-RPC ping method."""
        try:
            _, data = self._post(server, "ping", {})
            self._unwrap(data)
            return True
        except MCPError as e:
            self.log.warning("mcp.ping.failed", server=server.name, error=str(e))
            return False

    # ── Internals ─────────────────────────────────────────────────────────

    def _headers(self, server: ServerConfig, with_session: bool = True) -> dict[str, str]:
        headers = {
            "Content-Type": JSON_MEDIA_TYPE,
            "Accept": ACCEPT_HEADER,
        }
        headers.update(server.headers)
        if with_session and server.session_id:
            headers[SESSION_HEADER] = server.session_id
        return headers

    def _post(
        self,
        server: ServerConfig,
        method: str,
        params: dict[str, Any],
        with_session: bool = True,
    ) -> tuple[httpx.Response, dict[str, Any]]:
        """Send a JSON-RPC request and decode the response body.

        Raises:
            MCPConnectionError: Network error, timeout or non-2xx status
            MCPProtocolError: Body is neither JSON nor SSE-framed JSON
        """
        request = build_request(method, params)
        self.log.debug("mcp.request", server=server.name, method=method, id=request.id)

        try:
            response = self.http.post(
                server.url,
                json=request.to_dict(),
                headers=self._headers(server, with_session=with_session),
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise MCPConnectionError(
                f"Timeout calling {method} on MCP server '{server.name}': {e}"
            ) from e
        except httpx.HTTPError as e:
            raise MCPConnectionError(
                f"Error calling {method} on MCP server '{server.name}': {e}"
            ) from e

        content_type = response.headers.get("content-type", "")
        self.log.debug("mcp.response", server=server.name, method=method, content_type=content_type)

        try:
            data = decode_body(content_type, response.text)
        except ValueError as e:
            raise MCPProtocolError(
                f"Invalid response to {method} (Content-Type: {content_type}): {e}"
            ) from e

        return response, data

    def _unwrap(self, data: dict[str, Any]) -> Any:
        """Return the result of a decoded response or raise its error.

        Raises:
            MCPProtocolError: The error object of the response, or a
                response that is not a valid JSON-RPC envelope
        """
        try:
            response = JsonRpcResponse.model_validate(data)
        except ValidationError as e:
            raise MCPProtocolError(
                f"Malformed JSON-RPC response: {e.error_count()} invalid field(s)"
            ) from e
        if response.error is not None:
            raise MCPProtocolError(response.error.message, code=response.error.code)
        return response.result

    def _to_tool(self, server: ServerConfig, raw: Any) -> ToolDefinition | None:
        """One catalog entry as a ToolDefinition, or None if it is malformed."""
        if not isinstance(raw, dict) or not raw.get("name"):
            return None
        try:
            return ToolDefinition(
                name=raw["name"],
                description=raw.get("description") or "",
                input_schema=raw.get("inputSchema") or {},
                server_id=server.id or "",
            )
        except ValidationError:
            return None

    def _notify_initialized(self, server: ServerConfig) -> None:
        """Send notifications/initialized. Best effort, failures only logged."""
        try:
            self.http.post(
                server.url,
                json={"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}},
                headers=self._headers(server),
            )
        except httpx.HTTPError as e:
            self.log.debug("mcp.initialized_notification.failed", server=server.name, error=str(e))

    def _sanitize_args(self, args: dict[str, Any]) -> dict[str, Any]:
        """Truncate long string arguments for logging."""
        sanitized = {}
        for key, value in args.items():
            if isinstance(value, str) and len(value) > 100:
                sanitized[key] = value[:100] + f"... ({len(value)} chars)"
            else:
                sanitized[key] = value
        return sanitized

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            self.http.close()
        self.log.debug("mcp.client.closed")

    def __enter__(self) -> "MCPClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<MCPClient(timeout={self.config.timeout})>"


def extract_text(result: Any) -> str:
    """Flatten an MCP result into text.

    Joins the `text` of every content block; falls back to str() for
    anything that is not an MCP content list.
    """
    if result is None:
        return "null"
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        parts = []
        for block in result["content"]:
            if isinstance(block, dict) and block.get("text") is not None:
                parts.append(str(block["text"]))
        return "\n".join(parts)
    return str(result)


def _elapsed_ms(start: float) -> int:
    return max(0, int((time.monotonic() - start) * 1000))
