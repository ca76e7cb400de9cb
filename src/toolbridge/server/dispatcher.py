"""
JSON-RPC dispatcher of the reference MCP endpoint.

Transport-independent: receives a decoded request object plus the
Mcp-Session-Id header value, and returns the response envelope and the
session id to send back. Every failure becomes a JSON-RPC error object;
nothing propagates to the HTTP layer.

Methods:
    initialize  -> protocol version, capabilities, server info, new session
    tools/list  -> fixed catalog
    tools/call  -> handler result wrapped as MCP content
    ping        -> {"status": "ok"}

Notifications (requests without an id, e.g. notifications/initialized) are
accepted and produce no response.
"""

import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from ..config.schema import ToolServerConfig
from ..mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
    JsonRpcResponse,
)
from .tools import ToolCatalog

logger = structlog.get_logger()


@dataclass
class Dispatch:
    """Outcome of one dispatched request.

    Attributes:
        response: Envelope to send, or None for notifications
        session_id: Session header to set on the HTTP response, if any
    """

    response: JsonRpcResponse | None
    session_id: str | None = None


class JsonRpcDispatcher:
    """Responder side of the MCP JSON-RPC protocol.

    Issued session ids are kept in insertion order and capped at
    `config.max_sessions`; the oldest id is forgotten first. A forgotten id
    is still served, it is only logged as unknown.
    """

    def __init__(self, catalog: ToolCatalog, config: ToolServerConfig | None = None) -> None:
        self.catalog = catalog
        self.config = config or ToolServerConfig()
        self.log = logger.bind(component="mcp_dispatcher")
        self._lock = threading.Lock()
        self._sessions: OrderedDict[str, datetime] = OrderedDict()

    def handle(self, payload: Any, session_id: str | None = None) -> Dispatch:
        """Dispatch one decoded JSON-RPC request."""
        if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
            self.log.warning("server.request.invalid")
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return Dispatch(JsonRpcResponse.failure(request_id, INVALID_REQUEST, "Invalid Request"))

        method = payload["method"]
        request_id = payload.get("id")
        params = payload.get("params")

        self.log.info(
            "server.request",
            method=method,
            id=request_id,
            session_id=session_id[:12] + "..." if session_id else None,
        )

        if "id" not in payload:
            self.log.debug("server.notification", method=method)
            return Dispatch(None)

        if session_id and method != "initialize" and not self.has_session(session_id):
            # Unknown sessions are still served
            self.log.warning("server.session.unknown", method=method)

        try:
            if method == "initialize":
                new_session = self._open_session()
                return Dispatch(
                    JsonRpcResponse.success(request_id, self._initialize_result()),
                    session_id=new_session,
                )
            if method == "tools/list":
                return Dispatch(
                    JsonRpcResponse.success(request_id, {"tools": self.catalog.list_tools()})
                )
            if method == "tools/call":
                return Dispatch(JsonRpcResponse.success(request_id, self._call_tool(params)))
            if method == "ping":
                return Dispatch(JsonRpcResponse.success(request_id, {"status": "ok"}))

            self.log.warning("server.method.not_found", method=method)
            return Dispatch(
                JsonRpcResponse.failure(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
            )

        except Exception as e:
            self.log.error("server.request.failed", method=method, error=str(e), exc_info=True)
            return Dispatch(
                JsonRpcResponse.failure(request_id, INTERNAL_ERROR, f"Internal error: {e}")
            )

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def session_count(self) -> int:
        return len(self._sessions)

    def _open_session(self) -> str:
        session_id = str(uuid.uuid4())
        with self._lock:
            self._sessions[session_id] = datetime.now()
            while len(self._sessions) > self.config.max_sessions:
                self._sessions.popitem(last=False)
        self.log.info("server.session.created", session_id=session_id[:12] + "...")
        return session_id

    def _initialize_result(self) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.config.name, "version": self.config.version},
        }

    def _call_tool(self, params: Any) -> dict[str, Any]:
        if not isinstance(params, dict):
            raise ValueError("Missing params")
        name = params.get("name")
        if not name:
            raise ValueError("Missing tool name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ValueError("arguments must be an object")
        return self.catalog.call(name, arguments)
