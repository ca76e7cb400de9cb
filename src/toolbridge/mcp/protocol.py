"""
JSON-RPC 2.0 envelopes and MCP wire constants.

Shared by the client (requester side) and the reference tool endpoint
(responder side), so both ends agree on one wire contract:

    Request:  {"jsonrpc":"2.0","id":"<string>","method":"<name>","params":{...}}
    Response: {"jsonrpc":"2.0","id":"<string>","result":{...}}
            | {"jsonrpc":"2.0","id":"<string>","error":{"code":<int>,"message":"<string>"}}

Responses may be plain JSON or framed as Server-Sent Events, where the
JSON document is the concatenation of every `data:` line.
"""

import json
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION = "2.0"

# MCP protocol version spoken by both sides
PROTOCOL_VERSION = "2024-11-05"

SESSION_HEADER = "Mcp-Session-Id"
JSON_MEDIA_TYPE = "application/json"
SSE_MEDIA_TYPE = "text/event-stream"
ACCEPT_HEADER = f"{JSON_MEDIA_TYPE}, {SSE_MEDIA_TYPE}"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: str = JSONRPC_VERSION
    id: str | int | None = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


class JsonRpcError(BaseModel):
    """Error object of a JSON-RPC response."""

    code: int
    message: str
    data: Any = None

    model_config = ConfigDict(extra="ignore")


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response. Exactly one of result/error is meaningful."""

    jsonrpc: str = JSONRPC_VERSION
    id: str | int | None = None
    result: Any = None
    error: JsonRpcError | None = None

    model_config = ConfigDict(extra="ignore")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def success(cls, request_id: str | int | None, result: Any) -> "JsonRpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls, request_id: str | int | None, code: int, message: str
    ) -> "JsonRpcResponse":
        return cls(id=request_id, error=JsonRpcError(code=code, message=message))

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            error: dict[str, Any] = {"code": self.error.code, "message": self.error.message}
            if self.error.data is not None:
                error["data"] = self.error.data
            body["error"] = error
        else:
            body["result"] = self.result
        return body


def build_request(method: str, params: dict[str, Any] | None = None) -> JsonRpcRequest:
    """Build a request envelope with a fresh string correlation id."""
    return JsonRpcRequest(id=str(uuid.uuid4()), method=method, params=params or {})


def is_event_stream(content_type: str | None) -> bool:
    """True if a Content-Type header denotes an SSE body."""
    return bool(content_type) and SSE_MEDIA_TYPE in content_type.lower()


def decode_sse(text: str) -> str:
    """Extract the JSON payload carried by an SSE body.

    Concatenates the value of every `data:` line in order; `event:`, `id:`,
    `retry:` and comment lines are ignored.

    Args:
        text: Raw SSE body

    Returns:
        The reconstructed JSON text (empty string if there were no data lines)
    """
    fragments = []
    for line in text.splitlines():
        if not line.startswith("data:"):
            continue
        data = line[5:]
        # A single space after the colon belongs to the framing, not the payload
        if data.startswith(" "):
            data = data[1:]
        fragments.append(data.rstrip("\r"))
    return "".join(fragments)


def encode_sse(payload: dict[str, Any], event: str = "message") -> str:
    """Frame a JSON document as a single SSE event."""
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def decode_body(content_type: str | None, text: str) -> dict[str, Any]:
    """Decode a JSON-RPC response body in either encoding.

    Args:
        content_type: Content-Type header of the response
        text: Raw body

    Returns:
        The decoded JSON object

    Raises:
        ValueError: If the body is empty or not a JSON object
    """
    raw = decode_sse(text) if is_event_stream(content_type) else text
    if not raw.strip():
        raise ValueError("Empty response body")

    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON-RPC object, got {type(data).__name__}")
    return data
