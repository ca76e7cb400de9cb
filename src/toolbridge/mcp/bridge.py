"""
Tool bridge between MCP tool catalogs and model function calling.

Keeps a name -> ToolDefinition cache built from the ServerRegistry, turns it
into OpenAI-style function schemas and executes the tool calls a model
requests by resolving each one to its owning server.
"""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

import structlog

from ..llm.adapter import ToolCall
from .client import MCPClient
from .models import ToolCallResult, ToolDefinition
from .registry import ServerRegistry

logger = structlog.get_logger()

MAX_PARALLEL_CALLS = 4


class ToolBridge:
    """Exposes registered MCP tools to the model and runs its tool calls.

    Tool names share one namespace across servers: when two servers
    advertise the same name, the last one loaded wins and a warning is
    logged.

    The cache is a snapshot. It is filled on first use and is not told about
    later registry changes: after ServerRegistry.remove, refresh_tools or
    refresh_all, call refresh() or the model keeps seeing the old catalog.
    A call to a tool whose server was removed fails with "Server not found
    for tool" instead of reaching the network.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        client: MCPClient,
        parallel: bool = False,
    ) -> None:
        """Initialize the bridge.

        Args:
            registry: Source of servers and catalogs
            client: Transport used to execute tool calls
            parallel: Run the calls of one batch on a thread pool
        """
        self.registry = registry
        self.client = client
        self.parallel = parallel
        self.log = logger.bind(component="tool_bridge")
        self._lock = threading.Lock()
        self._tools: dict[str, ToolDefinition] = {}

    def tool_functions(self) -> list[dict[str, Any]]:
        """Function schemas of every known tool.

        An empty cache triggers one reload from the registry first.
        """
        if not self._tools:
            self.load()
        tools = self._tools
        return [tool.to_function_schema() for tool in tools.values()]

    def load(self) -> int:
        """Rebuild the name cache from the registry's current catalogs."""
        tools: dict[str, ToolDefinition] = {}
        for tool in self.registry.all_tools():
            previous = tools.get(tool.name)
            if previous is not None and previous.server_id != tool.server_id:
                self.log.warning(
                    "bridge.tool.name_collision",
                    tool=tool.name,
                    replaced_server=previous.server_id,
                    server=tool.server_id,
                )
            tools[tool.name] = tool

        with self._lock:
            self._tools = tools

        self.log.info("bridge.tools.loaded", count=len(tools))
        return len(tools)

    def refresh(self) -> int:
        """Drop the cache and rebuild it from the registry."""
        with self._lock:
            self._tools = {}
        return self.load()

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def execute(self, call: ToolCall) -> ToolCallResult:
        """Execute one model-requested tool call.

        Never raises: unknown tools, unknown servers and malformed arguments
        come back as failed results.
        """
        start = time.monotonic()

        def _failure(error: str, **kwargs: Any) -> ToolCallResult:
            self.log.warning("bridge.tool.rejected", tool=call.name, error=error)
            return ToolCallResult(
                success=False,
                error=error,
                execution_time_ms=max(0, int((time.monotonic() - start) * 1000)),
                tool_call_id=call.id,
                tool_name=call.name,
                **kwargs,
            )

        tool = self._tools.get(call.name)
        if tool is None:
            return _failure(f"Tool not found: {call.name}")

        server = self.registry.get(tool.server_id)
        if server is None:
            return _failure(f"Server not found for tool: {tool.server_id}", server_id=tool.server_id)

        try:
            arguments = parse_arguments(call.arguments)
        except ValueError as e:
            return _failure(f"Invalid tool arguments: {e}", server_id=server.id)

        self.log.info("bridge.tool.execute", tool=call.name, server=server.name)
        return self.client.call_tool(server, call.name, arguments, tool_call_id=call.id)

    def execute_all(self, calls: list[ToolCall]) -> list[ToolCallResult]:
        """Execute a batch of calls. Result i always answers call i."""
        if not calls:
            return []

        if not self.parallel or len(calls) == 1:
            return [self.execute(call) for call in calls]

        results: list[ToolCallResult | None] = [None] * len(calls)
        with ThreadPoolExecutor(max_workers=min(len(calls), MAX_PARALLEL_CALLS)) as pool:
            futures = {pool.submit(self.execute, call): i for i, call in enumerate(calls)}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        return results  # type: ignore[return-value]

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"<ToolBridge({len(self._tools)} tools, parallel={self.parallel})>"


def parse_arguments(arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    """Parse the JSON arguments of a tool call.

    Raises:
        ValueError: If the text is not JSON or not a JSON object
    """
    if arguments is None:
        return {}
    if isinstance(arguments, dict):
        return arguments
    if not arguments.strip():
        return {}

    parsed = json.loads(arguments)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
