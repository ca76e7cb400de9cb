"""
Loop state - states of the orchestration loop and its aggregated result.

LoopState models the tool-calling state machine:

    AWAIT_MODEL -> HAS_TOOL_CALLS -> (execute) -> AWAIT_MODEL

with terminal states COMPLETED, ITERATION_LIMIT_REACHED, CANCELLED and
FAILED. Only FAILED is an error; the iteration limit and cancellation are
soft stops that still return the last model output.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..mcp.models import ToolCallResult


class LoopState(Enum):
    """State of the orchestration loop."""

    AWAIT_MODEL = "await_model"
    HAS_TOOL_CALLS = "has_tool_calls"
    COMPLETED = "completed"                              # Model finished on its own
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"  # Soft limit, partial answer
    CANCELLED = "cancelled"                              # Stopped between iterations
    FAILED = "failed"                                    # Unrecoverable model error

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = {
    LoopState.COMPLETED,
    LoopState.ITERATION_LIMIT_REACHED,
    LoopState.CANCELLED,
    LoopState.FAILED,
}


@dataclass
class ChatResult:
    """Aggregated outcome of one orchestration run.

    Attributes:
        content: Final textual answer (last model output)
        finish_reason: Finish reason of the last model turn
        usage: Token usage summed over every model call
        tool_calls: Every executed tool call, in execution order
        iterations: Number of model turns that requested tools
        state: Terminal LoopState
        execution_time_ms: Wall time of the whole run
        warning: Set for soft stops (iteration limit, cancellation, anomalies)
    """

    content: str | None = None
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    tool_calls: list[ToolCallResult] = field(default_factory=list)
    iterations: int = 0
    state: LoopState = LoopState.AWAIT_MODEL
    execution_time_ms: int = 0
    warning: str | None = None
    start_time: float = field(default_factory=time.monotonic, repr=False)

    @property
    def had_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def status(self) -> Literal["success", "partial", "failed"]:
        """Coarse outcome used for CLI exit codes and JSON output."""
        if self.state == LoopState.FAILED:
            return "failed"
        if self.state == LoopState.COMPLETED:
            return "success"
        return "partial"

    def add_usage(self, usage: dict[str, Any] | None) -> None:
        """Accumulate the token usage of one model call."""
        if not usage:
            return
        for key, value in usage.items():
            if isinstance(value, int):
                self.usage[key] = self.usage.get(key, 0) + value

    def finish(self, state: LoopState) -> "ChatResult":
        self.state = state
        self.execution_time_ms = max(0, int((time.monotonic() - self.start_time) * 1000))
        return self

    def to_output_dict(self) -> dict[str, Any]:
        """Convert the result to a dict for --json output."""
        output: dict[str, Any] = {
            "status": self.status,
            "state": self.state.value,
            "content": self.content,
            "finish_reason": self.finish_reason,
            "iterations": self.iterations,
            "had_tool_calls": self.had_tool_calls,
            "tool_calls": [
                {
                    "tool": tc.tool_name,
                    "server_id": tc.server_id,
                    "arguments": tc.arguments,
                    "success": tc.success,
                    "error": tc.error,
                    "execution_time_ms": tc.execution_time_ms,
                }
                for tc in self.tool_calls
            ],
            "usage": self.usage or None,
            "execution_time_ms": self.execution_time_ms,
        }
        if self.warning:
            output["warning"] = self.warning
        return output

    def __repr__(self) -> str:
        return (
            f"<ChatResult("
            f"state='{self.state.value}', "
            f"iterations={self.iterations}, "
            f"tool_calls={len(self.tool_calls)})>"
        )
