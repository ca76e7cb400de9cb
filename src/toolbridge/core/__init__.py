"""
Core module - Orchestration loop, its state and cooperative shutdown.
"""

from .conversation import build_messages, format_tool_result
from .loop import ChatLoop
from .shutdown import GracefulShutdown
from .state import ChatResult, LoopState

__all__ = [
    "ChatLoop",
    "ChatResult",
    "LoopState",
    "GracefulShutdown",
    "build_messages",
    "format_tool_result",
]
