"""
Conversation helpers - builds the OpenAI-format message list.

Roles: system, user, assistant (optionally carrying tool_calls) and tool
(one per executed call, matched by tool_call_id).
"""

from typing import Any

from ..mcp.client import extract_text
from ..mcp.models import ToolCallResult

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. When a question needs live data, call the "
    "available tools and answer using their results."
)

_HISTORY_ROLES = ("user", "assistant")


def build_messages(
    prompt: str,
    system: str | None = DEFAULT_SYSTEM_PROMPT,
    history: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Initial conversation: system prompt, prior turns, then the prompt.

    Only user and assistant turns of the history are kept.
    """
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})

    for turn in history or []:
        if turn.get("role") in _HISTORY_ROLES:
            messages.append({"role": turn["role"], "content": turn.get("content") or ""})

    messages.append({"role": "user", "content": prompt})
    return messages


def format_tool_result(result: ToolCallResult) -> str:
    """Text fed back to the model for one tool call."""
    if not result.success:
        return f"Error: {result.error}"
    return extract_text(result.content)


def tool_message(result: ToolCallResult) -> dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": result.tool_call_id,
        "content": format_tool_result(result),
    }


def pending_tool_calls(messages: list[dict[str, Any]]) -> set[str]:
    """Ids of tool calls in the last assistant turn without a tool reply."""
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.get("role") == "assistant":
            requested = {tc["id"] for tc in message.get("tool_calls") or []}
            answered = {
                m.get("tool_call_id") for m in messages[index + 1:] if m.get("role") == "tool"
            }
            return requested - answered
    return set()
