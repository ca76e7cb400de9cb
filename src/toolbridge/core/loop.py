"""
Chat Loop - bounded multi-turn exchange between the model and MCP tools.

Per-iteration flow:
1. Check the stop flag (cancellation is only honoured here)
2. Call the model, attaching the tool schemas on the first iteration and
   after every turn that requested tools
3. finish_reason == "tool_calls" with calls -> append the assistant turn,
   execute every call through the ToolBridge, append one tool turn per
   call, and repeat
4. Anything else -> the turn is the final answer

Invariants:
- The model is never called while tool calls of the previous turn are
  unanswered.
- Tool failures never raise: they are fed back as "Error: <message>".
- At most max_iterations turns may request tools; hitting that limit is a
  soft stop that returns the last model output with a warning.
"""

from typing import Any

import structlog

from ..config.schema import OrchestrationConfig
from ..llm.adapter import ChatProvider, LLMResponse
from ..mcp.bridge import ToolBridge
from .conversation import DEFAULT_SYSTEM_PROMPT, build_messages, pending_tool_calls, tool_message
from .shutdown import GracefulShutdown
from .state import ChatResult, LoopState

logger = structlog.get_logger()


class ChatLoop:
    """Orchestrates one chat request with tool calling."""

    def __init__(
        self,
        provider: ChatProvider,
        bridge: ToolBridge,
        config: OrchestrationConfig | None = None,
        shutdown: GracefulShutdown | None = None,
    ) -> None:
        """Initialize the loop.

        Args:
            provider: Model provider
            bridge: Tool bridge used for schemas and execution
            config: Orchestration settings (max_iterations)
            shutdown: Optional stop flag checked between iterations
        """
        self.provider = provider
        self.bridge = bridge
        self.config = config or OrchestrationConfig()
        self.shutdown = shutdown
        self.log = logger.bind(component="chat_loop")

    def run(
        self,
        prompt: str,
        system: str | None = DEFAULT_SYSTEM_PROMPT,
        history: list[dict[str, Any]] | None = None,
    ) -> ChatResult:
        """Run the loop for a user prompt.

        Args:
            prompt: User message
            system: System prompt, or None for none
            history: Previous user/assistant turns

        Returns:
            ChatResult in a terminal state
        """
        self.log.info(
            "loop.start",
            prompt=prompt[:100] + "..." if len(prompt) > 100 else prompt,
            max_iterations=self.config.max_iterations,
            history=len(history or []),
        )
        return self.run_messages(build_messages(prompt, system=system, history=history))

    def run_messages(self, messages: list[dict[str, Any]]) -> ChatResult:
        """Run the loop over an existing conversation.

        The list is extended in place with the assistant and tool turns.

        Raises:
            ValueError: If the last assistant turn has unanswered tool calls
        """
        pending = pending_tool_calls(messages)
        if pending:
            raise ValueError(f"Conversation has unanswered tool calls: {sorted(pending)}")

        result = ChatResult()
        max_iterations = self.config.max_iterations
        response: LLMResponse | None = None

        while True:
            if self.shutdown is not None and self.shutdown.should_stop:
                self.log.warning("loop.cancelled", iteration=result.iterations)
                result.warning = "Cancelled before the model finished"
                return self._finish(result, response, LoopState.CANCELLED)

            tools = None
            if result.iterations == 0 or (response is not None and response.requests_tools):
                tools = self._tool_schemas()

            self.log.info(
                "loop.iteration.start",
                iteration=result.iterations,
                messages=len(messages),
                tools=len(tools) if tools else 0,
            )

            try:
                response = self.provider.complete(messages, tools)
            except Exception as e:
                self.log.error("loop.model_error", error=str(e), iteration=result.iterations)
                result.content = f"Model error: {e}"
                result.finish_reason = "error"
                return result.finish(LoopState.FAILED)

            result.add_usage(response.usage)

            if not response.requests_tools:
                self.log.info(
                    "loop.complete",
                    iteration=result.iterations,
                    finish_reason=response.finish_reason,
                )
                return self._finish(result, response, LoopState.COMPLETED)

            if not response.tool_calls:
                self.log.warning("loop.empty_tool_calls", iteration=result.iterations)
                result.warning = "Model requested tools without any tool call"
                return self._finish(result, response, LoopState.COMPLETED)

            state = LoopState.HAS_TOOL_CALLS
            self.log.info(
                "loop.tool_calls",
                iteration=result.iterations,
                state=state.value,
                count=len(response.tool_calls),
                tools=[tc.name for tc in response.tool_calls],
            )

            messages.append(response.assistant_message())
            tool_results = self.bridge.execute_all(response.tool_calls)
            for tool_result in tool_results:
                if not tool_result.success:
                    self.log.warning(
                        "loop.tool_failed",
                        tool=tool_result.tool_name,
                        error=tool_result.error,
                    )
                messages.append(tool_message(tool_result))
            result.tool_calls.extend(tool_results)
            result.iterations += 1

            if result.iterations >= max_iterations:
                self.log.warning("loop.iteration_limit", max_iterations=max_iterations)
                result.warning = f"Reached maximum tool-calling iterations ({max_iterations})"
                return self._finish(result, response, LoopState.ITERATION_LIMIT_REACHED)

    def _tool_schemas(self) -> list[dict[str, Any]] | None:
        """Current function schemas, or None when there are none."""
        try:
            schemas = self.bridge.tool_functions()
        except Exception as e:
            self.log.error("loop.tools_unavailable", error=str(e))
            return None
        return schemas or None

    def _finish(
        self,
        result: ChatResult,
        response: LLMResponse | None,
        state: LoopState,
    ) -> ChatResult:
        if response is not None:
            result.content = response.content
            result.finish_reason = response.finish_reason
        result.finish(state)
        self.log.info(
            "loop.finished",
            state=state.value,
            iterations=result.iterations,
            tool_calls=len(result.tool_calls),
            elapsed_ms=result.execution_time_ms,
        )
        return result
