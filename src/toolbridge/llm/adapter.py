"""
Chat providers - the model side of the tool-calling loop.

ChatProvider is the only contract the ChatLoop depends on: one completion
per call, given the conversation and optionally the function schemas built
by the ToolBridge. LLMAdapter implements it on top of LiteLLM, so any
tool-calling model LiteLLM routes to (DeepSeek, OpenAI, ...) can drive the
loop.

Transient provider failures (rate limits, unavailable service, connection
errors, timeouts) are retried with exponential backoff; everything else
surfaces immediately to the loop, which ends the run as FAILED.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any

import litellm
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.schema import LLMConfig

logger = structlog.get_logger()

_TRANSIENT = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.APIConnectionError,
    litellm.Timeout,
)


class ToolCall(BaseModel):
    """One function call requested by the model.

    `arguments` stays the raw JSON text the model produced; parsing happens
    in the ToolBridge so a malformed payload only fails its own call.
    """

    id: str = Field(description="Correlation id echoed back in the tool turn")
    name: str = Field(description="Requested tool name")
    arguments: str = Field(default="{}", description="Arguments as JSON text")

    model_config = {"extra": "forbid"}

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class LLMResponse(BaseModel):
    """Provider-independent view of one model turn."""

    content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str = Field(
        default="stop",
        description='"tool_calls" when the model waits for tool results',
    )
    usage: dict[str, Any] | None = None

    model_config = {"extra": "forbid"}

    @property
    def requests_tools(self) -> bool:
        return self.finish_reason == "tool_calls"

    def assistant_message(self) -> dict[str, Any]:
        """The assistant turn to append to the conversation."""
        message: dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_message() for tc in self.tool_calls]
        return message


class ChatProvider(ABC):
    """A model that can answer a conversation, optionally calling tools."""

    @abstractmethod
    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Run one completion.

        Args:
            messages: Conversation in OpenAI chat format
            tools: Function schemas offered to the model, or None
        """


class LLMAdapter(ChatProvider):
    """ChatProvider backed by litellm.completion."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.log = logger.bind(component="llm", model=config.model)
        self._api_key = os.environ.get(config.api_key_env)

        litellm.suppress_debug_info = True
        if not self._api_key:
            self.log.warning("llm.api_key.missing", env_var=config.api_key_env)

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Ask the model for the next turn.

        Raises:
            Exception: The provider error, after retries for transient ones
        """
        request = self._request(messages, tools)
        self.log.info(
            "llm.request.start",
            messages=len(messages),
            tools=len(tools) if tools else 0,
        )

        try:
            raw = self._with_retries(lambda: litellm.completion(**request))
        except Exception as e:
            self.log.error("llm.request.failed", error=str(e), error_type=type(e).__name__)
            raise

        response = _to_response(raw)
        self.log.info(
            "llm.request.done",
            finish_reason=response.finish_reason,
            tool_calls=[tc.name for tc in response.tool_calls],
            usage=response.usage,
        )
        return response

    def _request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "timeout": self.config.timeout,
        }
        if self.config.api_base:
            request["api_base"] = self.config.api_base
        if self._api_key:
            request["api_key"] = self._api_key
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        return request

    def _with_retries(self, send):
        retrying = Retrying(
            retry=retry_if_exception_type(_TRANSIENT),
            stop=stop_after_attempt(self.config.retries + 1),
            wait=wait_exponential(multiplier=1, min=2, max=60),
            before_sleep=self._log_retry,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return send()

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        self.log.warning(
            "llm.request.retry",
            attempt=state.attempt_number,
            wait_seconds=round(state.next_action.sleep, 1) if state.next_action else 0,
            error=str(error) if error else None,
        )

    def __repr__(self) -> str:
        return f"<LLMAdapter(provider='{self.config.provider}', model='{self.config.model}')>"


def _to_response(raw: Any) -> LLMResponse:
    """Normalize a LiteLLM (OpenAI-shaped) completion."""
    choice = raw.choices[0]
    message = choice.message

    calls = [
        ToolCall(id=tc.id, name=tc.function.name, arguments=_arguments_text(tc.function.arguments))
        for tc in getattr(message, "tool_calls", None) or []
    ]

    return LLMResponse(
        content=getattr(message, "content", None),
        tool_calls=calls,
        finish_reason=choice.finish_reason or "stop",
        usage=_usage(raw),
    )


def _usage(raw: Any) -> dict[str, int] | None:
    usage = getattr(raw, "usage", None)
    if not usage:
        return None
    return {
        key: getattr(usage, key, 0) or 0
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
    }


def _arguments_text(arguments: Any) -> str:
    # Some providers hand back a dict instead of JSON text
    if arguments is None:
        return "{}"
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)
