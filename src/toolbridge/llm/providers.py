"""
Provider registry - maps a provider id to a ChatProvider factory.

The orchestration loop only depends on the ChatProvider contract; which
implementation serves a request is chosen by `llm.provider` in the
configuration.
"""

from typing import Callable

import structlog

from ..config.schema import LLMConfig
from .adapter import ChatProvider, LLMAdapter

logger = structlog.get_logger()

ProviderFactory = Callable[[LLMConfig], ChatProvider]


class UnknownProviderError(Exception):
    """Error raised when no factory is registered for a provider id."""

    pass


class ProviderRegistry:
    """Registry of ChatProvider factories keyed by provider id."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register (or replace) the factory for a provider id."""
        self._factories[name] = factory
        logger.debug("llm.provider.registered", provider=name)

    def create(self, config: LLMConfig) -> ChatProvider:
        """Build the provider selected by config.provider.

        Raises:
            UnknownProviderError: If the id has no registered factory
        """
        factory = self._factories.get(config.provider)
        if factory is None:
            available = ", ".join(sorted(self._factories)) or "(none)"
            raise UnknownProviderError(
                f"Unknown provider '{config.provider}'. Available providers: {available}"
            )
        return factory(config)

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories


def default_providers() -> ProviderRegistry:
    """Registry with the built-in providers."""
    registry = ProviderRegistry()
    registry.register("litellm", LLMAdapter)
    return registry
