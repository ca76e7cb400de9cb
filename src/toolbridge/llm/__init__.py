"""
LLM module - Adapter for LiteLLM and the provider registry.

Exports the ChatProvider contract, the LiteLLM adapter and response models.
"""

from .adapter import ChatProvider, LLMAdapter, LLMResponse, ToolCall
from .providers import ProviderRegistry, UnknownProviderError, default_providers

__all__ = [
    "ChatProvider",
    "LLMAdapter",
    "LLMResponse",
    "ToolCall",
    "ProviderRegistry",
    "UnknownProviderError",
    "default_providers",
]
