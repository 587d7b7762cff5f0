"""Model provider implementations."""

from .anthropic import AnthropicProvider
from .base import (
    BaseChatModel,
    BaseModelProvider,
    ProviderConfig,
    validate_messages,
)
from .ollama import OllamaProvider
from .openai import OpenAIProvider
from .registry import PROVIDERS, create_provider

__all__ = [
    "AnthropicProvider",
    "BaseChatModel",
    "BaseModelProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "PROVIDERS",
    "ProviderConfig",
    "create_provider",
    "validate_messages",
]
