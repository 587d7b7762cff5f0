"""
Provider registry.

Provider variants are a closed set selected by a configuration
discriminator through a static table.
"""

from __future__ import annotations

import logging

from ..domain.exceptions import ConfigurationError
from .anthropic import AnthropicProvider
from .base import BaseModelProvider, ProviderConfig
from .ollama import OllamaProvider
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[BaseModelProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "ollama": OllamaProvider,
}


def create_provider(provider_type: str, config: ProviderConfig) -> BaseModelProvider:
    """Instantiate the provider registered under ``provider_type``.

    Raises:
        ConfigurationError: If no provider is registered under that name
    """
    provider_cls = PROVIDERS.get(provider_type.lower())
    if provider_cls is None:
        raise ConfigurationError(
            f"Unknown provider type {provider_type!r}, expected one of {sorted(PROVIDERS)}"
        )
    logger.debug(f"Creating {provider_cls.__name__} for model {config.model}")
    return provider_cls(config)
