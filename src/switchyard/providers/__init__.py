"""Provider implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import Provider, ProviderCapabilities
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import GrokProvider, OpenAIProvider

if TYPE_CHECKING:
    from switchyard.config import Config

__all__ = [
    "GeminiProvider",
    "GrokProvider",
    "MockProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderCapabilities",
    "get_provider",
]


def get_provider(config: Config) -> Provider:
    """Build the provider named by *config*."""
    if config.provider == "mock":
        return MockProvider()

    # Config validation guarantees a key for every real backend.
    api_key = config.api_key or ""
    if config.provider == "gemini":
        return GeminiProvider(
            api_key, retry=config.retry, embedding_model=config.embedding_model
        )
    if config.provider == "openai":
        return OpenAIProvider(
            api_key,
            base_url=config.base_url,
            retry=config.retry,
            embedding_model=config.embedding_model,
        )
    return GrokProvider(
        api_key,
        base_url=config.base_url,
        retry=config.retry,
        embedding_model=config.embedding_model,
    )
