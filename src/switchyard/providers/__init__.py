"""Provider implementations and the construction-time dispatch table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .anthropic import AnthropicProvider
from .base import BaseProvider, Provider, ProviderCapabilities
from .gemini import GeminiProvider
from .openai import OpenAIProvider

if TYPE_CHECKING:
    from switchyard.config import ProviderConfig
    from switchyard.rate_limit import RateLimiter

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def build_provider(
    config: ProviderConfig, *, limiter: RateLimiter | None = None
) -> BaseProvider:
    """Instantiate the adapter matching ``config.provider``."""
    return PROVIDER_CLASSES[config.provider](config, limiter=limiter)


__all__ = [
    "PROVIDER_CLASSES",
    "AnthropicProvider",
    "BaseProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderCapabilities",
    "build_provider",
]
