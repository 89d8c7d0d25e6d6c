"""Provider implementations and the provider factory."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from modelgate.config import ProviderConfig, validate_config

from .anthropic import AnthropicProvider
from .azure import AzureOpenAIProvider
from .base import BaseProvider, ProviderCapabilities
from .gemini import GeminiProvider
from .models import Completion, CompletionRequest, Message, ToolCall
from .openai import OpenAIProvider

PROVIDERS: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "azure": AzureOpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GeminiProvider,
}


def create_provider(
    config: ProviderConfig | Mapping[str, Any], *, client: Any = None
) -> BaseProvider:
    """Validate ``config`` and return the adapter for its ``provider`` tag."""
    validated = validate_config(config)
    return PROVIDERS[validated.provider](validated, client=client)


__all__ = [
    "PROVIDERS",
    "AnthropicProvider",
    "AzureOpenAIProvider",
    "BaseProvider",
    "Completion",
    "CompletionRequest",
    "GeminiProvider",
    "Message",
    "OpenAIProvider",
    "ProviderCapabilities",
    "ToolCall",
    "create_provider",
]
