"""Provider variants, their shared contract, and the registry."""

from ai_orchestrator.providers.anthropic import AnthropicProvider
from ai_orchestrator.providers.base import (
    STREAM_END_MARKER,
    BaseProvider,
    ProviderConfig,
    ProviderOptions,
)
from ai_orchestrator.providers.google import GoogleProvider
from ai_orchestrator.providers.local import LocalProvider
from ai_orchestrator.providers.openai import OpenAIProvider
from ai_orchestrator.providers.registry import ProviderRegistry
from ai_orchestrator.providers.stream import CompletionStream

__all__ = [
    "STREAM_END_MARKER",
    "AnthropicProvider",
    "BaseProvider",
    "CompletionStream",
    "GoogleProvider",
    "LocalProvider",
    "OpenAIProvider",
    "ProviderConfig",
    "ProviderOptions",
    "ProviderRegistry",
]
