"""Anthropic provider variant."""

from __future__ import annotations

from typing import ClassVar

from ai_orchestrator.domain.enums import Capability, ProviderName
from ai_orchestrator.providers.base import BaseProvider

API_VERSION = "2023-06-01"


class AnthropicProvider(BaseProvider):
    name: ClassVar[ProviderName] = ProviderName.ANTHROPIC
    default_model: ClassVar[str] = "claude-3-5-sonnet-20241022"
    default_base_url: ClassVar[str] = "https://api.anthropic.com/v1"
    capabilities: ClassVar[frozenset[Capability]] = frozenset(
        {
            Capability.CHAT,
            Capability.REASONING,
            Capability.ANALYSIS,
            Capability.CODING,
            Capability.TOOLS,
        }
    )
    pricing: ClassVar[dict[str, tuple[float, float]]] = {
        "claude-3-5-sonnet-20241022": (0.003, 0.015),
        "claude-3-5-haiku-20241022": (0.0008, 0.004),
        "claude-3-opus-20240229": (0.015, 0.075),
    }

    def auth_headers(self) -> dict[str, str]:
        return {"x-api-key": self._api_key or "", "anthropic-version": API_VERSION}

    def endpoint(self, operation: str = "chat") -> str:
        return f"{self._base_url}/messages"
