"""Google Gemini provider variant (OpenAI-compatible endpoint)."""

from __future__ import annotations

from typing import ClassVar

from ai_orchestrator.domain.enums import Capability, ProviderName
from ai_orchestrator.providers.base import BaseProvider


class GoogleProvider(BaseProvider):
    name: ClassVar[ProviderName] = ProviderName.GOOGLE
    default_model: ClassVar[str] = "gemini-1.5-pro"
    default_base_url: ClassVar[str] = "https://generativelanguage.googleapis.com/v1beta/openai"
    capabilities: ClassVar[frozenset[Capability]] = frozenset(
        {Capability.CHAT, Capability.VISION, Capability.TOOLS, Capability.ANALYSIS}
    )
    pricing: ClassVar[dict[str, tuple[float, float]]] = {
        "gemini-1.5-pro": (0.00125, 0.005),
        "gemini-1.5-flash": (0.000075, 0.0003),
        "gemini-2.0-flash": (0.0001, 0.0004),
    }

    def auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key or ""}
