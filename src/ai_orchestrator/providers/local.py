"""Self-hosted model variant (Ollama / vLLM style OpenAI-compatible server).

Runs inside the caller's own boundary, so it needs no credential and is
free per token.  Any model name is accepted.
"""

from __future__ import annotations

from typing import ClassVar

from ai_orchestrator.domain.enums import Capability, ProviderName
from ai_orchestrator.providers.base import BaseProvider


class LocalProvider(BaseProvider):
    name: ClassVar[ProviderName] = ProviderName.LOCAL
    default_model: ClassVar[str] = "llama-3.2-3b"
    default_base_url: ClassVar[str] = "http://localhost:11434/v1"
    capabilities: ClassVar[frozenset[Capability]] = frozenset({Capability.CHAT, Capability.CODING})
    pricing: ClassVar[dict[str, tuple[float, float]]] = {
        "llama-3.2-3b": (0.0, 0.0),
        "llama-3.1-8b": (0.0, 0.0),
        "mistral-7b": (0.0, 0.0),
    }
    requires_credential: ClassVar[bool] = False

    @classmethod
    def validate_model(cls, model: str) -> bool:
        return bool(model.strip())

    def auth_headers(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}
