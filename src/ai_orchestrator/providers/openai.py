"""OpenAI provider variant: chat, vision, tools and image generation."""

from __future__ import annotations

from typing import Any, ClassVar

from ai_orchestrator.domain.enums import Capability, ProviderName
from ai_orchestrator.domain.exceptions import ValidationError
from ai_orchestrator.providers.base import BaseProvider

_IMAGE_SIZES = frozenset({"256x256", "512x512", "1024x1024", "1792x1024", "1024x1792"})


class OpenAIProvider(BaseProvider):
    name: ClassVar[ProviderName] = ProviderName.OPENAI
    default_model: ClassVar[str] = "gpt-4o"
    default_base_url: ClassVar[str] = "https://api.openai.com/v1"
    capabilities: ClassVar[frozenset[Capability]] = frozenset(
        {
            Capability.CHAT,
            Capability.VISION,
            Capability.TOOLS,
            Capability.CODING,
            Capability.CREATIVE,
        }
    )
    pricing: ClassVar[dict[str, tuple[float, float]]] = {
        "gpt-4o": (0.0025, 0.01),
        "gpt-4o-mini": (0.00015, 0.0006),
        "gpt-4-turbo": (0.01, 0.03),
        "gpt-3.5-turbo": (0.0005, 0.0015),
    }
    image_model: ClassVar[str] = "dall-e-3"

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key or ''}"}

    def endpoint(self, operation: str = "chat") -> str:
        if operation == "images":
            return f"{self._base_url}/images/generations"
        return f"{self._base_url}/chat/completions"

    async def generate_images(
        self, prompt: str, *, n: int = 1, size: str = "1024x1024"
    ) -> list[str]:
        if not prompt.strip():
            raise ValidationError("prompt must not be empty", field="prompt", provider=self.name.value)
        if size not in _IMAGE_SIZES:
            raise ValidationError(f"unsupported image size {size!r}", field="size", provider=self.name.value)
        body: dict[str, Any] = {"model": self.image_model, "prompt": prompt, "n": n, "size": size}
        data = await self._guarded(
            lambda: self._transport.send(self.endpoint("images"), body, headers=self.auth_headers()),
            operation="generate_images",
        )
        return [item["url"] for item in data.get("data", []) if item.get("url")]
