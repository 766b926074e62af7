"""Default provider catalogue used by the strategy engine."""

from __future__ import annotations

from ai_orchestrator.domain.enums import Capability, PrivacyTier, ProviderName
from ai_orchestrator.domain.models import ProviderDescriptor

DEFAULT_CATALOG: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        name=ProviderName.OPENAI,
        model="gpt-4o",
        capabilities=frozenset(
            {Capability.CHAT, Capability.VISION, Capability.TOOLS, Capability.CODING, Capability.CREATIVE}
        ),
        cost_per_1k_input=0.0025,
        cost_per_1k_output=0.01,
        avg_latency_ms=2500,
        quality=90,
        privacy=PrivacyTier.PUBLIC,
    ),
    ProviderDescriptor(
        name=ProviderName.ANTHROPIC,
        model="claude-3-5-sonnet-20241022",
        capabilities=frozenset(
            {Capability.CHAT, Capability.REASONING, Capability.ANALYSIS, Capability.CODING, Capability.TOOLS}
        ),
        cost_per_1k_input=0.003,
        cost_per_1k_output=0.015,
        avg_latency_ms=3000,
        quality=95,
        privacy=PrivacyTier.PRIVATE,
    ),
    ProviderDescriptor(
        name=ProviderName.GOOGLE,
        model="gemini-1.5-pro",
        capabilities=frozenset(
            {Capability.CHAT, Capability.VISION, Capability.TOOLS, Capability.ANALYSIS}
        ),
        cost_per_1k_input=0.00125,
        cost_per_1k_output=0.005,
        avg_latency_ms=2000,
        quality=85,
        privacy=PrivacyTier.PUBLIC,
    ),
    ProviderDescriptor(
        name=ProviderName.LOCAL,
        model="llama-3.2-3b",
        capabilities=frozenset({Capability.CHAT, Capability.CODING}),
        cost_per_1k_input=0.0,
        cost_per_1k_output=0.0,
        avg_latency_ms=8000,
        quality=70,
        privacy=PrivacyTier.REGULATED,
    ),
)
