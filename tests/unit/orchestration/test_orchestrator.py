"""Tests for the orchestrator: caching, fallback, enrichment and workflows."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeTransport, make_hierarchy
from ai_orchestrator.adapters.outbound.cache import InMemoryCacheBackend
from ai_orchestrator.adapters.outbound.credentials import StaticCredentialStore
from ai_orchestrator.domain.enums import Capability, PrivacyTier, ProviderName, Strategy, TTLClass
from ai_orchestrator.domain.exceptions import (
    AllProvidersFailedError,
    AuthenticationFailedError,
    CircuitOpenError,
    ConfigurationError,
    NetworkError,
    ValidationError,
)
from ai_orchestrator.domain.models import (
    CompletionParams,
    CompletionRequest,
    Constraints,
    ProviderDescriptor,
    WorkflowStep,
)
from ai_orchestrator.orchestration import HeuristicConfidenceScorer, Orchestrator, qualifies_for_fallback
from ai_orchestrator.ports.outbound import TransportError
from ai_orchestrator.providers import ProviderConfig, ProviderOptions, ProviderRegistry
from ai_orchestrator.strategy import StrategyEngine


def _unavailable() -> list[TransportError]:
    # max_retries=2 in the fixture options: three failures exhaust one call
    return [TransportError(503, "unavailable")] * 3


# ═══════════════════════════════════════════════════════════════
#  Cache integration
# ═══════════════════════════════════════════════════════════════
class TestCaching:
    @pytest.mark.asyncio
    async def test_repeat_request_served_from_cache(
        self, orchestrator: Orchestrator, transport: FakeTransport
    ) -> None:
        first = await orchestrator.execute(CompletionRequest.from_prompt("Tell me a joke"))
        second = await orchestrator.execute(CompletionRequest.from_prompt("Tell me a joke"))
        assert not first.cache_hit
        assert second.cache_hit
        assert second.cache_tier == "memory"
        assert second.response.content == first.response.content
        assert second.provider == "google"
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_different_constraints_miss_cache(
        self, orchestrator: Orchestrator, transport: FakeTransport
    ) -> None:
        await orchestrator.execute(CompletionRequest.from_prompt("Tell me a joke"))
        result = await orchestrator.execute(
            CompletionRequest.from_prompt("Tell me a joke", constraints=Constraints(excluded_providers=("google",)))
        )
        assert not result.cache_hit
        assert result.provider == "openai"
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_document_entries_expire(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        hierarchy = make_hierarchy(InMemoryCacheBackend(), {TTLClass.DOCUMENT: 0.1})
        orchestrator = Orchestrator(registry, StrategyEngine(), hierarchy)
        prompt = "Summarize the attached pdf"
        await orchestrator.execute(CompletionRequest.from_prompt(prompt))
        assert (await orchestrator.execute(CompletionRequest.from_prompt(prompt))).cache_hit
        await asyncio.sleep(0.2)
        result = await orchestrator.execute(CompletionRequest.from_prompt(prompt))
        assert not result.cache_hit
        assert transport.calls_to("google") == 2


# ═══════════════════════════════════════════════════════════════
#  Routing and fallback
# ═══════════════════════════════════════════════════════════════
class TestFallback:
    @pytest.mark.asyncio
    async def test_balanced_default_routes_to_google(self, orchestrator: Orchestrator) -> None:
        result = await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        assert result.provider == "google"
        assert result.model == "gemini-1.5-pro"
        assert result.attempted_providers == ("google",)
        assert not result.used_fallback

    @pytest.mark.asyncio
    async def test_transient_failure_falls_back(self, orchestrator: Orchestrator, transport: FakeTransport) -> None:
        transport.script("google", *_unavailable())
        result = await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        assert result.provider == "openai"
        assert result.response.content == "from openai"
        assert result.attempted_providers == ("google", "openai")
        assert result.used_fallback
        assert transport.calls_to("google") == 3

    @pytest.mark.asyncio
    async def test_open_circuit_skips_to_fallback(self, orchestrator: Orchestrator, transport: FakeTransport) -> None:
        transport.script("google", *_unavailable() * 3)
        for i in range(3):
            await orchestrator.execute(CompletionRequest.from_prompt(f"question {i}"))
        assert transport.calls_to("google") == 9

        result = await orchestrator.execute(CompletionRequest.from_prompt("question 4"))
        assert result.provider == "openai"
        assert transport.calls_to("google") == 9

    @pytest.mark.asyncio
    async def test_auth_failure_surfaces_without_fallback(
        self, orchestrator: Orchestrator, transport: FakeTransport
    ) -> None:
        transport.script("google", TransportError(401, {"error": {"message": "invalid key"}}))
        request = CompletionRequest.from_prompt("Hi")
        with pytest.raises(AuthenticationFailedError) as info:
            await orchestrator.execute(request)
        assert info.value.request_id == request.request_id
        assert transport.calls_to("openai") == 0

    @pytest.mark.asyncio
    async def test_all_providers_failed(self, orchestrator: Orchestrator, transport: FakeTransport) -> None:
        for provider in ("google", "openai", "local", "anthropic"):
            transport.script(provider, *_unavailable())
        request = CompletionRequest.from_prompt("Hi")
        with pytest.raises(AllProvidersFailedError) as info:
            await orchestrator.execute(request)
        err = info.value
        assert err.primary == "google"
        assert err.fallbacks == ["openai", "anthropic", "local"]
        assert set(err.errors) == {"google", "openai", "local", "anthropic"}
        assert err.request_id == request.request_id
        assert "Primary: google" in str(err)

    @pytest.mark.asyncio
    async def test_excluded_provider_never_called(self, orchestrator: Orchestrator, transport: FakeTransport) -> None:
        transport.script("openai", *_unavailable())
        result = await orchestrator.execute(
            CompletionRequest.from_prompt("Hi", constraints=Constraints(excluded_providers=("google",)))
        )
        assert result.provider == "anthropic"
        assert transport.calls_to("google") == 0
        assert transport.calls_to("local") == 0

    @pytest.mark.asyncio
    async def test_missing_credential_skips_candidate(
        self, transport: FakeTransport, provider_options: ProviderOptions
    ) -> None:
        registry = ProviderRegistry(
            transport, credentials=StaticCredentialStore({"openai": "sk-openai"}), options=provider_options
        )
        orchestrator = Orchestrator(registry, StrategyEngine(), make_hierarchy(InMemoryCacheBackend()))
        result = await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        assert result.provider == "openai"
        assert result.attempted_providers == ("google", "openai")
        assert transport.calls_to("google") == 0

    @pytest.mark.asyncio
    async def test_cost_ceiling_routes_to_cheapest_eligible(
        self, registry: ProviderRegistry, transport: FakeTransport
    ) -> None:
        def descriptor(name: ProviderName, model: str, cost: float) -> ProviderDescriptor:
            return ProviderDescriptor(
                name=name,
                model=model,
                capabilities=frozenset({Capability.CHAT}),
                cost_per_1k_input=cost,
                cost_per_1k_output=cost,
                avg_latency_ms=1000,
                quality=80,
                privacy=PrivacyTier.PUBLIC,
            )

        engine = StrategyEngine(
            [
                descriptor(ProviderName.OPENAI, "gpt-4o", 0.02),
                descriptor(ProviderName.ANTHROPIC, "claude-3-5-sonnet-20241022", 0.008),
                descriptor(ProviderName.GOOGLE, "gemini-1.5-pro", 0.002),
                descriptor(ProviderName.LOCAL, "llama-3.2-3b", 0.05),
            ]
        )
        orchestrator = Orchestrator(registry, engine, make_hierarchy(InMemoryCacheBackend()))
        result = await orchestrator.execute(
            CompletionRequest.from_prompt("Hi", strategy=Strategy.COST_OPTIMIZED, constraints=Constraints(max_cost=0.01))
        )
        assert result.provider == "google"
        assert transport.calls_to("openai") == transport.calls_to("local") == 0

    @pytest.mark.asyncio
    async def test_explicit_model_kept_only_when_supported(self, orchestrator: Orchestrator) -> None:
        request = CompletionRequest.from_prompt(
            "Hi", params=CompletionParams(model="claude-3-5-sonnet-20241022")
        )
        result = await orchestrator.execute(request)
        assert result.provider == "google"
        assert result.model == "gemini-1.5-pro"

    def test_fallback_qualification(self) -> None:
        assert qualifies_for_fallback(CircuitOpenError("openai", retry_in_s=1.0))
        assert qualifies_for_fallback(NetworkError("reset"))
        assert not qualifies_for_fallback(AuthenticationFailedError())
        assert not qualifies_for_fallback(ValidationError("bad", field="messages"))


# ═══════════════════════════════════════════════════════════════
#  Enrichment
# ═══════════════════════════════════════════════════════════════
class TestEnrichment:
    @pytest.mark.asyncio
    async def test_cost_performance_and_confidence(self, orchestrator: Orchestrator) -> None:
        result = await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        assert result.cost is not None
        assert result.cost.estimated == pytest.approx(result.cost.input_cost + result.cost.output_cost)
        assert result.cost.estimated > 0
        assert result.cost.savings > 0
        assert 0 < result.cost.efficiency <= 100
        assert result.performance is not None
        assert result.performance.total_tokens == 30
        assert result.confidence is not None
        assert set(result.confidence.factors) == {"provider_agreement", "cost_efficiency", "latency", "quality"}
        assert result.confidence.factors["provider_agreement"] == 100.0
        assert 0 <= result.confidence.overall <= 100

    @pytest.mark.asyncio
    async def test_fallback_lowers_agreement(self, orchestrator: Orchestrator, transport: FakeTransport) -> None:
        transport.script("google", *_unavailable())
        result = await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        assert result.confidence is not None
        assert result.confidence.factors["provider_agreement"] == 80.0

    @pytest.mark.asyncio
    async def test_free_provider_reports_zero_cost(self, orchestrator: Orchestrator) -> None:
        result = await orchestrator.execute(
            CompletionRequest.from_prompt("Hi", strategy=Strategy.COST_OPTIMIZED)
        )
        assert result.provider == "local"
        assert result.cost is not None
        assert result.cost.estimated == 0
        assert result.cost.efficiency == 100.0

    @pytest.mark.asyncio
    async def test_custom_confidence_scorer(self, registry: ProviderRegistry) -> None:
        class Fixed(HeuristicConfidenceScorer):
            def score(self, *args, **kwargs):  # type: ignore[no-untyped-def]
                summary = super().score(*args, **kwargs)
                return type(summary)(overall=42.0, factors=summary.factors)

        orchestrator = Orchestrator(
            registry, StrategyEngine(), make_hierarchy(InMemoryCacheBackend()), confidence_scorer=Fixed()
        )
        result = await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        assert result.confidence is not None
        assert result.confidence.overall == 42.0


# ═══════════════════════════════════════════════════════════════
#  Convenience surface
# ═══════════════════════════════════════════════════════════════
class TestSurface:
    @pytest.mark.asyncio
    async def test_ask_returns_text(self, orchestrator: Orchestrator) -> None:
        assert await orchestrator.ask("Hi") == "from google"

    @pytest.mark.asyncio
    async def test_workflow_substitutes_earlier_outputs(
        self, orchestrator: Orchestrator, transport: FakeTransport
    ) -> None:
        results = await orchestrator.workflow(
            [
                WorkflowStep(id="draft", prompt="Hi"),
                WorkflowStep(id="polish", prompt="Polish this: {{ draft.output }}"),
            ]
        )
        assert list(results) == ["draft", "polish"]
        _, body, _ = transport.calls[-1]
        assert body["messages"][0]["content"] == "Polish this: from google"

    @pytest.mark.asyncio
    async def test_workflow_rejects_forward_reference(self, orchestrator: Orchestrator) -> None:
        with pytest.raises(ValidationError):
            await orchestrator.workflow(
                [
                    WorkflowStep(id="a", prompt="Use {{b.output}}"),
                    WorkflowStep(id="b", prompt="Hi"),
                ]
            )

    @pytest.mark.asyncio
    async def test_workflow_rejects_duplicate_ids(self, orchestrator: Orchestrator) -> None:
        with pytest.raises(ValidationError):
            await orchestrator.workflow([WorkflowStep(id="a", prompt="Hi"), WorkflowStep(id="a", prompt="Bye")])

    @pytest.mark.asyncio
    async def test_provider_health_and_reset(self, orchestrator: Orchestrator) -> None:
        await orchestrator.execute(CompletionRequest.from_prompt("Hi"))
        health = orchestrator.provider_health()
        assert health["google-gemini-1.5-pro"].total_successes == 1
        orchestrator.registry.get_provider(ProviderConfig("openai"))
        assert orchestrator.reset_provider("openai") == 1
        assert orchestrator.reset_provider("anthropic") == 0

    def test_reset_unknown_provider(self, orchestrator: Orchestrator) -> None:
        with pytest.raises(ConfigurationError):
            orchestrator.reset_provider("mystery")
