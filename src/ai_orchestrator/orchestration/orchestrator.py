"""Orchestrator: cache, rank, execute with fallback, enrich.

``execute`` is the single entry point.  A cache hit returns without touching
any provider.  On a miss the strategy engine ranks candidates, the primary is
called through the registry (each instance carries its own retry handler and
circuit breaker) and the remaining candidates are tried in score order when
the failure qualifies for fallback: transient failures and open circuits.
Authentication and validation failures surface immediately.
"""

from __future__ import annotations

import math
import re
import time
from collections.abc import Sequence
from typing import Any

import structlog

from ai_orchestrator.cache.hierarchy import CacheHierarchy
from ai_orchestrator.domain.exceptions import (
    AllProvidersFailedError,
    AuthenticationFailedError,
    CircuitOpenError,
    ConfigurationError,
    OrchestrationError,
    ValidationError,
)
from ai_orchestrator.domain.models import (
    CompletionRequest,
    CompletionResponse,
    Constraints,
    CostSummary,
    OrchestrationResult,
    PerformanceSummary,
    ProviderDecision,
    ProviderDescriptor,
    RankedCandidate,
    Requirements,
    WorkflowStep,
)
from ai_orchestrator.orchestration.confidence import ConfidenceScorer, HeuristicConfidenceScorer
from ai_orchestrator.providers.base import DEFAULT_OUTPUT_TOKENS, BaseProvider, ProviderConfig
from ai_orchestrator.providers.registry import ProviderRegistry
from ai_orchestrator.shared.errors import map_exception
from ai_orchestrator.shared.observability.metrics import (
    ORCHESTRATION_FALLBACKS,
    ORCHESTRATION_REQUESTS,
)
from ai_orchestrator.shared.resilience.health import ProviderHealth
from ai_orchestrator.shared.resilience.retry import is_retryable
from ai_orchestrator.strategy.engine import ProviderSelector, StrategyEngine

logger = structlog.get_logger(__name__)

STEP_REFERENCE = re.compile(r"\{\{\s*(\w+)\.output\s*\}\}")


def qualifies_for_fallback(error: OrchestrationError) -> bool:
    return isinstance(error, CircuitOpenError) or is_retryable(error)


def estimate_descriptor_cost(descriptor: ProviderDescriptor, request: CompletionRequest) -> float:
    """Catalogue-price estimate, same token heuristic as ``BaseProvider.estimate_cost``."""
    input_tokens = math.ceil(len(request.prompt_text) / 4)
    output_tokens = request.params.max_tokens or DEFAULT_OUTPUT_TOKENS
    return (
        input_tokens / 1000 * descriptor.cost_per_1k_input
        + output_tokens / 1000 * descriptor.cost_per_1k_output
    )


class Orchestrator:
    """Top-level entry point wiring registry, strategy engine and cache."""

    def __init__(
        self,
        registry: ProviderRegistry,
        engine: StrategyEngine,
        cache: CacheHierarchy,
        *,
        selector: ProviderSelector | None = None,
        confidence_scorer: ConfidenceScorer | None = None,
    ) -> None:
        self._registry = registry
        self._engine = engine
        self._cache = cache
        self._selector = selector or ProviderSelector()
        self._scorer = confidence_scorer or HeuristicConfidenceScorer()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def cache(self) -> CacheHierarchy:
        return self._cache

    # ── Public surface ───────────────────────────────────────
    async def execute(self, request: CompletionRequest) -> OrchestrationResult:
        with structlog.contextvars.bound_contextvars(request_id=request.request_id):
            return await self._execute(request)

    async def ask(self, prompt: str, **options: Any) -> str:
        """Convenience wrapper returning only the completion text."""
        result = await self.execute(CompletionRequest.from_prompt(prompt, **options))
        return result.response.content

    async def workflow(self, steps: Sequence[WorkflowStep]) -> dict[str, OrchestrationResult]:
        """Run ``steps`` in order; ``{{step_id.output}}`` expands to an earlier step's text."""
        results: dict[str, OrchestrationResult] = {}
        for step in steps:
            if step.id in results:
                raise ValidationError(f"Duplicate workflow step id: {step.id}", field="id")

            def _substitute(match: re.Match[str], step_id: str = step.id) -> str:
                ref = match.group(1)
                if ref not in results:
                    raise ValidationError(
                        f"Step {step_id!r} references unknown or later step {ref!r}", field="prompt"
                    )
                return results[ref].response.content

            prompt = STEP_REFERENCE.sub(_substitute, step.prompt)
            request = CompletionRequest.from_prompt(
                prompt,
                strategy=step.strategy,
                requirements=step.requirements or Requirements(),
                constraints=step.constraints or Constraints(),
            )
            logger.info("workflow_step_started", step=step.id, request_id=request.request_id)
            results[step.id] = await self.execute(request)
        return results

    def reset_provider(self, provider: str) -> int:
        """Force-close every cached circuit for ``provider``; returns how many were reset."""
        if not self._registry.supports(provider):
            raise ConfigurationError(f"Unknown provider: {provider}", provider=provider)
        reset = 0
        for instance in self._registry.cached_instances():
            if instance.name.value == provider:
                instance.reset_circuit()
                reset += 1
        logger.info("provider_circuits_reset", provider=provider, instances=reset)
        return reset

    def provider_health(self) -> dict[str, ProviderHealth]:
        return {instance.key: instance.health() for instance in self._registry.cached_instances()}

    # ── Execution ────────────────────────────────────────────
    async def _execute(self, request: CompletionRequest) -> OrchestrationResult:
        started = time.monotonic()
        log = logger.bind(strategy=request.strategy.value if request.strategy else None)

        cached = await self._cache.get(request)
        if cached is not None:
            response = cached.response
            elapsed_ms = (time.monotonic() - started) * 1000
            ORCHESTRATION_REQUESTS.labels(provider=response.provider, status="cache_hit").inc()
            log.info("orchestration_cache_hit", tier=cached.tier, provider=response.provider)
            return OrchestrationResult(
                response=response,
                provider=response.provider,
                model=response.model,
                request_id=request.request_id,
                cache_hit=True,
                cache_tier=cached.tier,
                elapsed_ms=round(elapsed_ms, 2),
            )

        decision = self._engine.determine(request)
        ranked = self._selector.rank(decision)
        primary = self._selector.select_primary(ranked)
        candidates = [primary, *self._selector.get_fallbacks(ranked)]
        log.info(
            "orchestration_started",
            primary=primary.descriptor.key,
            fallbacks=[c.descriptor.key for c in candidates[1:]],
            complexity=decision.complexity,
        )

        attempted: list[str] = []
        errors: dict[str, OrchestrationError] = {}
        for index, candidate in enumerate(candidates):
            name = candidate.descriptor.name.value
            if index:
                ORCHESTRATION_FALLBACKS.labels(
                    from_provider=candidates[index - 1].descriptor.name.value, to_provider=name
                ).inc()
                log.warning("orchestration_fallback", to_provider=name, attempt=index + 1)
            attempted.append(name)

            try:
                provider = self._provider_for(candidate, request)
            except (AuthenticationFailedError, ConfigurationError) as err:
                # No credential or factory for this candidate: skip it, it was never called.
                errors[name] = err.with_context(request_id=request.request_id)
                log.warning("provider_unavailable", provider=name, code=err.code)
                continue

            try:
                response = await provider.chat_completion(request)
            except Exception as exc:
                err = map_exception(exc, provider=name).with_context(request_id=request.request_id)
                errors[name] = err
                if not qualifies_for_fallback(err):
                    ORCHESTRATION_REQUESTS.labels(provider=name, status="failed").inc()
                    log.error("orchestration_failed", provider=name, code=err.code)
                    if err is exc:
                        raise
                    raise err from exc
                continue

            result = self._enrich(
                request, decision, candidate, provider, response,
                attempted=tuple(attempted), started=started,
            )
            await self._cache.set(request, response)
            ORCHESTRATION_REQUESTS.labels(provider=name, status="success").inc()
            log.info(
                "orchestration_completed",
                provider=provider.key,
                used_fallback=result.used_fallback,
                elapsed_ms=result.elapsed_ms,
            )
            return result

        ORCHESTRATION_REQUESTS.labels(provider=primary.descriptor.name.value, status="failed").inc()
        log.error("all_providers_failed", attempted=attempted, codes={k: e.code for k, e in errors.items()})
        raise AllProvidersFailedError(
            primary.descriptor.name.value,
            attempted[1:],
            errors,
            request_id=request.request_id,
        )

    def _provider_for(self, candidate: RankedCandidate, request: CompletionRequest) -> BaseProvider:
        name = candidate.descriptor.name.value
        model = request.params.model
        if not model or not self._registry.accepts_model(name, model):
            model = candidate.descriptor.model
        return self._registry.get_provider(ProviderConfig(name, model))

    # ── Result enrichment ────────────────────────────────────
    def _enrich(
        self,
        request: CompletionRequest,
        decision: ProviderDecision,
        served: RankedCandidate,
        provider: BaseProvider,
        response: CompletionResponse,
        *,
        attempted: tuple[str, ...],
        started: float,
    ) -> OrchestrationResult:
        elapsed_ms = (time.monotonic() - started) * 1000
        usage = response.usage

        if usage.total_tokens:
            input_cost, output_cost = provider.cost_for_usage(usage)
        else:
            estimate = provider.estimate_cost(request)
            input_cost, output_cost = estimate.input_cost, estimate.output_cost
        total_cost = input_cost + output_cost

        priciest = max(estimate_descriptor_cost(c.descriptor, request) for c in decision.ranked)
        served_estimate = estimate_descriptor_cost(served.descriptor, request)
        savings = max(0.0, priciest - served_estimate)
        efficiency = 100.0 if priciest <= 0 else max(0.0, min(100.0, 100.0 * (1 - served_estimate / priciest)))
        cost = CostSummary(
            estimated=round(total_cost, 8),
            input_cost=round(input_cost, 8),
            output_cost=round(output_cost, 8),
            savings=round(savings, 8),
            efficiency=round(efficiency, 2),
        )

        seconds = elapsed_ms / 1000
        performance = PerformanceSummary(
            elapsed_ms=round(elapsed_ms, 2),
            tokens_per_second=round(usage.total_tokens / seconds, 2) if seconds > 0 else 0.0,
            total_tokens=usage.total_tokens,
        )
        confidence = self._scorer.score(request, decision, served, cost, performance)

        return OrchestrationResult(
            response=response,
            provider=provider.name.value,
            model=provider.model,
            request_id=request.request_id,
            attempted_providers=attempted,
            used_fallback=len(attempted) > 1,
            cache_hit=False,
            elapsed_ms=performance.elapsed_ms,
            cost=cost,
            performance=performance,
            confidence=confidence,
        )
