"""Strategy engine: filters the provider catalogue and ranks what survives.

Filtering (in order): required capabilities, excluded providers, privacy
tier, cost and latency ceilings (both skipped for preferred providers) and
the quality floor.  Survivors get a 0-100 base score from the request's
strategy, plus a flat bonus when preferred, and are sorted descending.  An empty
result is a hard ``NoSuitableProviderError``; constraints are never relaxed.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence

import structlog

from ai_orchestrator.domain.enums import Capability, Complexity, PrivacyTier, Strategy
from ai_orchestrator.domain.exceptions import NoSuitableProviderError
from ai_orchestrator.domain.models import (
    CompletionRequest,
    ProviderDecision,
    ProviderDescriptor,
    RankedCandidate,
)
from ai_orchestrator.strategy.catalog import DEFAULT_CATALOG

logger = structlog.get_logger(__name__)

SIMPLE_WORD_LIMIT = 100
MODERATE_WORD_LIMIT = 500

COST_REFERENCE_PER_1K = 0.01
LATENCY_REFERENCE_MS = 5000.0

_PRIVACY_SCORES: dict[PrivacyTier, float] = {
    PrivacyTier.REGULATED: 100.0,
    PrivacyTier.PRIVATE: 80.0,
    PrivacyTier.PUBLIC: 60.0,
}


def analyze_complexity(request: CompletionRequest) -> Complexity:
    words = len(request.prompt_text.split())
    if words < SIMPLE_WORD_LIMIT:
        return Complexity.SIMPLE
    if words < MODERATE_WORD_LIMIT:
        return Complexity.MODERATE
    return Complexity.COMPLEX


def privacy_satisfied(required: PrivacyTier, offered: PrivacyTier) -> bool:
    """Regulated requests need a regulated provider; private accepts private or better."""
    if required == PrivacyTier.REGULATED:
        return offered == PrivacyTier.REGULATED
    return offered.rank >= required.rank


def cost_score(descriptor: ProviderDescriptor) -> float:
    """100 for a free provider, halving at ``COST_REFERENCE_PER_1K``; never reaches 0."""
    return 100 / (1 + descriptor.blended_cost_per_1k / COST_REFERENCE_PER_1K)


def latency_score(descriptor: ProviderDescriptor) -> float:
    """100 for an instant provider, halving at ``LATENCY_REFERENCE_MS``; never reaches 0."""
    return 100 / (1 + descriptor.avg_latency_ms / LATENCY_REFERENCE_MS)


class StrategyEngine:
    """Scores and ranks candidate providers for one request at a time.

    The catalogue is replaced wholesale by ``update_catalog``; ``determine``
    always works on a consistent snapshot.
    """

    def __init__(
        self,
        catalog: Sequence[ProviderDescriptor] = DEFAULT_CATALOG,
        *,
        default_strategy: Strategy = Strategy.BALANCED,
        preferred_bonus: float = 20.0,
    ) -> None:
        self._catalog = tuple(catalog)
        self._default_strategy = default_strategy
        self._preferred_bonus = preferred_bonus
        self._lock = threading.Lock()

    @property
    def catalog(self) -> tuple[ProviderDescriptor, ...]:
        with self._lock:
            return self._catalog

    def update_catalog(self, descriptors: Iterable[ProviderDescriptor]) -> None:
        new_catalog = tuple(descriptors)
        with self._lock:
            self._catalog = new_catalog
        logger.info("strategy_catalog_updated", providers=[d.key for d in new_catalog])

    def determine(self, request: CompletionRequest) -> ProviderDecision:
        strategy = request.strategy or self._default_strategy
        complexity = analyze_complexity(request)
        required = frozenset({Capability.CHAT, *request.requirements.capabilities})

        candidates = self._filter(self.catalog, request, required)
        if not candidates:
            logger.warning(
                "no_suitable_provider",
                request_id=request.request_id,
                strategy=strategy.value,
                required=sorted(c.value for c in required),
            )
            raise NoSuitableProviderError(request_id=request.request_id)

        preferred = set(request.constraints.preferred_providers)
        ranked = sorted(
            (self._score(d, strategy, d.name.value in preferred) for d in candidates),
            key=lambda c: c.score,
            reverse=True,
        )
        logger.debug(
            "providers_ranked",
            request_id=request.request_id,
            strategy=strategy.value,
            complexity=complexity.value,
            ranking=[(c.descriptor.key, round(c.score, 2)) for c in ranked],
        )
        return ProviderDecision(
            primary=ranked[0],
            fallbacks=tuple(ranked[1:]),
            complexity=complexity.value,
            required_capabilities=required,
        )

    # ── Filtering ────────────────────────────────────────────
    def _filter(
        self,
        catalog: Sequence[ProviderDescriptor],
        request: CompletionRequest,
        required: frozenset[Capability],
    ) -> list[ProviderDescriptor]:
        constraints = request.constraints
        requirements = request.requirements
        excluded = set(constraints.excluded_providers)
        preferred = set(constraints.preferred_providers)
        candidates: list[ProviderDescriptor] = []

        for descriptor in catalog:
            name = descriptor.name.value
            if not required <= descriptor.capabilities:
                continue
            if name in excluded:
                continue
            if not privacy_satisfied(requirements.privacy, descriptor.privacy):
                continue
            if name not in preferred:
                if constraints.max_cost is not None and descriptor.blended_cost_per_1k > constraints.max_cost:
                    continue
                if (
                    constraints.max_latency_ms is not None
                    and descriptor.avg_latency_ms > constraints.max_latency_ms
                ):
                    continue
            if descriptor.quality < requirements.min_quality:
                continue
            candidates.append(descriptor)

        return candidates

    # ── Scoring ──────────────────────────────────────────────
    def _score(
        self, descriptor: ProviderDescriptor, strategy: Strategy, is_preferred: bool
    ) -> RankedCandidate:
        if strategy == Strategy.COST_OPTIMIZED:
            score = cost_score(descriptor)
            rationale = f"cost_optimized: {descriptor.blended_cost_per_1k:.5f} USD/1k tokens"
        elif strategy == Strategy.PERFORMANCE:
            score = latency_score(descriptor)
            rationale = f"performance: {descriptor.avg_latency_ms:.0f} ms average latency"
        elif strategy == Strategy.PRIVACY_FIRST:
            score = _PRIVACY_SCORES[descriptor.privacy]
            rationale = f"privacy_first: {descriptor.privacy.value} tier"
        else:
            c_score = cost_score(descriptor)
            l_score = latency_score(descriptor)
            score = descriptor.quality * 0.4 + c_score * 0.3 + l_score * 0.3
            rationale = (
                f"balanced: quality {descriptor.quality:.0f}, "
                f"cost score {c_score:.1f}, latency score {l_score:.1f}"
            )

        score = max(0.0, min(100.0, score))
        if is_preferred:
            score += self._preferred_bonus
            rationale += f"; preferred +{self._preferred_bonus:g}"

        return RankedCandidate(
            descriptor=descriptor,
            score=score,
            rationale=rationale,
        )


class ProviderSelector:
    """Splits a decision's ranking into primary and fallbacks."""

    def rank(self, decision: ProviderDecision) -> list[RankedCandidate]:
        return list(decision.ranked)

    def select_primary(self, ranked: Sequence[RankedCandidate]) -> RankedCandidate:
        if not ranked:
            raise NoSuitableProviderError()
        return ranked[0]

    def get_fallbacks(self, ranked: Sequence[RankedCandidate]) -> list[RankedCandidate]:
        return list(ranked[1:])
