"""Confidence scoring for orchestration results.

Scorers are pluggable; the orchestrator only depends on ``ConfidenceScorer``.
The heuristic scorer combines four 0-100 sub-scores: provider agreement,
cost efficiency, latency and quality.
"""

from __future__ import annotations

from typing import Protocol

from ai_orchestrator.domain.enums import Capability, PrivacyTier, ProviderName
from ai_orchestrator.domain.models import (
    CompletionRequest,
    ConfidenceSummary,
    CostSummary,
    PerformanceSummary,
    ProviderDecision,
    RankedCandidate,
)

REASONING_BONUS = 5.0
REGULATED_LOCAL_BONUS = 10.0
FALLBACK_PENALTY_PER_RANK = 20.0

_REASONING_PROVIDERS = frozenset({ProviderName.ANTHROPIC, ProviderName.OPENAI})


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


class ConfidenceScorer(Protocol):
    def score(
        self,
        request: CompletionRequest,
        decision: ProviderDecision,
        served: RankedCandidate,
        cost: CostSummary,
        performance: PerformanceSummary,
    ) -> ConfidenceSummary: ...


class HeuristicConfidenceScorer:
    """Static heuristic; does not compare outputs across providers."""

    def score(
        self,
        request: CompletionRequest,
        decision: ProviderDecision,
        served: RankedCandidate,
        cost: CostSummary,
        performance: PerformanceSummary,
    ) -> ConfidenceSummary:
        descriptor = served.descriptor
        rank = decision.ranked.index(served) if served in decision.ranked else len(decision.ranked)

        quality = descriptor.quality
        if Capability.REASONING in request.requirements.capabilities and descriptor.name in _REASONING_PROVIDERS:
            quality += REASONING_BONUS
        if request.requirements.privacy == PrivacyTier.REGULATED and descriptor.name == ProviderName.LOCAL:
            quality += REGULATED_LOCAL_BONUS

        factors = {
            "provider_agreement": _clamp(100.0 - rank * FALLBACK_PENALTY_PER_RANK),
            "cost_efficiency": _clamp(cost.efficiency),
            "latency": _clamp(100.0 - performance.elapsed_ms / 100),
            "quality": _clamp(quality),
        }
        overall = round(sum(factors.values()) / len(factors), 2)
        return ConfidenceSummary(overall=overall, factors=factors)
