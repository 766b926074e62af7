"""Cache hit/miss accounting, per tier and in aggregate."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ai_orchestrator.shared.observability.metrics import CACHE_LOOKUP_LATENCY, CACHE_LOOKUPS

#: Estimated USD avoided per cache hit, by provider of the cached answer.
DEFAULT_COST_AVOIDED: dict[str, float] = {
    "google": 0.001,
    "anthropic": 0.003,
    "openai": 0.005,
    "local": 0.0,
}
FALLBACK_COST_AVOIDED = 0.005


@dataclass(frozen=True)
class TierStats:
    lookups: int
    hits: int

    @property
    def hit_rate(self) -> float:
        return self.hits / self.lookups if self.lookups else 0.0


@dataclass(frozen=True)
class CacheMetricsSnapshot:
    lookups: int
    hits: int
    misses: int
    cost_avoided: float
    avg_latency_ms: float
    tiers: dict[str, TierStats] = field(default_factory=dict)
    hits_by_pattern: dict[str, int] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        return self.hits / self.lookups if self.lookups else 0.0


class CacheStats:
    """Thread-safe counters behind ``CacheHierarchy.metrics()``."""

    def __init__(
        self,
        tier_names: Iterable[str],
        *,
        cost_avoided: Mapping[str, float] | None = None,
    ) -> None:
        self._cost_map = dict(cost_avoided or DEFAULT_COST_AVOIDED)
        self._tier_names = list(tier_names)
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._lookups = 0
            self._misses = 0
            self._cost_avoided = 0.0
            self._latency_total_ms = 0.0
            self._tier_lookups = {name: 0 for name in self._tier_names}
            self._tier_hits = {name: 0 for name in self._tier_names}

    def record_tier_lookup(self, tier: str, hit: bool) -> None:
        CACHE_LOOKUPS.labels(tier=tier, outcome="hit" if hit else "miss").inc()
        with self._lock:
            self._tier_lookups[tier] = self._tier_lookups.get(tier, 0) + 1
            if hit:
                self._tier_hits[tier] = self._tier_hits.get(tier, 0) + 1

    def record_lookup(self, *, hit_provider: str | None, latency_ms: float) -> None:
        CACHE_LOOKUP_LATENCY.observe(latency_ms / 1000)
        with self._lock:
            self._lookups += 1
            self._latency_total_ms += latency_ms
            if hit_provider is None:
                self._misses += 1
            else:
                self._cost_avoided += self._cost_map.get(hit_provider, FALLBACK_COST_AVOIDED)

    def snapshot(self, *, hits_by_pattern: dict[str, int] | None = None) -> CacheMetricsSnapshot:
        with self._lock:
            return CacheMetricsSnapshot(
                lookups=self._lookups,
                hits=self._lookups - self._misses,
                misses=self._misses,
                cost_avoided=round(self._cost_avoided, 6),
                avg_latency_ms=(self._latency_total_ms / self._lookups) if self._lookups else 0.0,
                tiers={
                    name: TierStats(self._tier_lookups.get(name, 0), self._tier_hits.get(name, 0))
                    for name in self._tier_lookups
                },
                hits_by_pattern=dict(hits_by_pattern or {}),
            )
