"""Three-tier cache: pattern → in-process memory → distributed.

The first tier holding a live entry wins; every tier consulted before it is
backfilled with the same entry and its remaining TTL.  Writes go to all tiers
concurrently.  Single-key invalidation touches only tiers that support it;
``clear`` flushes everything, the distributed backend included.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from ai_orchestrator.cache.distributed import DistributedTier
from ai_orchestrator.cache.entry import CacheEntry, CacheTier
from ai_orchestrator.cache.keys import semantic_key
from ai_orchestrator.cache.metrics import CacheMetricsSnapshot, CacheStats
from ai_orchestrator.cache.pattern import PatternTier
from ai_orchestrator.cache.ttl import TTLPolicy
from ai_orchestrator.domain.models import CompletionRequest, CompletionResponse

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheLookup:
    entry: CacheEntry
    tier: str

    @property
    def response(self) -> CompletionResponse:
        return CompletionResponse.from_dict(self.entry.payload)


class CacheHierarchy:
    def __init__(
        self,
        tiers: Sequence[CacheTier],
        ttl_policy: TTLPolicy,
        *,
        cost_avoided: Mapping[str, float] | None = None,
    ) -> None:
        if not tiers:
            raise ValueError("cache hierarchy needs at least one tier")
        self._tiers = list(tiers)
        self._ttl = ttl_policy
        self._stats = CacheStats([t.name for t in self._tiers], cost_avoided=cost_avoided)

    @property
    def tiers(self) -> list[CacheTier]:
        return list(self._tiers)

    async def get(self, request: CompletionRequest) -> CacheLookup | None:
        started = time.monotonic()
        log = logger.bind(request_id=request.request_id)
        for index, tier in enumerate(self._tiers):
            entry = await tier.get(request)
            self._stats.record_tier_lookup(tier.name, entry is not None)
            if entry is None:
                continue
            if index:
                await asyncio.gather(*(upper.set(request, entry) for upper in self._tiers[:index]))
            latency_ms = (time.monotonic() - started) * 1000
            self._stats.record_lookup(hit_provider=entry.provider, latency_ms=latency_ms)
            log.info("cache_tier_hit", tier=tier.name, backfilled=index, latency_ms=round(latency_ms, 2))
            return CacheLookup(entry=entry, tier=tier.name)
        latency_ms = (time.monotonic() - started) * 1000
        self._stats.record_lookup(hit_provider=None, latency_ms=latency_ms)
        log.debug("cache_miss", latency_ms=round(latency_ms, 2))
        return None

    async def set(self, request: CompletionRequest, response: CompletionResponse) -> CacheEntry:
        ttl_class, ttl_seconds = self._ttl.for_request(request)
        entry = CacheEntry(
            payload=response.to_dict(),
            cached_at=time.time(),
            ttl_seconds=ttl_seconds,
            ttl_class=ttl_class,
            provider=response.provider,
            model=response.model,
            semantic_key=semantic_key(request),
        )
        await asyncio.gather(*(tier.set(request, entry) for tier in self._tiers))
        logger.debug(
            "cache_entry_written",
            request_id=request.request_id,
            ttl_class=ttl_class.value,
            ttl_s=ttl_seconds,
        )
        return entry

    async def warm(self, pairs: Iterable[tuple[CompletionRequest, CompletionResponse]]) -> int:
        """Pre-load known answers through every tier; returns how many were written.

        Streaming requests are skipped.
        """
        written = 0
        for request, response in pairs:
            if request.params.stream:
                continue
            await self.set(request, response)
            written += 1
        logger.info("cache_warmed", entries=written)
        return written

    async def invalidate(self, request: CompletionRequest) -> None:
        await asyncio.gather(
            *(tier.invalidate(request) for tier in self._tiers if tier.supports_key_invalidation)
        )

    async def clear(self) -> None:
        await asyncio.gather(*(tier.clear() for tier in self._tiers))
        self._stats.reset()
        logger.info("cache_cleared")

    def metrics(self) -> CacheMetricsSnapshot:
        hits_by_pattern: dict[str, int] = {}
        for tier in self._tiers:
            if isinstance(tier, PatternTier):
                hits_by_pattern = tier.hits_by_pattern()
        return self._stats.snapshot(hits_by_pattern=hits_by_pattern)

    async def health_check(self) -> dict[str, Any]:
        distributed = [t for t in self._tiers if isinstance(t, DistributedTier)]
        backend_ok = all([await t.health_check() for t in distributed])
        snapshot = self.metrics()
        return {
            "status": "healthy" if backend_ok else "unhealthy",
            "distributed_backend": backend_ok if distributed else None,
            "lookups": snapshot.lookups,
            "hit_rate": round(snapshot.hit_rate, 4),
            "avg_latency_ms": round(snapshot.avg_latency_ms, 3),
            "cost_avoided": snapshot.cost_avoided,
        }
