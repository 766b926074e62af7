"""Multi-tier response cache."""

from ai_orchestrator.cache.distributed import DistributedTier
from ai_orchestrator.cache.entry import TRUNCATION_MARKER, CacheEntry, CacheTier
from ai_orchestrator.cache.hierarchy import CacheHierarchy, CacheLookup
from ai_orchestrator.cache.memory import LRUStore, MemoryTier
from ai_orchestrator.cache.metrics import CacheMetricsSnapshot
from ai_orchestrator.cache.pattern import PROMPT_PATTERNS, PatternTier, detect_pattern
from ai_orchestrator.cache.specialized import CodeReviewCache, DocumentCache
from ai_orchestrator.cache.ttl import TTLPolicy, classify

__all__ = [
    "PROMPT_PATTERNS",
    "TRUNCATION_MARKER",
    "CacheEntry",
    "CacheHierarchy",
    "CacheLookup",
    "CacheMetricsSnapshot",
    "CacheTier",
    "CodeReviewCache",
    "DistributedTier",
    "DocumentCache",
    "LRUStore",
    "MemoryTier",
    "PatternTier",
    "TTLPolicy",
    "classify",
    "detect_pattern",
]
