"""Composition root: wires adapters to ports.

Every factory takes an explicit ``Settings``; nothing is cached at module
level, so callers (and tests) own the lifetime of what they build.
"""

from __future__ import annotations

from ai_orchestrator.adapters.outbound.cache import InMemoryCacheBackend, RedisCacheBackend
from ai_orchestrator.adapters.outbound.credentials import SettingsCredentialStore
from ai_orchestrator.adapters.outbound.transport import HttpxTransport
from ai_orchestrator.cache import (
    CacheHierarchy,
    CodeReviewCache,
    DistributedTier,
    DocumentCache,
    MemoryTier,
    PatternTier,
    TTLPolicy,
)
from ai_orchestrator.config import Settings, get_settings
from ai_orchestrator.domain.enums import TTLClass
from ai_orchestrator.orchestration import Orchestrator
from ai_orchestrator.ports.outbound import CacheBackend, ProviderTransport
from ai_orchestrator.providers import ProviderOptions, ProviderRegistry
from ai_orchestrator.shared.observability import configure_logging
from ai_orchestrator.shared.resilience import DEFAULT_RETRYABLE_CODES, RetryPolicy
from ai_orchestrator.strategy import StrategyEngine


# ── Adapters ─────────────────────────────────────────────────
def build_transport(settings: Settings) -> HttpxTransport:
    return HttpxTransport(timeout=settings.provider_timeout_seconds)


def build_cache_backend(settings: Settings) -> CacheBackend:
    """Redis when ``redis_url`` is set, otherwise process memory."""
    if settings.redis_url:
        return RedisCacheBackend(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            flush_pattern=f"{settings.cache_namespace}:*",
        )
    return InMemoryCacheBackend()


# ── Providers ────────────────────────────────────────────────
def build_provider_options(settings: Settings) -> ProviderOptions:
    return ProviderOptions(
        timeout_s=settings.provider_timeout_seconds,
        health_timeout_s=settings.health_check_timeout_seconds,
        retry_policy=RetryPolicy(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            multiplier=settings.retry_multiplier,
            jitter=settings.retry_jitter,
            retryable_codes=DEFAULT_RETRYABLE_CODES | frozenset(settings.retry_extra_codes),
        ),
        failure_threshold=settings.circuit_breaker_failure_threshold,
        recovery_timeout=settings.circuit_breaker_recovery_timeout,
        base_urls={
            "openai": settings.openai_base_url,
            "anthropic": settings.anthropic_base_url,
            "google": settings.google_base_url,
            "local": settings.local_base_url,
        },
    )


def build_registry(settings: Settings, transport: ProviderTransport | None = None) -> ProviderRegistry:
    return ProviderRegistry(
        transport or build_transport(settings),
        credentials=SettingsCredentialStore(settings),
        options=build_provider_options(settings),
    )


# ── Cache ────────────────────────────────────────────────────
def build_cache_hierarchy(settings: Settings, backend: CacheBackend | None = None) -> CacheHierarchy:
    tiers = [
        PatternTier(settings.cache_ttl_seconds, max_entries=settings.cache_pattern_max_entries),
        MemoryTier(max_entries=settings.cache_memory_max_entries),
        DistributedTier(
            backend or build_cache_backend(settings),
            namespace=settings.cache_namespace,
            max_entry_bytes=settings.cache_max_entry_bytes,
            text_cap_chars=settings.cache_text_cap_chars,
            similarity_lookup=settings.cache_similarity_lookup,
        ),
    ]
    return CacheHierarchy(tiers, TTLPolicy(settings.cache_ttl_seconds))


def build_document_cache(settings: Settings, backend: CacheBackend) -> DocumentCache:
    return DocumentCache(
        backend,
        namespace=settings.cache_namespace,
        max_input_bytes=settings.document_cache_max_bytes,
        ttl_seconds=settings.cache_ttl_seconds[TTLClass.DOCUMENT],
    )


def build_code_review_cache(settings: Settings, backend: CacheBackend) -> CodeReviewCache:
    return CodeReviewCache(
        backend,
        namespace=settings.cache_namespace,
        max_input_bytes=settings.code_review_cache_max_bytes,
        ttl_seconds=settings.code_review_ttl_seconds,
    )


# ── Orchestrator ─────────────────────────────────────────────
def build_strategy_engine(settings: Settings) -> StrategyEngine:
    return StrategyEngine(
        default_strategy=settings.default_strategy,
        preferred_bonus=settings.preferred_provider_bonus,
    )


def build_orchestrator(
    settings: Settings | None = None,
    *,
    transport: ProviderTransport | None = None,
    cache_backend: CacheBackend | None = None,
) -> Orchestrator:
    """Assemble a ready-to-use orchestrator from ``settings``."""
    s = settings or get_settings()
    configure_logging(log_level=s.log_level, json_logs=s.is_production)
    return Orchestrator(
        build_registry(s, transport),
        build_strategy_engine(s),
        build_cache_hierarchy(s, cache_backend),
    )
