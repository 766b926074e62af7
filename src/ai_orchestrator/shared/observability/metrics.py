"""Prometheus metrics for provider orchestration."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── Orchestration metrics ────────────────────────────────────
ORCHESTRATION_REQUESTS = Counter(
    "ai_orchestration_requests_total",
    "Total orchestrated requests",
    ["provider", "status"],
)

ORCHESTRATION_FALLBACKS = Counter(
    "ai_orchestration_fallbacks_total",
    "Requests served or attempted by a fallback provider",
    ["from_provider", "to_provider"],
)

# ── Provider metrics ─────────────────────────────────────────
PROVIDER_CALL_LATENCY = Histogram(
    "ai_provider_call_latency_seconds",
    "Provider call latency including retries",
    ["provider", "outcome"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

PROVIDER_RETRIES = Counter(
    "ai_provider_retries_total",
    "Retry attempts scheduled by the retry handler",
    ["provider", "code"],
)

CIRCUIT_TRANSITIONS = Counter(
    "ai_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["provider", "state"],
)

# ── Cache metrics ────────────────────────────────────────────
CACHE_LOOKUPS = Counter(
    "ai_cache_lookups_total",
    "Cache lookups by tier and outcome",
    ["tier", "outcome"],
)

CACHE_LOOKUP_LATENCY = Histogram(
    "ai_cache_lookup_latency_seconds",
    "End-to-end cache hierarchy lookup latency",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.5),
)
