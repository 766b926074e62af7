"""Resilience primitives: retry with backoff, circuit breaking, health tracking."""

from ai_orchestrator.shared.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerStatus,
    CircuitState,
)
from ai_orchestrator.shared.resilience.health import (
    ProviderHealth,
    ProviderHealthTracker,
    ProviderStatus,
)
from ai_orchestrator.shared.resilience.retry import (
    DEFAULT_RETRYABLE_CODES,
    RetryHandler,
    RetryPolicy,
    backoff_delay,
    is_retryable,
)

__all__ = [
    "DEFAULT_RETRYABLE_CODES",
    "CircuitBreaker",
    "CircuitBreakerStatus",
    "CircuitState",
    "ProviderHealth",
    "ProviderHealthTracker",
    "ProviderStatus",
    "RetryHandler",
    "RetryPolicy",
    "backoff_delay",
    "is_retryable",
]
