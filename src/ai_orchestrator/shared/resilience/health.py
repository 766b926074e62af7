"""Rolling health view of one provider instance.

Every guarded provider call leaves a sample carrying its outcome, the error
code from the orchestration taxonomy (``NETWORK_ERROR``, ``TIMEOUT``, ...)
and the breaker state observed when it settled.  ``snapshot()`` folds the
samples inside the window into the ``ProviderHealth`` that
``AIProvider.health()`` and ``Orchestrator.provider_health()`` report.
"""

from __future__ import annotations

import enum
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field


class ProviderStatus(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProviderHealth:
    """Point-in-time health of a provider instance.

    ``failures_by_code`` and the latency percentiles cover the window only;
    the ``total_*`` counters cover the tracker's lifetime.
    """

    provider: str
    status: ProviderStatus
    circuit_state: str
    total_requests: int
    total_successes: int
    total_failures: int
    consecutive_failures: int
    success_rate: float
    latency_p50_ms: float
    latency_p95_ms: float
    last_error_code: str | None = None
    failures_by_code: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class _Sample:
    at: float
    latency_ms: float
    circuit_state: str
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


class ProviderHealthTracker:
    """Thread-safe sliding window of call outcomes."""

    def __init__(
        self,
        provider: str,
        *,
        window_seconds: float = 300.0,
        degraded_threshold: float = 0.30,
        unhealthy_threshold: float = 0.60,
    ) -> None:
        self._provider = provider
        self._window = window_seconds
        self._degraded_thr = degraded_threshold
        self._unhealthy_thr = unhealthy_threshold

        self._samples: deque[_Sample] = deque()
        self._lock = threading.Lock()

        self._total_successes = 0
        self._total_failures = 0
        self._consecutive_failures = 0
        self._last_error_code: str | None = None

    # ── Recording ────────────────────────────────────────────
    def record_success(self, latency_ms: float, *, circuit_state: str = "closed") -> None:
        with self._lock:
            self._samples.append(_Sample(time.monotonic(), latency_ms, circuit_state))
            self._total_successes += 1
            self._consecutive_failures = 0

    def record_failure(
        self,
        error_code: str,
        latency_ms: float = 0.0,
        *,
        circuit_state: str = "closed",
    ) -> None:
        with self._lock:
            self._samples.append(_Sample(time.monotonic(), latency_ms, circuit_state, error_code))
            self._total_failures += 1
            self._consecutive_failures += 1
            self._last_error_code = error_code

    # ── Snapshot ─────────────────────────────────────────────
    def snapshot(self, *, circuit_state: str | None = None) -> ProviderHealth:
        """Summarise the window.

        ``circuit_state`` is the breaker's live state; when omitted the state
        seen by the most recent sample is reported.  An OPEN circuit makes the
        provider UNHEALTHY and a HALF_OPEN one at least DEGRADED, whatever the
        failure rate says.
        """
        with self._lock:
            self._evict()
            samples = list(self._samples)
            totals = (self._total_successes, self._total_failures, self._consecutive_failures)
            last_code = self._last_error_code

        if circuit_state is None:
            circuit_state = samples[-1].circuit_state if samples else "closed"
        failures = Counter(s.error_code for s in samples if not s.ok)
        failure_rate = sum(failures.values()) / len(samples) if samples else 0.0
        latencies = sorted(s.latency_ms for s in samples if s.latency_ms > 0)
        successes, total_failures, consecutive = totals

        return ProviderHealth(
            provider=self._provider,
            status=self._status(failure_rate, circuit_state),
            circuit_state=circuit_state,
            total_requests=successes + total_failures,
            total_successes=successes,
            total_failures=total_failures,
            consecutive_failures=consecutive,
            success_rate=round(1.0 - failure_rate, 4),
            latency_p50_ms=_percentile(latencies, 0.50),
            latency_p95_ms=_percentile(latencies, 0.95),
            last_error_code=last_code,
            failures_by_code=dict(failures),
        )

    # ── Internals ────────────────────────────────────────────
    def _status(self, failure_rate: float, circuit_state: str) -> ProviderStatus:
        if circuit_state == "open" or failure_rate >= self._unhealthy_thr:
            return ProviderStatus.UNHEALTHY
        if circuit_state == "half_open" or failure_rate >= self._degraded_thr:
            return ProviderStatus.DEGRADED
        return ProviderStatus.HEALTHY

    def _evict(self) -> None:
        """Caller must hold lock."""
        cutoff = time.monotonic() - self._window
        while self._samples and self._samples[0].at < cutoff:
            self._samples.popleft()


def _percentile(ordered: list[float], p: float) -> float:
    if not ordered:
        return 0.0
    idx = min(int(len(ordered) * p), len(ordered) - 1)
    return round(ordered[idx], 2)
