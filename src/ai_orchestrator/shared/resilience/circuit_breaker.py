"""Circuit breaker: prevents cascading failures by isolating unhealthy providers.

State machine:
    CLOSED    → (N consecutive failures) → OPEN
    OPEN      → (recovery timeout)       → HALF_OPEN
    HALF_OPEN → (trial call succeeds)   → CLOSED
    HALF_OPEN → (trial call fails)      → OPEN

While HALF_OPEN exactly one trial call is admitted; concurrent callers are
rejected until the trial call settles.
"""

from __future__ import annotations

import asyncio
import enum
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from ai_orchestrator.domain.exceptions import CircuitOpenError
from ai_orchestrator.shared.observability.metrics import CIRCUIT_TRANSITIONS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerStatus:
    """Read-only snapshot of a breaker.

    Attributes:
        state:             Current state (after any pending OPEN → HALF_OPEN move).
        failures:          Consecutive failures since the last success.
        last_failure_time: ``time.monotonic()`` of the last failure, or ``None``.
        next_attempt_in_s: Seconds until an OPEN breaker admits a trial call.
    """

    provider: str
    state: CircuitState
    failures: int
    last_failure_time: float | None
    next_attempt_in_s: float


class CircuitBreaker:
    """Per-provider circuit breaker with automatic half-open probing."""

    def __init__(
        self,
        provider_id: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        ignore_exceptions: tuple[type[BaseException], ...] = (),
    ) -> None:
        self._provider_id = provider_id
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        # Errors that say nothing about provider health (e.g. a malformed request).
        self._ignored = ignore_exceptions

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float | None = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_transition_to_half_open()
            return self._state

    def status(self) -> CircuitBreakerStatus:
        with self._lock:
            self._maybe_transition_to_half_open()
            return CircuitBreakerStatus(
                provider=self._provider_id,
                state=self._state,
                failures=self._consecutive_failures,
                last_failure_time=self._last_failure_time,
                next_attempt_in_s=self._remaining_cooldown(),
            )

    # ── Guarded execution ────────────────────────────────────
    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` if the circuit admits it, recording the outcome.

        Raises:
            CircuitOpenError: The circuit is OPEN, or HALF_OPEN with a trial call
                already in flight.
        """
        is_trial = self._acquire()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._release_trial(is_trial)
            raise
        except Exception as exc:
            if self._ignored and isinstance(exc, self._ignored):
                self._release_trial(is_trial)
            else:
                self.record_failure(is_trial=is_trial)
            raise
        self.record_success(is_trial=is_trial)
        return result

    def can_execute(self) -> bool:
        """Check if the circuit would admit a request right now."""
        with self._lock:
            self._maybe_transition_to_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                return not self._trial_in_flight
            return False

    def _acquire(self) -> bool:
        """Admit a call or raise; returns True when the call is the half-open trial call."""
        with self._lock:
            self._maybe_transition_to_half_open()
            if self._state == CircuitState.CLOSED:
                return False
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            retry_in = self._remaining_cooldown()
        logger.debug("circuit_breaker_rejected", provider=self._provider_id, retry_in_s=retry_in)
        raise CircuitOpenError(self._provider_id, retry_in_s=retry_in)

    # ── Outcome recording ────────────────────────────────────
    def record_success(self, *, is_trial: bool = False) -> None:
        """Record a successful call.

        Only the half-open trial call closes the circuit.  A call admitted while
        CLOSED that settles after the circuit opened leaves the state alone.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0
                return
            if not (is_trial and self._state == CircuitState.HALF_OPEN):
                logger.debug(
                    "circuit_breaker_late_success_ignored",
                    provider=self._provider_id,
                    state=self._state.value,
                )
                return
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._trial_in_flight = False
            CIRCUIT_TRANSITIONS.labels(provider=self._provider_id, state="closed").inc()
            logger.info(
                "circuit_breaker_closed",
                provider=self._provider_id,
                previous_state=CircuitState.HALF_OPEN.value,
            )

    def record_failure(self, *, is_trial: bool = False) -> None:
        """Record a failed call; may trip the circuit.

        Late failures of calls admitted before the circuit opened do not
        restart the recovery timeout.
        """
        with self._lock:
            if self._state == CircuitState.OPEN or (
                self._state == CircuitState.HALF_OPEN and not is_trial
            ):
                logger.debug(
                    "circuit_breaker_late_failure_ignored",
                    provider=self._provider_id,
                    state=self._state.value,
                )
                return

            self._consecutive_failures += 1
            self._last_failure_time = time.monotonic()
            self._trial_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                CIRCUIT_TRANSITIONS.labels(provider=self._provider_id, state="open").inc()
                logger.warning(
                    "circuit_breaker_reopened",
                    provider=self._provider_id,
                    failures=self._consecutive_failures,
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._failure_threshold
            ):
                self._state = CircuitState.OPEN
                CIRCUIT_TRANSITIONS.labels(provider=self._provider_id, state="open").inc()
                logger.warning(
                    "circuit_breaker_opened",
                    provider=self._provider_id,
                    failures=self._consecutive_failures,
                    recovery_timeout_s=self._recovery_timeout,
                )

    def reset(self) -> None:
        """Force-reset the circuit to CLOSED (for admin override)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_time = None
            self._trial_in_flight = False
            logger.info("circuit_breaker_force_reset", provider=self._provider_id)

    # ── Internals ────────────────────────────────────────────
    def _release_trial(self, is_trial: bool) -> None:
        if is_trial:
            with self._lock:
                self._trial_in_flight = False

    def _remaining_cooldown(self) -> float:
        """Caller must hold lock."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return 0.0
        elapsed = time.monotonic() - self._last_failure_time
        return max(0.0, self._recovery_timeout - elapsed)

    def _maybe_transition_to_half_open(self) -> None:
        """Caller must hold lock."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                CIRCUIT_TRANSITIONS.labels(provider=self._provider_id, state="half_open").inc()
                logger.info(
                    "circuit_breaker_half_open",
                    provider=self._provider_id,
                    elapsed_s=round(elapsed, 1),
                )
