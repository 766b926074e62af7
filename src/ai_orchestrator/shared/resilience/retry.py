"""Retry handler: exponential backoff with jitter on top of ``tenacity``.

Every failure is first normalised into the orchestration taxonomy, then
classified.  Only transient failures are re-attempted:

* rate limits (honouring ``retry_after`` when the provider sends one)
* server errors (status >= 500)
* network failures and timeouts
* any error whose ``code`` is in the configured retryable set

Authentication and validation errors are raised on the first attempt.
Cancellation is never retried.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from ai_orchestrator.domain.exceptions import (
    AuthenticationFailedError,
    OrchestrationError,
    RateLimitExceededError,
    ValidationError,
)
from ai_orchestrator.shared.errors import map_exception
from ai_orchestrator.shared.observability.metrics import PROVIDER_RETRIES

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_CODES: frozenset[str] = frozenset(
    {
        "RATE_LIMIT_EXCEEDED",
        "NETWORK_ERROR",
        "TIMEOUT",
        "SERVER_ERROR",
        "TEMPORARY_FAILURE",
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    Attributes:
        max_retries: Additional attempts after the first one.
        base_delay:  Delay before the first retry, in seconds.
        max_delay:   Upper bound for any single delay.
        multiplier:  Exponential growth factor.
        jitter:      Scale each delay by a random factor in ``[0.5, 1.0]``.
        retryable_codes: Error codes always treated as transient.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    retryable_codes: frozenset[str] = field(default=DEFAULT_RETRYABLE_CODES)


def backoff_delay(
    retry_index: int,
    policy: RetryPolicy,
    *,
    retry_after: float | None = None,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``retry_index`` (0-based)."""
    if retry_after is not None:
        return min(retry_after, policy.max_delay)
    delay = min(policy.base_delay * policy.multiplier**retry_index, policy.max_delay)
    if policy.jitter:
        delay *= 0.5 + 0.5 * rng()
    return delay


def is_retryable(error: BaseException, retryable_codes: frozenset[str] = DEFAULT_RETRYABLE_CODES) -> bool:
    if not isinstance(error, OrchestrationError):
        return False
    if isinstance(error, (AuthenticationFailedError, ValidationError)):
        return False
    if error.retryable:
        return True
    if error.status_code is not None and error.status_code >= 500:
        return True
    return error.code in retryable_codes


class _BackoffWait(wait_base):
    def __init__(self, policy: RetryPolicy, rng: Callable[[], float]) -> None:
        self._policy = policy
        self._rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        retry_after = None
        if retry_state.outcome is not None:
            exc = retry_state.outcome.exception()
            if isinstance(exc, RateLimitExceededError):
                retry_after = exc.retry_after
        return backoff_delay(
            retry_state.attempt_number - 1,
            self._policy,
            retry_after=retry_after,
            rng=self._rng,
        )


class RetryHandler:
    """Runs an async operation with bounded, classified retries."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        provider: str = "unknown",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._provider = provider
        self._sleep = sleep
        self._rng = rng

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable(error, self._policy.retryable_codes)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run ``operation``; on exhaustion re-raise the last error, tagged.

        The raised error carries ``classification`` (``"retryable"`` or
        ``"non_retryable"``) and ``attempts``.
        """
        log = logger.bind(provider=self._provider, **(context or {}))
        attempts = 0

        async def _attempt() -> T:
            nonlocal attempts
            attempts += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                mapped = map_exception(exc, provider=self._provider)
                if mapped is exc:
                    raise
                raise mapped from exc

        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            code = getattr(exc, "code", "UNKNOWN")
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            PROVIDER_RETRIES.labels(provider=self._provider, code=code).inc()
            log.warning(
                "provider_retry_scheduled",
                attempt=retry_state.attempt_number,
                max_retries=self._policy.max_retries,
                delay_s=round(delay, 3),
                code=code,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_retries + 1),
            wait=_BackoffWait(self._policy, self._rng),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return await retrying(_attempt)
        except OrchestrationError as err:
            err.classification = "retryable" if self.is_retryable(err) else "non_retryable"
            err.attempts = attempts
            log.warning(
                "provider_retries_exhausted" if err.classification == "retryable" else "provider_error_not_retryable",
                code=err.code,
                attempts=attempts,
            )
            raise
