"""Orchestration exception hierarchy.

All exceptions inherit from ``OrchestrationError`` so callers can catch the
entire family in one clause while still discriminating on subclass.  Every
error carries a stable ``code`` plus the responsible provider and request
correlation id when known.
"""

from __future__ import annotations

from typing import Any


class OrchestrationError(Exception):
    """Base class for all orchestration-layer errors."""

    #: Whether the retry handler may re-attempt the operation.
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str = "ORCHESTRATION_ERROR",
        provider: str | None = None,
        request_id: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.provider = provider
        self.request_id = request_id
        self.status_code = status_code
        self.details = details or {}
        # Set by the retry handler once it has given up on this error.
        self.classification: str | None = None
        self.attempts: int = 0
        super().__init__(message)

    def with_context(
        self, *, provider: str | None = None, request_id: str | None = None
    ) -> OrchestrationError:
        """Fill in provider / request id without overwriting known values."""
        if provider and not self.provider:
            self.provider = provider
        if request_id and not self.request_id:
            self.request_id = request_id
        return self


# ── Provider call failures ───────────────────────────────────
class AuthenticationFailedError(OrchestrationError):
    def __init__(self, message: str = "Authentication failed", **kwargs: Any) -> None:
        super().__init__(message, code="AUTHENTICATION_FAILED", **kwargs)


class ValidationError(OrchestrationError):
    """The request was rejected as malformed; another provider cannot fix it."""

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any) -> None:
        self.field = field
        super().__init__(message, code="VALIDATION_ERROR", **kwargs)


class RateLimitExceededError(OrchestrationError):
    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        self.retry_after = retry_after
        kwargs.setdefault("status_code", 429)
        super().__init__(message, code="RATE_LIMIT_EXCEEDED", **kwargs)


class NetworkError(OrchestrationError):
    retryable = True

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, code="NETWORK_ERROR", **kwargs)


class ProviderTimeoutError(OrchestrationError):
    retryable = True

    def __init__(
        self, timeout_s: float | None = None, *, operation: str = "request", **kwargs: Any
    ) -> None:
        self.timeout_s = timeout_s
        message = f"{operation} timed out"
        if timeout_s:
            message += f" after {timeout_s}s"
        super().__init__(message, code="TIMEOUT", **kwargs)


class CircuitOpenError(OrchestrationError):
    def __init__(self, provider: str, *, retry_in_s: float = 0.0, **kwargs: Any) -> None:
        self.retry_in_s = retry_in_s
        super().__init__(
            f"Circuit breaker is OPEN for {provider} - retry in {retry_in_s:.1f}s",
            code="CIRCUIT_OPEN",
            provider=provider,
            **kwargs,
        )


class UnknownProviderError(OrchestrationError):
    """Catch-all that wraps an unexpected provider failure."""

    def __init__(
        self, message: str, *, cause: BaseException | None = None, **kwargs: Any
    ) -> None:
        self.cause = cause
        super().__init__(message, code="UNKNOWN_PROVIDER_ERROR", **kwargs)
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code is not None and self.status_code >= 500


# ── Cache ────────────────────────────────────────────────
class UnsupportedOperationError(OrchestrationError):
    """The component cannot perform the requested operation (e.g. single-key
    invalidation on a tier that only supports bulk clears)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, code="UNSUPPORTED_OPERATION", **kwargs)


# ── Selection / orchestration ────────────────────────────────
class ConfigurationError(OrchestrationError):
    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", **kwargs)


class NoSuitableProviderError(OrchestrationError):
    def __init__(self, message: str = "No suitable providers available for request", **kwargs: Any) -> None:
        super().__init__(message, code="NO_SUITABLE_PROVIDER", **kwargs)


class AllProvidersFailedError(OrchestrationError):
    """Raised once the primary and every fallback have failed."""

    def __init__(
        self,
        primary: str,
        fallbacks: list[str],
        errors: dict[str, OrchestrationError],
        **kwargs: Any,
    ) -> None:
        self.primary = primary
        self.fallbacks = fallbacks
        self.errors = errors
        chain = ", ".join(fallbacks) or "none"
        super().__init__(
            f"All providers failed. Primary: {primary}, Fallbacks: {chain}",
            code="ALL_PROVIDERS_FAILED",
            provider=primary,
            **kwargs,
        )
