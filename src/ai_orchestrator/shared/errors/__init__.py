"""Error mapping: turn raw transport and runtime failures into domain errors.

Also renders errors into a redacted dict safe for logs and callers.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx
import structlog

from ai_orchestrator.domain.exceptions import (
    AuthenticationFailedError,
    NetworkError,
    OrchestrationError,
    ProviderTimeoutError,
    RateLimitExceededError,
    UnknownProviderError,
    ValidationError,
)
from ai_orchestrator.ports.outbound import TransportError

logger = structlog.get_logger(__name__)

_SECRET_PATTERNS = (
    re.compile(r"sk-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"),
    re.compile(r"(?i)(api[_-]?key|x-api-key|key)=([^&\s\"']+)"),
)


def redact(text: str) -> str:
    """Mask credentials that may leak through provider error messages."""
    text = _SECRET_PATTERNS[0].sub("sk-***", text)
    text = _SECRET_PATTERNS[1].sub("Bearer ***", text)
    return _SECRET_PATTERNS[2].sub(r"\1=***", text)


def describe_error(exc: BaseException) -> dict[str, Any]:
    """Safe, redacted view of an error for logs and API responses."""
    if isinstance(exc, OrchestrationError):
        return {
            "code": exc.code,
            "message": redact(exc.message),
            "provider": exc.provider,
            "request_id": exc.request_id,
            "status_code": exc.status_code,
        }
    return {
        "code": "INTERNAL_ERROR",
        "message": redact(f"{type(exc).__name__}: {exc}"),
        "provider": None,
        "request_id": None,
        "status_code": None,
    }


# ── Transport → taxonomy ─────────────────────────────────────
def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
        if data.get("message"):
            return str(data["message"])
    if isinstance(data, str) and data:
        return data
    return fallback


def _retry_after(err: TransportError) -> float | None:
    headers = {k.lower(): v for k, v in err.headers.items()}
    raw: Any = headers.get("retry-after")
    if raw is None and isinstance(err.data, dict):
        raw = err.data.get("retry_after")
        if raw is None and isinstance(err.data.get("error"), dict):
            raw = err.data["error"].get("retry_after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


def from_transport_error(err: TransportError, *, provider: str | None = None) -> OrchestrationError:
    status = err.status
    message = _error_message(err.data, str(err))
    if status in (401, 403):
        return AuthenticationFailedError(message, provider=provider, status_code=status)
    if status in (400, 404, 422):
        field = None
        if isinstance(err.data, dict) and isinstance(err.data.get("error"), dict):
            field = err.data["error"].get("param")
        return ValidationError(message, field=field, provider=provider, status_code=status)
    if status == 429:
        return RateLimitExceededError(
            message, retry_after=_retry_after(err), provider=provider, status_code=status
        )
    if status is None:
        return NetworkError(message, provider=provider)
    return UnknownProviderError(message, cause=err, provider=provider, status_code=status)


def map_exception(exc: BaseException, *, provider: str | None = None) -> OrchestrationError:
    """Normalise any exception raised by a provider operation."""
    if isinstance(exc, OrchestrationError):
        return exc.with_context(provider=provider)
    if isinstance(exc, TransportError):
        return from_transport_error(exc, provider=provider)
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError(operation="provider call", provider=provider)
    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return NetworkError(f"{type(exc).__name__}: {exc}", provider=provider)
    return UnknownProviderError(f"{type(exc).__name__}: {exc}", cause=exc, provider=provider)
