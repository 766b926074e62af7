"""Provider contract shared by every variant.

A provider instance is bound to one (provider, model, credential) triple and
owns exactly one retry handler, one circuit breaker and one health tracker.
Every network call goes breaker → retry → per-attempt timeout → transport,
so a single breaker failure is recorded per exhausted retry sequence.

Variants only declare endpoints, auth headers, capabilities, models and a
static pricing table; request/response normalization lives in the transport.
"""

from __future__ import annotations

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, TypeVar

import structlog

from ai_orchestrator.domain.enums import Capability, ProviderName
from ai_orchestrator.domain.exceptions import (
    NetworkError,
    OrchestrationError,
    ProviderTimeoutError,
    ValidationError,
)
from ai_orchestrator.domain.models import (
    CompletionParams,
    CompletionRequest,
    CompletionResponse,
    CostEstimate,
    HealthReport,
    StreamChunk,
    TokenUsage,
)
from ai_orchestrator.ports.outbound import ProviderTransport
from ai_orchestrator.providers.stream import CompletionStream
from ai_orchestrator.shared.errors import describe_error, map_exception
from ai_orchestrator.shared.observability.metrics import PROVIDER_CALL_LATENCY
from ai_orchestrator.shared.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerStatus
from ai_orchestrator.shared.resilience.health import ProviderHealth, ProviderHealthTracker
from ai_orchestrator.shared.resilience.retry import RetryHandler, RetryPolicy

logger = structlog.get_logger(__name__)

T = TypeVar("T")

STREAM_END_MARKER = "[DONE]"
DEFAULT_OUTPUT_TOKENS = 500


@dataclass(frozen=True)
class ProviderConfig:
    """Identity of a provider instance; ``model=None`` selects the variant default."""

    provider: str
    model: str | None = None
    api_key: str | None = None


@dataclass(frozen=True)
class ProviderOptions:
    """Runtime knobs applied to every instance a registry builds.

    Attributes:
        timeout_s:        Per-attempt timeout for provider calls.
        health_timeout_s: Bound on a single ``health_check`` round trip.
        retry_policy:     Backoff parameters for the retry handler.
        failure_threshold / recovery_timeout: Circuit breaker parameters.
        base_urls:        Per-provider endpoint override.
        sleep:            Awaitable sleep used between retries.
    """

    timeout_s: float = 30.0
    health_timeout_s: float = 10.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    base_urls: dict[str, str] = field(default_factory=dict)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


class BaseProvider(ABC):
    """Uniform provider interface built on the resilience primitives."""

    name: ClassVar[ProviderName]
    default_model: ClassVar[str]
    default_base_url: ClassVar[str]
    capabilities: ClassVar[frozenset[Capability]]
    #: model -> (USD per 1k input tokens, USD per 1k output tokens)
    pricing: ClassVar[dict[str, tuple[float, float]]]
    requires_credential: ClassVar[bool] = True

    def __init__(
        self,
        config: ProviderConfig,
        transport: ProviderTransport,
        options: ProviderOptions | None = None,
    ) -> None:
        self._options = options or ProviderOptions()
        self.model = config.model or self.default_model
        if not self.validate_model(self.model):
            raise ValidationError(
                f"Model {self.model!r} is not available for {self.name.value}",
                field="model",
                provider=self.name.value,
            )
        self._api_key = config.api_key
        self._transport = transport
        self._base_url = self._options.base_urls.get(self.name.value, self.default_base_url).rstrip("/")
        self._retry = RetryHandler(
            self._options.retry_policy,
            provider=self.name.value,
            sleep=self._options.sleep,
        )
        self._breaker = CircuitBreaker(
            f"{self.name.value}-{self.model}",
            failure_threshold=self._options.failure_threshold,
            recovery_timeout=self._options.recovery_timeout,
            ignore_exceptions=(ValidationError,),
        )
        self._health = ProviderHealthTracker(f"{self.name.value}-{self.model}")

    # ── Variant hooks ────────────────────────────────────────
    @abstractmethod
    def auth_headers(self) -> dict[str, str]: ...

    def endpoint(self, operation: str = "chat") -> str:
        return f"{self._base_url}/chat/completions"

    @classmethod
    def available_models(cls) -> tuple[str, ...]:
        return tuple(cls.pricing)

    @classmethod
    def validate_model(cls, model: str) -> bool:
        return model in cls.pricing

    # ── Introspection ────────────────────────────────────────
    @property
    def key(self) -> str:
        return f"{self.name.value}-{self.model}"

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    def get_capabilities(self) -> frozenset[Capability]:
        return self.capabilities

    def circuit_status(self) -> CircuitBreakerStatus:
        return self._breaker.status()

    def health(self) -> ProviderHealth:
        return self._health.snapshot(circuit_state=self._breaker.state.value)

    def reset_circuit(self) -> None:
        self._breaker.reset()

    def estimate_cost(self, request: CompletionRequest) -> CostEstimate:
        """Static estimate; ~4 characters per token, 500 output tokens by default."""
        input_price, output_price = self.pricing.get(self.model, (0.0, 0.0))
        input_tokens = math.ceil(len(request.prompt_text) / 4)
        output_tokens = request.params.max_tokens or DEFAULT_OUTPUT_TOKENS
        return CostEstimate(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_tokens / 1000 * input_price,
            output_cost=output_tokens / 1000 * output_price,
        )

    def cost_for_usage(self, usage: TokenUsage) -> tuple[float, float]:
        input_price, output_price = self.pricing.get(self.model, (0.0, 0.0))
        return (
            usage.prompt_tokens / 1000 * input_price,
            usage.completion_tokens / 1000 * output_price,
        )

    # ── Calls ────────────────────────────────────────────────
    def build_body(self, request: CompletionRequest, *, stream: bool = False) -> dict[str, Any]:
        params = request.params
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in request.messages],
            "temperature": params.temperature,
        }
        if params.max_tokens is not None:
            body["max_tokens"] = params.max_tokens
        if params.tools:
            body["tools"] = list(params.tools)
        if stream:
            body["stream"] = True
        return body

    async def chat_completion(self, request: CompletionRequest) -> CompletionResponse:
        body = self.build_body(request)
        data = await self._guarded(
            lambda: self._transport.send(self.endpoint("chat"), body, headers=self.auth_headers()),
            operation="chat_completion",
            request_id=request.request_id,
        )
        usage = data.get("usage") or {}
        return CompletionResponse(
            id=str(data.get("id", "")),
            provider=self.name.value,
            model=str(data.get("model") or self.model),
            content=str(data.get("content") or ""),
            finish_reason=str(data.get("finish_reason") or "stop"),
            usage=TokenUsage(
                prompt_tokens=int(usage.get("prompt_tokens", 0)),
                completion_tokens=int(usage.get("completion_tokens", 0)),
            ),
            tool_calls=tuple(data.get("tool_calls") or ()),
        )

    def stream_chat_completion(self, request: CompletionRequest) -> CompletionStream:
        return CompletionStream(self._stream_chunks(request))

    async def generate_images(
        self, prompt: str, *, n: int = 1, size: str = "1024x1024"
    ) -> list[str]:
        raise ValidationError(
            f"Image generation is not supported by {self.name.value}",
            field="capability",
            provider=self.name.value,
        )

    async def health_check(self) -> HealthReport:
        """One bounded round trip; reports failures instead of raising."""
        ping = CompletionRequest.from_prompt(
            "ping", params=CompletionParams(temperature=0.0, max_tokens=1)
        )
        body = self.build_body(ping)
        timeout = self._options.health_timeout_s
        started = time.monotonic()
        error: str | None = None
        try:
            await asyncio.wait_for(
                self._transport.send(self.endpoint("chat"), body, headers=self.auth_headers()),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            error = f"health check timed out after {timeout}s"
        except Exception as exc:
            error = describe_error(map_exception(exc, provider=self.name.value))["message"]
        latency_ms = round((time.monotonic() - started) * 1000, 2)
        status = self._breaker.status()
        if error:
            logger.warning("provider_health_check_failed", provider=self.key, error=error)
        return HealthReport(
            provider=self.name.value,
            model=self.model,
            healthy=error is None,
            latency_ms=latency_ms,
            circuit_state=status.state.value,
            error=error,
            details={"failures": status.failures, "next_attempt_in_s": status.next_attempt_in_s},
        )

    # ── Resilience plumbing ──────────────────────────────────
    async def _with_timeout(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._options.timeout_s)
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(
                self._options.timeout_s, operation=operation, provider=self.name.value
            ) from None

    async def _guarded(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        operation: str,
        request_id: str | None = None,
    ) -> T:
        log = logger.bind(provider=self.key, operation=operation, request_id=request_id)
        started = time.monotonic()
        try:
            result = await self._breaker.call(
                lambda: self._retry.execute(
                    lambda: self._with_timeout(call(), operation),
                    {"operation": operation, "model": self.model},
                )
            )
        except OrchestrationError as err:
            elapsed = time.monotonic() - started
            err.with_context(provider=self.name.value, request_id=request_id)
            self._health.record_failure(
                err.code, elapsed * 1000, circuit_state=self._breaker.state.value
            )
            PROVIDER_CALL_LATENCY.labels(provider=self.name.value, outcome="failure").observe(elapsed)
            log.warning("provider_request_failed", code=err.code, attempts=err.attempts)
            raise
        elapsed = time.monotonic() - started
        self._health.record_success(elapsed * 1000, circuit_state=self._breaker.state.value)
        PROVIDER_CALL_LATENCY.labels(provider=self.name.value, outcome="success").observe(elapsed)
        log.debug("provider_request_success", latency_ms=round(elapsed * 1000, 1))
        return result

    async def _open_stream(self, body: dict[str, Any]) -> tuple[AsyncIterator[str], str]:
        """Open the transport stream and pull its first item."""
        source = self._transport.stream(self.endpoint("chat"), body, headers=self.auth_headers())
        iterator = source.__aiter__()
        try:
            first = await self._with_timeout(iterator.__anext__(), "stream_open")
        except StopAsyncIteration:
            await _close_iterator(iterator)
            raise NetworkError("stream closed before any data", provider=self.name.value) from None
        except BaseException:
            await _close_iterator(iterator)
            raise
        return iterator, first

    async def _stream_chunks(self, request: CompletionRequest) -> AsyncGenerator[StreamChunk, None]:
        body = self.build_body(request, stream=True)
        iterator, item = await self._guarded(
            lambda: self._open_stream(body),
            operation="stream_chat_completion",
            request_id=request.request_id,
        )
        try:
            while True:
                if item == STREAM_END_MARKER:
                    yield StreamChunk(done=True, finish_reason="stop")
                    return
                yield StreamChunk(content=item)
                try:
                    item = await self._with_timeout(iterator.__anext__(), "stream_read")
                except StopAsyncIteration:
                    raise NetworkError(
                        "stream ended without end marker",
                        provider=self.name.value,
                        request_id=request.request_id,
                    ) from None
                except OrchestrationError:
                    raise
                except Exception as exc:
                    raise map_exception(exc, provider=self.name.value).with_context(
                        request_id=request.request_id
                    ) from exc
        finally:
            await _close_iterator(iterator)


async def _close_iterator(iterator: AsyncIterator[Any]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()
