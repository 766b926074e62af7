"""Tests for the provider variants and the provider registry."""

from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from conftest import API_KEYS, FakeTransport, completion_body
from ai_orchestrator.adapters.outbound.credentials import StaticCredentialStore
from ai_orchestrator.domain.exceptions import (
    AuthenticationFailedError,
    CircuitOpenError,
    ConfigurationError,
    NetworkError,
    ProviderTimeoutError,
    UnknownProviderError,
    ValidationError,
)
from ai_orchestrator.domain.models import CompletionParams, CompletionRequest
from ai_orchestrator.ports.outbound import TransportError
from ai_orchestrator.providers import (
    AnthropicProvider,
    LocalProvider,
    OpenAIProvider,
    ProviderConfig,
    ProviderOptions,
    ProviderRegistry,
)
from ai_orchestrator.shared.resilience import CircuitState, RetryPolicy


def _request(prompt: str = "Say hello", **kwargs: Any) -> CompletionRequest:
    return CompletionRequest.from_prompt(prompt, **kwargs)


class SlowTransport(FakeTransport):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self._delay = delay

    async def send(self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]) -> dict[str, Any]:
        await asyncio.sleep(self._delay)
        return await super().send(endpoint, body, headers=headers)


# ═══════════════════════════════════════════════════════════════
#  Registry
# ═══════════════════════════════════════════════════════════════
class TestProviderRegistry:
    def test_builtin_providers_registered(self, registry: ProviderRegistry) -> None:
        assert registry.get_registered_providers() == ["anthropic", "google", "local", "openai"]
        assert registry.supports("openai")
        assert not registry.supports("mystery")

    def test_unknown_provider_raises(self, registry: ProviderRegistry) -> None:
        with pytest.raises(ConfigurationError):
            registry.get_provider(ProviderConfig("mystery"))

    def test_instances_are_cached_per_model(self, registry: ProviderRegistry) -> None:
        first = registry.get_provider(ProviderConfig("openai"))
        second = registry.get_provider(ProviderConfig("openai", "gpt-4o"))
        other = registry.get_provider(ProviderConfig("openai", "gpt-4o-mini"))
        assert first is second
        assert other is not first
        assert len(registry.cached_instances()) == 2

    def test_explicit_key_builds_fresh_instance(self, registry: ProviderRegistry) -> None:
        cached = registry.get_provider(ProviderConfig("openai"))
        rotated = registry.get_provider(ProviderConfig("openai", api_key="sk-rotated"))
        assert rotated is not cached
        assert registry.get_provider(ProviderConfig("openai")) is rotated

    def test_missing_credential_raises(self, transport: FakeTransport, provider_options: ProviderOptions) -> None:
        registry = ProviderRegistry(
            transport, credentials=StaticCredentialStore({}), options=provider_options
        )
        with pytest.raises(AuthenticationFailedError):
            registry.get_provider(ProviderConfig("anthropic"))

    def test_local_needs_no_credential(self, transport: FakeTransport, provider_options: ProviderOptions) -> None:
        registry = ProviderRegistry(transport, options=provider_options)
        provider = registry.get_provider(ProviderConfig("local", "any-model-name"))
        assert isinstance(provider, LocalProvider)
        assert provider.model == "any-model-name"

    def test_unavailable_model_rejected(self, registry: ProviderRegistry) -> None:
        with pytest.raises(ValidationError) as info:
            registry.get_provider(ProviderConfig("anthropic", "gpt-4o"))
        assert info.value.field == "model"
        assert registry.accepts_model("openai", "gpt-4o")
        assert not registry.accepts_model("anthropic", "gpt-4o")

    def test_clear_cache(self, registry: ProviderRegistry) -> None:
        registry.get_provider(ProviderConfig("google"))
        registry.clear_cache()
        assert registry.cached_instances() == []

    @pytest.mark.asyncio
    async def test_health_check_all_isolates_failures(
        self, registry: ProviderRegistry, transport: FakeTransport
    ) -> None:
        transport.script("google", TransportError(500, "down"))
        reports = await registry.health_check_all()
        assert set(reports) == {"openai", "anthropic", "google", "local"}
        assert reports["google"].healthy is False
        assert reports["openai"].healthy is True
        assert reports["local"].circuit_state == "closed"


# ═══════════════════════════════════════════════════════════════
#  Registry under concurrency
# ═══════════════════════════════════════════════════════════════
class _CountingOpenAI(OpenAIProvider):
    created = 0
    _count_lock = threading.Lock()

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        with self._count_lock:
            type(self).created += 1
        time.sleep(0.01)
        super().__init__(*args, **kwargs)


class TestProviderRegistryConcurrency:
    @pytest.fixture(autouse=True)
    def _reset_counter(self) -> None:
        _CountingOpenAI.created = 0

    def test_threads_share_one_instance(self, registry: ProviderRegistry) -> None:
        registry.register("openai", _CountingOpenAI)
        barrier = threading.Barrier(12)

        def fetch(_: int) -> Any:
            barrier.wait()
            return registry.get_provider(ProviderConfig("openai"))

        with ThreadPoolExecutor(max_workers=12) as pool:
            instances = list(pool.map(fetch, range(12)))

        assert all(instance is instances[0] for instance in instances)
        assert _CountingOpenAI.created == 1
        assert len(registry.cached_instances()) == 1

    @pytest.mark.asyncio
    async def test_gathered_lookups_share_one_instance(self, registry: ProviderRegistry) -> None:
        registry.register("openai", _CountingOpenAI)
        instances = await asyncio.gather(
            *(asyncio.to_thread(registry.get_provider, ProviderConfig("openai", "gpt-4o")) for _ in range(10)),
            *(asyncio.to_thread(registry.get_provider, ProviderConfig("openai")) for _ in range(10)),
        )
        assert len({id(instance) for instance in instances}) == 1
        assert _CountingOpenAI.created == 1

    @pytest.mark.asyncio
    async def test_distinct_models_get_distinct_instances(self, registry: ProviderRegistry) -> None:
        registry.register("openai", _CountingOpenAI)
        models = ["gpt-4o", "gpt-4o-mini"] * 6
        instances = await asyncio.gather(
            *(asyncio.to_thread(registry.get_provider, ProviderConfig("openai", m)) for m in models)
        )
        assert {instance.model for instance in instances} == {"gpt-4o", "gpt-4o-mini"}
        assert _CountingOpenAI.created == 2


# ═══════════════════════════════════════════════════════════════
#  Chat completion
# ═══════════════════════════════════════════════════════════════
class TestChatCompletion:
    @pytest.mark.asyncio
    async def test_request_body_and_response(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script("openai", completion_body("hi there", prompt_tokens=3, completion_tokens=4))
        provider = registry.get_provider(ProviderConfig("openai"))
        response = await provider.chat_completion(
            _request(params=CompletionParams(temperature=0.2, max_tokens=64))
        )
        endpoint, body, headers = transport.calls[0]
        assert endpoint == "http://openai.test/v1/chat/completions"
        assert body["model"] == "gpt-4o"
        assert body["messages"] == [{"role": "user", "content": "Say hello"}]
        assert body["max_tokens"] == 64
        assert headers["Authorization"] == f"Bearer {API_KEYS['openai']}"
        assert response.content == "hi there"
        assert response.provider == "openai"
        assert response.usage.total_tokens == 7

    @pytest.mark.asyncio
    async def test_variant_auth_headers(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        await registry.get_provider(ProviderConfig("anthropic")).chat_completion(_request())
        await registry.get_provider(ProviderConfig("google")).chat_completion(_request())
        (anthropic_endpoint, _, anthropic_headers), (_, _, google_headers) = transport.calls
        assert anthropic_endpoint.endswith("/messages")
        assert anthropic_headers["x-api-key"] == API_KEYS["anthropic"]
        assert "anthropic-version" in anthropic_headers
        assert google_headers["x-goog-api-key"] == API_KEYS["google"]

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script("openai", TransportError(503, "unavailable"), completion_body("recovered"))
        provider = registry.get_provider(ProviderConfig("openai"))
        response = await provider.chat_completion(_request())
        assert response.content == "recovered"
        assert transport.calls_to("openai") == 2
        assert provider.circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_validation_error_not_retried_and_not_counted(
        self, registry: ProviderRegistry, transport: FakeTransport
    ) -> None:
        transport.script("openai", *[TransportError(400, {"error": {"message": "bad"}})] * 5)
        provider = registry.get_provider(ProviderConfig("openai"))
        for _ in range(4):
            with pytest.raises(ValidationError) as info:
                await provider.chat_completion(_request())
            assert info.value.provider == "openai"
        assert transport.calls_to("openai") == 4
        assert provider.circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_exhausted_retries_trip_breaker(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        # failure_threshold=3, max_retries=2: three exhausted sequences open the circuit
        transport.script("openai", *[TransportError(502, "bad gateway")] * 9)
        provider = registry.get_provider(ProviderConfig("openai"))
        request = _request()
        for _ in range(3):
            with pytest.raises(UnknownProviderError) as info:
                await provider.chat_completion(request)
            assert info.value.attempts == 3
            assert info.value.request_id == request.request_id
        assert transport.calls_to("openai") == 9
        assert provider.circuit_breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await provider.chat_completion(request)
        assert transport.calls_to("openai") == 9
        assert provider.health().consecutive_failures == 4
        health = provider.health()
        assert health.circuit_state == "open"
        assert health.failures_by_code == {"UNKNOWN_PROVIDER_ERROR": 3, "CIRCUIT_OPEN": 1}

    @pytest.mark.asyncio
    async def test_breaker_recovers_after_timeout(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script("openai", *[TransportError(502, "bad gateway")] * 9)
        provider = registry.get_provider(ProviderConfig("openai"))
        for _ in range(3):
            with pytest.raises(UnknownProviderError):
                await provider.chat_completion(_request())
        await asyncio.sleep(0.25)
        response = await provider.chat_completion(_request())
        assert response.content == "from openai"
        assert provider.circuit_status().state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_timeout_error(self) -> None:
        transport = SlowTransport(delay=0.2)
        options = ProviderOptions(
            timeout_s=0.05,
            retry_policy=RetryPolicy(max_retries=0),
            base_urls={"openai": "http://openai.test/v1"},
        )
        provider = OpenAIProvider(ProviderConfig("openai", api_key="sk-test"), transport, options)
        with pytest.raises(ProviderTimeoutError) as info:
            await provider.chat_completion(_request())
        assert info.value.code == "TIMEOUT"
        assert info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_reset_circuit(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script("anthropic", *[NetworkError("reset")] * 9)
        provider = registry.get_provider(ProviderConfig("anthropic"))
        for _ in range(3):
            with pytest.raises(NetworkError):
                await provider.chat_completion(_request())
        assert provider.circuit_breaker.state == CircuitState.OPEN
        provider.reset_circuit()
        assert provider.circuit_breaker.state == CircuitState.CLOSED


# ═══════════════════════════════════════════════════════════════
#  Streaming
# ═══════════════════════════════════════════════════════════════
class TestStreaming:
    @pytest.mark.asyncio
    async def test_collects_until_end_marker(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script_stream("openai", ["Hel", "lo", "[DONE]", "ignored"])
        provider = registry.get_provider(ProviderConfig("openai"))
        stream = provider.stream_chat_completion(_request())
        assert await stream.collect() == "Hello"
        assert stream.closed
        assert transport.stream_closed == 1
        assert transport.calls[0][1]["stream"] is True

    @pytest.mark.asyncio
    async def test_final_chunk_is_done(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script_stream("google", ["a", "[DONE]"])
        provider = registry.get_provider(ProviderConfig("google"))
        chunks = [chunk async for chunk in provider.stream_chat_completion(_request())]
        assert [c.content for c in chunks] == ["a", ""]
        assert chunks[-1].done is True

    @pytest.mark.asyncio
    async def test_missing_end_marker_is_network_error(
        self, registry: ProviderRegistry, transport: FakeTransport
    ) -> None:
        transport.script_stream("openai", ["partial"])
        provider = registry.get_provider(ProviderConfig("openai"))
        stream = provider.stream_chat_completion(_request())
        assert (await stream.__anext__()).content == "partial"
        with pytest.raises(NetworkError):
            await stream.__anext__()
        assert stream.closed

    @pytest.mark.asyncio
    async def test_cancel_releases_transport(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script_stream("openai", ["one", "two", "three", "[DONE]"])
        provider = registry.get_provider(ProviderConfig("openai"))
        async with provider.stream_chat_completion(_request()) as stream:
            first = await stream.__anext__()
            assert first.content == "one"
        assert stream.closed
        assert transport.stream_closed == 1
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_empty_stream_fails(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script_stream("openai", [])
        provider = registry.get_provider(ProviderConfig("openai"))
        with pytest.raises(NetworkError):
            await provider.stream_chat_completion(_request()).collect()


# ═══════════════════════════════════════════════════════════════
#  Pricing, capabilities, images, health
# ═══════════════════════════════════════════════════════════════
class TestProviderExtras:
    def test_estimate_cost(self, registry: ProviderRegistry) -> None:
        provider = registry.get_provider(ProviderConfig("openai"))
        estimate = provider.estimate_cost(_request("x" * 400))
        assert estimate.input_tokens == 100
        assert estimate.output_tokens == 500
        assert estimate.input_cost == pytest.approx(0.00025)
        assert estimate.output_cost == pytest.approx(0.005)

    def test_local_is_free(self, registry: ProviderRegistry) -> None:
        provider = registry.get_provider(ProviderConfig("local"))
        assert provider.estimate_cost(_request("x" * 4000)).total == 0.0

    def test_available_models(self) -> None:
        assert "gpt-4o-mini" in OpenAIProvider.available_models()
        assert AnthropicProvider.validate_model("claude-3-5-sonnet-20241022")
        assert not AnthropicProvider.validate_model("gpt-4o")

    @pytest.mark.asyncio
    async def test_openai_generates_images(self, registry: ProviderRegistry, transport: FakeTransport) -> None:
        transport.script("openai", {"data": [{"url": "http://img.test/1.png"}, {"b64_json": "..."}]})
        provider = registry.get_provider(ProviderConfig("openai"))
        urls = await provider.generate_images("a lighthouse at dusk", n=2)
        assert urls == ["http://img.test/1.png"]
        endpoint, body, _ = transport.calls[0]
        assert endpoint.endswith("/images/generations")
        assert body["model"] == "dall-e-3"

    @pytest.mark.asyncio
    async def test_image_size_validated(self, registry: ProviderRegistry) -> None:
        provider = registry.get_provider(ProviderConfig("openai"))
        with pytest.raises(ValidationError):
            await provider.generate_images("cat", size="10x10")

    @pytest.mark.asyncio
    async def test_other_variants_reject_images(self, registry: ProviderRegistry) -> None:
        with pytest.raises(ValidationError):
            await registry.get_provider(ProviderConfig("anthropic")).generate_images("cat")

    @pytest.mark.asyncio
    async def test_health_check_reports_instead_of_raising(
        self, registry: ProviderRegistry, transport: FakeTransport
    ) -> None:
        transport.script("openai", TransportError(401, {"error": {"message": "invalid key"}}))
        report = await registry.get_provider(ProviderConfig("openai")).health_check()
        assert report.healthy is False
        assert report.error == "invalid key"
        assert report.circuit_state == "closed"

    @pytest.mark.asyncio
    async def test_health_check_is_bounded(self) -> None:
        options = ProviderOptions(health_timeout_s=0.05, base_urls={"local": "http://local.test/v1"})
        provider = LocalProvider(ProviderConfig("local"), SlowTransport(delay=0.5), options)
        report = await provider.health_check()
        assert report.healthy is False
        assert "timed out" in (report.error or "")
