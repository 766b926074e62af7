"""Shared test fixtures."""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlparse

import pytest

from ai_orchestrator.adapters.outbound.cache import InMemoryCacheBackend
from ai_orchestrator.adapters.outbound.credentials import StaticCredentialStore
from ai_orchestrator.cache import CacheHierarchy, DistributedTier, MemoryTier, PatternTier, TTLPolicy
from ai_orchestrator.config import DEFAULT_TTL_SECONDS
from ai_orchestrator.orchestration import Orchestrator
from ai_orchestrator.ports.outbound import CacheBackend, ProviderTransport
from ai_orchestrator.providers import ProviderOptions, ProviderRegistry
from ai_orchestrator.shared.resilience import RetryPolicy
from ai_orchestrator.strategy import StrategyEngine

BASE_URLS = {
    "openai": "http://openai.test/v1",
    "anthropic": "http://anthropic.test/v1",
    "google": "http://google.test/v1",
    "local": "http://local.test/v1",
}

API_KEYS = {"openai": "sk-openai", "anthropic": "sk-anthropic", "google": "g-key"}


def completion_body(content: str = "hello", *, prompt_tokens: int = 10, completion_tokens: int = 20) -> dict[str, Any]:
    return {
        "id": "resp-1",
        "content": content,
        "finish_reason": "stop",
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


async def no_sleep(_: float) -> None:
    return None


class FakeTransport(ProviderTransport):
    """Scripted transport keyed by the provider encoded in the endpoint host.

    Each scripted outcome is either a response body or an exception to raise;
    once a provider's script runs out, ``default`` bodies are returned.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any], dict[str, str]]] = []
        self._scripts: dict[str, deque[Any]] = defaultdict(deque)
        self._streams: dict[str, list[Any]] = {}
        self.stream_closed = 0

    @staticmethod
    def provider_of(endpoint: str) -> str:
        return (urlparse(endpoint).hostname or "").split(".")[0]

    def script(self, provider: str, *outcomes: Any) -> None:
        self._scripts[provider].extend(outcomes)

    def script_stream(self, provider: str, items: list[Any]) -> None:
        self._streams[provider] = items

    def calls_to(self, provider: str) -> int:
        return sum(1 for endpoint, _, _ in self.calls if self.provider_of(endpoint) == provider)

    async def send(self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]) -> dict[str, Any]:
        provider = self.provider_of(endpoint)
        self.calls.append((endpoint, body, headers))
        script = self._scripts[provider]
        outcome = script.popleft() if script else completion_body(f"from {provider}")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def stream(
        self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]
    ) -> AsyncIterator[str]:
        provider = self.provider_of(endpoint)
        self.calls.append((endpoint, body, headers))
        try:
            for item in self._streams.get(provider, ["[DONE]"]):
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.stream_closed += 1


class FailingBackend(CacheBackend):
    """Backend whose every operation raises."""

    async def get(self, key: str) -> bytes | None:
        raise ConnectionError("backend down")

    async def set(self, key: str, value: bytes, *, ttl_seconds: float | None = None) -> None:
        raise ConnectionError("backend down")

    async def delete(self, *keys: str) -> int:
        raise ConnectionError("backend down")

    async def exists(self, key: str) -> bool:
        raise ConnectionError("backend down")

    async def flush_all(self) -> None:
        raise ConnectionError("backend down")


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def provider_options() -> ProviderOptions:
    return ProviderOptions(
        timeout_s=2.0,
        health_timeout_s=0.5,
        retry_policy=RetryPolicy(max_retries=2, base_delay=0.01, max_delay=0.05, jitter=False),
        failure_threshold=3,
        recovery_timeout=0.2,
        base_urls=dict(BASE_URLS),
        sleep=no_sleep,
    )


@pytest.fixture
def registry(transport: FakeTransport, provider_options: ProviderOptions) -> ProviderRegistry:
    return ProviderRegistry(
        transport,
        credentials=StaticCredentialStore(API_KEYS),
        options=provider_options,
    )


@pytest.fixture
def backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


def make_hierarchy(backend: CacheBackend, ttls: dict | None = None) -> CacheHierarchy:
    ttl_seconds = {**DEFAULT_TTL_SECONDS, **(ttls or {})}
    return CacheHierarchy(
        [
            PatternTier(ttl_seconds),
            MemoryTier(max_entries=100),
            DistributedTier(backend, namespace="test"),
        ],
        TTLPolicy(ttl_seconds),
    )


@pytest.fixture
def hierarchy(backend: InMemoryCacheBackend) -> CacheHierarchy:
    return make_hierarchy(backend)


@pytest.fixture
def orchestrator(registry: ProviderRegistry, hierarchy: CacheHierarchy) -> Orchestrator:
    return Orchestrator(registry, StrategyEngine(), hierarchy)
