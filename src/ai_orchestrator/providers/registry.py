"""Provider registry: builds and caches one instance per (provider, model).

The registry is owned by the composition root; there is no process-wide
instance.  Instance creation is guarded by a lock so concurrent callers never
construct duplicates for the same key.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable

import structlog

from ai_orchestrator.domain.enums import ProviderName
from ai_orchestrator.domain.exceptions import AuthenticationFailedError, ConfigurationError
from ai_orchestrator.domain.models import HealthReport
from ai_orchestrator.ports.outbound import CredentialStore, ProviderTransport
from ai_orchestrator.providers.anthropic import AnthropicProvider
from ai_orchestrator.providers.base import BaseProvider, ProviderConfig, ProviderOptions
from ai_orchestrator.providers.google import GoogleProvider
from ai_orchestrator.providers.local import LocalProvider
from ai_orchestrator.providers.openai import OpenAIProvider
from ai_orchestrator.shared.errors import describe_error

logger = structlog.get_logger(__name__)

ProviderFactory = Callable[[ProviderConfig, ProviderTransport, ProviderOptions], BaseProvider]

BUILTIN_PROVIDERS: dict[ProviderName, ProviderFactory] = {
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
    ProviderName.GOOGLE: GoogleProvider,
    ProviderName.LOCAL: LocalProvider,
}

HEALTH_CHECK_PLACEHOLDER_KEY = "test"


class ProviderRegistry:
    """Factory map plus a lock-guarded instance cache."""

    def __init__(
        self,
        transport: ProviderTransport,
        *,
        credentials: CredentialStore | None = None,
        options: ProviderOptions | None = None,
        register_builtins: bool = True,
    ) -> None:
        self._transport = transport
        self._credentials = credentials
        self._options = options or ProviderOptions()
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, BaseProvider] = {}
        self._lock = threading.Lock()
        if register_builtins:
            for name, factory in BUILTIN_PROVIDERS.items():
                self.register(name.value, factory)

    # ── Factories ────────────────────────────────────────────
    def register(self, provider: str, factory: ProviderFactory) -> None:
        with self._lock:
            self._factories[provider] = factory
        logger.debug("provider_factory_registered", provider=provider)

    def get_registered_providers(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def supports(self, provider: str) -> bool:
        with self._lock:
            return provider in self._factories

    def accepts_model(self, provider: str, model: str) -> bool:
        """Whether the registered variant for ``provider`` serves ``model``."""
        with self._lock:
            factory = self._factories.get(provider)
        validate = getattr(factory, "validate_model", None)
        return bool(validate and validate(model))

    # ── Instances ────────────────────────────────────────────
    def get_provider(self, config: ProviderConfig) -> BaseProvider:
        """Return the cached instance for ``config``, creating it on first use.

        Supplying ``config.api_key`` always builds a fresh instance (and
        replaces the cached one) so rotated credentials take effect.

        Raises:
            ConfigurationError: No factory is registered for the provider.
            AuthenticationFailedError: The provider needs a credential and
                none was supplied or resolvable.
        """
        with self._lock:
            factory = self._factories.get(config.provider)
            if factory is None:
                raise ConfigurationError(
                    f"Unknown provider: {config.provider}", provider=config.provider
                )
            cache_key = self._cache_key(config, factory)
            if config.api_key is None and cache_key in self._instances:
                return self._instances[cache_key]

            api_key = config.api_key
            if api_key is None and self._credentials is not None:
                api_key = self._credentials.resolve(config.provider)
            instance = factory(
                ProviderConfig(config.provider, config.model, api_key),
                self._transport,
                self._options,
            )
            if instance.requires_credential and not api_key:
                raise AuthenticationFailedError(
                    f"No credential configured for {config.provider}", provider=config.provider
                )
            self._instances[instance.key] = instance
            logger.info("provider_instance_created", provider=instance.key)
            return instance

    def cached_instances(self) -> list[BaseProvider]:
        with self._lock:
            return list(self._instances.values())

    def clear_cache(self) -> None:
        with self._lock:
            self._instances.clear()
        logger.info("provider_cache_cleared")

    async def health_check_all(self) -> dict[str, HealthReport]:
        """Check every registered provider with a throwaway instance.

        A failing provider is reported unhealthy; it never aborts the rest.
        """
        with self._lock:
            factories = dict(self._factories)

        async def _check(provider: str, factory: ProviderFactory) -> HealthReport:
            try:
                instance = factory(
                    ProviderConfig(provider, None, HEALTH_CHECK_PLACEHOLDER_KEY),
                    self._transport,
                    self._options,
                )
                return await instance.health_check()
            except Exception as exc:
                logger.warning("provider_health_check_failed", provider=provider, error=str(exc))
                return HealthReport(
                    provider=provider,
                    model="",
                    healthy=False,
                    latency_ms=0.0,
                    circuit_state="unknown",
                    error=describe_error(exc)["message"],
                )

        reports = await asyncio.gather(*(_check(p, f) for p, f in factories.items()))
        return {report.provider: report for report in reports}

    @staticmethod
    def _cache_key(config: ProviderConfig, factory: ProviderFactory) -> str:
        model = config.model or getattr(factory, "default_model", "") or ""
        return f"{config.provider}-{model}"
