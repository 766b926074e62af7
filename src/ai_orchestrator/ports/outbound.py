"""Outbound ports: interfaces that infrastructure adapters must implement.

The orchestration core depends only on these abstractions, never on a
concrete HTTP client, cache server or secret store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any


class TransportError(Exception):
    """Raw failure reported by a transport, before taxonomy mapping.

    Attributes:
        status:  HTTP-like status code (``None`` for connection-level errors).
        data:    Decoded error body, if any.
        headers: Response headers (used for ``retry-after``).
    """

    def __init__(
        self,
        status: int | None,
        data: Any = None,
        *,
        message: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status = status
        self.data = data
        self.headers = headers or {}
        super().__init__(message or f"transport error (status={status})")


# ═══════════════════════════════════════════════════════════════
#  Provider transport port
# ═══════════════════════════════════════════════════════════════
class ProviderTransport(ABC):
    """Carries a normalized request body to a provider endpoint.

    ``send`` returns a normalized body::

        {"id", "content", "finish_reason", "usage": {"prompt_tokens", "completion_tokens"}}

    ``stream`` yields text deltas and finally the literal ``"[DONE]"``.
    """

    @abstractmethod
    async def send(
        self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]
    ) -> dict[str, Any]: ...

    @abstractmethod
    def stream(
        self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]
    ) -> AsyncIterator[str]: ...

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
#  Cache backend port
# ═══════════════════════════════════════════════════════════════
class CacheBackend(ABC):
    """String key-value store with per-key TTL (seconds, fractional allowed)."""

    @abstractmethod
    async def get(self, key: str) -> bytes | str | None: ...

    @abstractmethod
    async def set(self, key: str, value: bytes, *, ttl_seconds: float | None = None) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Remove ``keys``; returns how many were present."""

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def flush_all(self) -> None: ...

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
#  Credential port
# ═══════════════════════════════════════════════════════════════
class CredentialStore(ABC):
    """Resolves the API credential for a provider; ``None`` when unset."""

    @abstractmethod
    def resolve(self, provider: str) -> str | None: ...
