"""Cache entry and the tier contract every cache layer implements."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any

import orjson

from ai_orchestrator.domain.enums import TTLClass
from ai_orchestrator.domain.models import CompletionRequest

TRUNCATION_MARKER = "...[truncated for cache]"


@dataclass(frozen=True)
class CacheEntry:
    """A cached provider response plus its cache metadata.

    Attributes:
        payload:      ``CompletionResponse.to_dict()`` of the served answer.
        cached_at:    Wall-clock time of the original write.
        ttl_seconds:  Lifetime counted from ``cached_at``.
        ttl_class:    Heuristic bucket that chose ``ttl_seconds``.
        semantic_key: Normalized-content hash shared by near-identical prompts.
        truncated:    Text fields were capped before storage.
        pattern_id:   Developer-workflow pattern the prompt matched, if any.
    """

    payload: dict[str, Any]
    cached_at: float
    ttl_seconds: float
    ttl_class: TTLClass
    provider: str
    model: str
    semantic_key: str
    truncated: bool = False
    pattern_id: str | None = None

    @property
    def expires_at(self) -> float:
        return self.cached_at + self.ttl_seconds

    def remaining_ttl(self, now: float | None = None) -> float:
        return max(0.0, self.expires_at - (time.time() if now is None else now))

    def is_expired(self, now: float | None = None) -> bool:
        return self.remaining_ttl(now) <= 0

    def to_bytes(self) -> bytes:
        return orjson.dumps(
            {
                "payload": self.payload,
                "cached_at": self.cached_at,
                "ttl_seconds": self.ttl_seconds,
                "ttl_class": self.ttl_class.value,
                "provider": self.provider,
                "model": self.model,
                "semantic_key": self.semantic_key,
                "truncated": self.truncated,
                "pattern_id": self.pattern_id,
            }
        )

    @classmethod
    def from_bytes(cls, raw: bytes | str) -> CacheEntry:
        data = orjson.loads(raw)
        return cls(
            payload=data["payload"],
            cached_at=float(data["cached_at"]),
            ttl_seconds=float(data["ttl_seconds"]),
            ttl_class=TTLClass(data["ttl_class"]),
            provider=data["provider"],
            model=data["model"],
            semantic_key=data["semantic_key"],
            truncated=bool(data.get("truncated", False)),
            pattern_id=data.get("pattern_id"),
        )

    def truncated_to(self, max_bytes: int, text_cap: int) -> CacheEntry:
        """Copy with long strings capped when the serialized entry exceeds ``max_bytes``."""
        if len(self.to_bytes()) <= max_bytes:
            return self
        payload, changed = _cap_strings(self.payload, text_cap)
        if not changed:
            return self
        return replace(self, payload=payload, truncated=True)


def _cap_strings(value: Any, cap: int) -> tuple[Any, bool]:
    if isinstance(value, str):
        if len(value) > cap:
            return value[:cap] + TRUNCATION_MARKER, True
        return value, False
    if isinstance(value, dict):
        changed = False
        out: dict[str, Any] = {}
        for k, v in value.items():
            out[k], c = _cap_strings(v, cap)
            changed = changed or c
        return out, changed
    if isinstance(value, list):
        changed = False
        items = []
        for v in value:
            item, c = _cap_strings(v, cap)
            items.append(item)
            changed = changed or c
        return items, changed
    return value, False


class CacheTier(ABC):
    """One layer of the cache hierarchy."""

    name: str
    #: Whether single entries can be removed; otherwise only ``clear`` works.
    supports_key_invalidation: bool = True

    @abstractmethod
    async def get(self, request: CompletionRequest) -> CacheEntry | None: ...

    @abstractmethod
    async def set(self, request: CompletionRequest, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def invalidate(self, request: CompletionRequest) -> None:
        """Drop the entry for ``request``; bulk-only tiers raise ``UnsupportedOperationError``."""

    @abstractmethod
    async def clear(self) -> None: ...
