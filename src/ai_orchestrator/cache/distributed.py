"""Distributed tier on top of a ``CacheBackend``.

Keys are ``{namespace}:{semantic_key}:{content_hash[:16]}``.  Entries larger
than ``max_entry_bytes`` have long text fields capped before they are sent.
Backend failures are logged and treated as misses; they never reach callers.

With ``similarity_lookup`` enabled, each write also records the latest
exact key under ``{namespace}:semantic:{semantic_key}:{routing_style}`` and
an exact miss falls back to that entry.  Only requests that normalise to
the same text and would be routed identically share an index slot.  The pass is best-effort and off by default.
"""

from __future__ import annotations

import uuid

import structlog

from ai_orchestrator.cache.entry import CacheEntry, CacheTier
from ai_orchestrator.cache.keys import distributed_key, similarity_index_key
from ai_orchestrator.domain.exceptions import UnsupportedOperationError
from ai_orchestrator.domain.models import CompletionRequest
from ai_orchestrator.ports.outbound import CacheBackend

logger = structlog.get_logger(__name__)


class DistributedTier(CacheTier):
    name = "distributed"
    supports_key_invalidation = False

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str = "ai",
        max_entry_bytes: int = 1_048_576,
        text_cap_chars: int = 50_000,
        similarity_lookup: bool = False,
    ) -> None:
        self._backend = backend
        self._namespace = namespace
        self._max_entry_bytes = max_entry_bytes
        self._text_cap = text_cap_chars
        self._similarity = similarity_lookup

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    async def get(self, request: CompletionRequest) -> CacheEntry | None:
        key = distributed_key(self._namespace, request)
        entry = await self._load(key)
        if entry is None and self._similarity:
            index_key = similarity_index_key(self._namespace, request)
            try:
                similar = await self._backend.get(index_key)
            except Exception as exc:
                logger.warning("cache_backend_get_failed", key=index_key, error=str(exc))
                return None
            if similar:
                similar_key = similar.decode() if isinstance(similar, bytes) else similar
                entry = await self._load(similar_key)
                if entry is not None:
                    logger.debug("cache_similarity_hit", key=similar_key)
        return entry

    async def set(self, request: CompletionRequest, entry: CacheEntry) -> None:
        ttl = entry.remaining_ttl()
        if ttl <= 0:
            return
        stored = entry.truncated_to(self._max_entry_bytes, self._text_cap)
        if stored.truncated and not entry.truncated:
            logger.info("cache_entry_truncated", provider=entry.provider, model=entry.model)
        key = distributed_key(self._namespace, request)
        try:
            await self._backend.set(key, stored.to_bytes(), ttl_seconds=ttl)
            if self._similarity:
                await self._backend.set(
                    similarity_index_key(self._namespace, request),
                    key.encode(),
                    ttl_seconds=ttl,
                )
        except Exception as exc:
            logger.warning("cache_backend_set_failed", key=key, error=str(exc))

    async def invalidate(self, request: CompletionRequest) -> None:
        raise UnsupportedOperationError(
            "distributed tier supports bulk invalidation only; use clear()",
            request_id=request.request_id,
        )

    async def clear(self) -> None:
        try:
            await self._backend.flush_all()
        except Exception as exc:
            logger.warning("cache_backend_flush_failed", error=str(exc))

    async def health_check(self) -> bool:
        """Round-trip a sentinel key through the backend."""
        sentinel_key = f"{self._namespace}:health:{uuid.uuid4().hex}"
        try:
            await self._backend.set(sentinel_key, b"ok", ttl_seconds=60)
            value = await self._backend.get(sentinel_key)
            await self._backend.delete(sentinel_key)
        except Exception as exc:
            logger.warning("cache_backend_health_failed", error=str(exc))
            return False
        return value in (b"ok", "ok")

    async def _load(self, key: str) -> CacheEntry | None:
        try:
            raw = await self._backend.get(key)
        except Exception as exc:
            logger.warning("cache_backend_get_failed", key=key, error=str(exc))
            return None
        if not raw:
            return None
        try:
            entry = CacheEntry.from_bytes(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("cache_entry_corrupt", key=key, error=str(exc))
            return None
        return None if entry.is_expired() else entry
