"""Domain-specific caches for document processing and code review.

Keys combine a strong hash of the raw input with a hash of the processing
configuration, optionally scoped to a caller identity.  Inputs above the
configured size ceiling bypass the cache entirely.

Each cache is two-tiered: a small in-process LRU in front of the shared
backend.  Backend hits are copied into the LRU with their remaining TTL, and
unreadable backend values count as misses.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Mapping
from typing import Any

import orjson
import structlog

from ai_orchestrator.cache.entry import CacheEntry
from ai_orchestrator.cache.memory import LRUStore
from ai_orchestrator.domain.enums import TTLClass
from ai_orchestrator.ports.outbound import CacheBackend

logger = structlog.get_logger(__name__)


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _md5(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def _canonical(config: Mapping[str, Any] | None) -> bytes:
    return orjson.dumps(dict(config or {}), option=orjson.OPT_SORT_KEYS)


class _SpecializedCache:
    kind: str = "specialized"
    ttl_class: TTLClass = TTLClass.DEFAULT

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str,
        max_input_bytes: int,
        ttl_seconds: float,
        memory_max_entries: int = 100,
    ) -> None:
        self._backend = backend
        self._memory = LRUStore(memory_max_entries)
        self._namespace = namespace
        self._max_input = max_input_bytes
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._hits = 0
        self._memory_hits = 0
        self._misses = 0
        self._bypassed = 0

    def _cacheable(self, size: int) -> bool:
        if size > self._max_input:
            with self._lock:
                self._bypassed += 1
            logger.info("specialized_cache_bypassed", kind=self.kind, size=size, limit=self._max_input)
            return False
        return True

    # ── Tiered access ────────────────────────────────────────
    async def _get(self, key: str) -> dict[str, Any] | None:
        entry = self._memory.get(key)
        if entry is not None:
            self._count(hit=True, memory=True)
            return dict(entry.payload)
        entry = await self._load(key)
        if entry is None:
            self._count(hit=False)
            return None
        self._memory.set(key, entry)
        self._count(hit=True)
        return dict(entry.payload)

    async def _set(self, key: str, result: Mapping[str, Any]) -> None:
        entry = CacheEntry(
            payload=dict(result),
            cached_at=time.time(),
            ttl_seconds=self._ttl,
            ttl_class=self.ttl_class,
            provider=self.kind,
            model="",
            semantic_key=key,
        )
        self._memory.set(key, entry)
        try:
            await self._backend.set(key, entry.to_bytes(), ttl_seconds=self._ttl)
        except Exception as exc:
            logger.warning("cache_backend_set_failed", key=key, error=str(exc))

    async def _delete(self, key: str) -> bool:
        in_memory = self._memory.get(key) is not None
        self._memory.delete(key)
        try:
            removed = await self._backend.delete(key)
        except Exception as exc:
            logger.warning("cache_backend_delete_failed", key=key, error=str(exc))
            removed = 0
        return in_memory or removed > 0

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
        except (orjson.JSONDecodeError, ValueError, KeyError, TypeError) as exc:
            logger.warning("cache_entry_corrupt", kind=self.kind, key=key, error=str(exc))
            return None
        return None if entry.is_expired() else entry

    def _count(self, *, hit: bool, memory: bool = False) -> None:
        with self._lock:
            if hit:
                self._hits += 1
                if memory:
                    self._memory_hits += 1
            else:
                self._misses += 1

    def stats(self) -> dict[str, float]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "memory_hits": self._memory_hits,
                "misses": self._misses,
                "bypassed": self._bypassed,
                "memory_entries": len(self._memory),
                "hit_rate": self._hits / total if total else 0.0,
            }


class DocumentCache(_SpecializedCache):
    """Results of document (PDF) processing keyed by file content and model/style."""

    kind = "document"
    ttl_class = TTLClass.DOCUMENT

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str = "ai",
        max_input_bytes: int = 50 * 1024 * 1024,
        ttl_seconds: float = 48 * 3600.0,
        memory_max_entries: int = 100,
    ) -> None:
        super().__init__(
            backend,
            namespace=namespace,
            max_input_bytes=max_input_bytes,
            ttl_seconds=ttl_seconds,
            memory_max_entries=memory_max_entries,
        )

    def key(self, document: bytes, *, model: str, style: str = "default", user_id: str | None = None) -> str:
        content_hash = _sha256(document)[:16]
        config_hash = _sha256(_canonical({"model": model, "style": style}))[:8]
        scope = f":user:{user_id}" if user_id else ""
        return f"{self._namespace}:pdf:{content_hash}:{config_hash}{scope}"

    async def get(
        self, document: bytes, *, model: str, style: str = "default", user_id: str | None = None
    ) -> dict[str, Any] | None:
        if not self._cacheable(len(document)):
            return None
        return await self._get(self.key(document, model=model, style=style, user_id=user_id))

    async def set(
        self,
        document: bytes,
        result: Mapping[str, Any],
        *,
        model: str,
        style: str = "default",
        user_id: str | None = None,
    ) -> None:
        if not self._cacheable(len(document)):
            return
        await self._set(self.key(document, model=model, style=style, user_id=user_id), result)

    async def invalidate(
        self, document: bytes, *, model: str, style: str = "default", user_id: str | None = None
    ) -> bool:
        return await self._delete(self.key(document, model=model, style=style, user_id=user_id))


class CodeReviewCache(_SpecializedCache):
    """Code review results keyed by the trimmed source, review type and preferences."""

    kind = "code_review"
    ttl_class = TTLClass.STATIC

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str = "ai",
        max_input_bytes: int = 1024 * 1024,
        ttl_seconds: float = 48 * 3600.0,
        memory_max_entries: int = 100,
    ) -> None:
        super().__init__(
            backend,
            namespace=namespace,
            max_input_bytes=max_input_bytes,
            ttl_seconds=ttl_seconds,
            memory_max_entries=memory_max_entries,
        )

    def key(self, code: str, *, review_type: str, preferences: Mapping[str, Any] | None = None) -> str:
        code_hash = _sha256(code.strip().encode())[:16]
        type_hash = _md5(review_type.encode())[:8]
        pref_hash = _md5(_canonical(preferences))[:8]
        return f"{self._namespace}:code:{code_hash}:{type_hash}:{pref_hash}"

    async def get(
        self, code: str, *, review_type: str, preferences: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None:
        if not self._cacheable(len(code.encode())):
            return None
        return await self._get(self.key(code, review_type=review_type, preferences=preferences))

    async def set(
        self,
        code: str,
        result: Mapping[str, Any],
        *,
        review_type: str,
        preferences: Mapping[str, Any] | None = None,
    ) -> None:
        if not self._cacheable(len(code.encode())):
            return
        await self._set(self.key(code, review_type=review_type, preferences=preferences), result)

    async def invalidate(
        self, code: str, *, review_type: str, preferences: Mapping[str, Any] | None = None
    ) -> bool:
        return await self._delete(self.key(code, review_type=review_type, preferences=preferences))
