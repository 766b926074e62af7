"""Cache backend adapters implementing ``CacheBackend``.

``RedisCacheBackend`` is the distributed store; ``InMemoryCacheBackend`` is
the stand-in used when no Redis URL is configured (and in tests).
"""

from __future__ import annotations

import threading
import time

import redis.asyncio as redis
import structlog

from ai_orchestrator.ports.outbound import CacheBackend

logger = structlog.get_logger(__name__)


class InMemoryCacheBackend(CacheBackend):
    """Process-local key-value store with per-key expiry."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()
        logger.info("cache_backend_initialized_memory")

    def _expired(self, key: str) -> bool:
        """Caller must hold lock."""
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self._data.pop(key, None)
            self._expiry.pop(key, None)
            return True
        return False

    async def get(self, key: str) -> bytes | None:
        with self._lock:
            if self._expired(key):
                return None
            return self._data.get(key)

    async def set(self, key: str, value: bytes, *, ttl_seconds: float | None = None) -> None:
        with self._lock:
            self._data[key] = value
            if ttl_seconds:
                self._expiry[key] = time.monotonic() + ttl_seconds
            else:
                self._expiry.pop(key, None)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        with self._lock:
            for key in keys:
                if not self._expired(key) and self._data.pop(key, None) is not None:
                    deleted += 1
                self._expiry.pop(key, None)
        return deleted

    async def exists(self, key: str) -> bool:
        with self._lock:
            return not self._expired(key) and key in self._data

    async def flush_all(self) -> None:
        with self._lock:
            self._data.clear()
            self._expiry.clear()


class RedisCacheBackend(CacheBackend):
    """Async Redis adapter.

    ``flush_pattern`` scopes ``flush_all`` to matching keys (e.g. ``"ai:*"``);
    without it the whole logical database is flushed.
    """

    def __init__(
        self,
        url: str,
        *,
        max_connections: int = 50,
        flush_pattern: str | None = None,
    ) -> None:
        self._pool = redis.ConnectionPool.from_url(url, max_connections=max_connections)
        self._client = redis.Redis(connection_pool=self._pool)
        self._flush_pattern = flush_pattern
        logger.info("cache_backend_initialized_redis", max_connections=max_connections)

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._client.get(key)  # type: ignore[no-any-return]
        except redis.RedisError as exc:
            logger.error("redis_get_error", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: bytes, *, ttl_seconds: float | None = None) -> None:
        try:
            if ttl_seconds:
                await self._client.set(key, value, px=max(1, int(ttl_seconds * 1000)))
            else:
                await self._client.set(key, value)
        except redis.RedisError as exc:
            logger.error("redis_set_error", key=key, error=str(exc))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*keys))
        except redis.RedisError as exc:
            logger.error("redis_delete_error", keys=list(keys), error=str(exc))
            return 0

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except redis.RedisError as exc:
            logger.error("redis_exists_error", key=key, error=str(exc))
            return False

    async def flush_all(self) -> None:
        try:
            if self._flush_pattern is None:
                await self._client.flushdb()
                return
            batch: list[bytes] = []
            async for key in self._client.scan_iter(match=self._flush_pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    await self._client.delete(*batch)
                    batch.clear()
            if batch:
                await self._client.delete(*batch)
        except redis.RedisError as exc:
            logger.error("redis_flush_error", pattern=self._flush_pattern, error=str(exc))

    async def close(self) -> None:
        await self._client.aclose()
        await self._pool.aclose()
