"""In-process LRU store with per-entry expiry, and the memory tier built on it."""

from __future__ import annotations

import threading
from collections import OrderedDict

from ai_orchestrator.cache.entry import CacheEntry, CacheTier
from ai_orchestrator.cache.keys import exact_key
from ai_orchestrator.domain.models import CompletionRequest


class LRUStore:
    """Thread-safe ordered map; evicts least recently used beyond ``max_entries``."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._max = max_entries
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._data[key] = entry
            self._data.move_to_end(key)
            while len(self._data) > self._max:
                self._data.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class MemoryTier(CacheTier):
    """Exact-match tier keyed by the request content hash."""

    name = "memory"

    def __init__(self, max_entries: int = 1000) -> None:
        self._store = LRUStore(max_entries)

    async def get(self, request: CompletionRequest) -> CacheEntry | None:
        return self._store.get(exact_key(request))

    async def set(self, request: CompletionRequest, entry: CacheEntry) -> None:
        self._store.set(exact_key(request), entry)

    async def invalidate(self, request: CompletionRequest) -> None:
        self._store.delete(exact_key(request))

    async def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
