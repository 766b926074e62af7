"""Pattern tier: recognises recurring developer-workflow prompts.

Only prompts matching a known pattern are stored here.  The key is the
stemmed semantic signature of the prompt plus the request "style" (model,
temperature, strategy, requirements and constraints), so rephrasings that
differ only in case, punctuation, filler words or inflection share an entry
while requests that could be routed differently never do.
"""

from __future__ import annotations

import hashlib
import re
import threading
import time
from collections import Counter
from dataclasses import dataclass, replace

from ai_orchestrator.cache.entry import CacheEntry, CacheTier
from ai_orchestrator.cache.keys import routing_style, semantic_signature
from ai_orchestrator.cache.memory import LRUStore
from ai_orchestrator.domain.enums import TTLClass
from ai_orchestrator.domain.models import CompletionRequest


@dataclass(frozen=True)
class PromptPattern:
    id: str
    name: str
    regex: re.Pattern[str]
    ttl_class: TTLClass


PROMPT_PATTERNS: tuple[PromptPattern, ...] = (
    PromptPattern(
        "code-review",
        "Code Review Request",
        re.compile(r"(?:review|analy[sz]e|check|audit|examine).{0,50}(?:code|function|component|class|module)", re.I),
        TTLClass.TEMPLATE,
    ),
    PromptPattern(
        "documentation",
        "Documentation Generation",
        re.compile(r"(?:document|explain|describe|generate docs|add comments|create readme)", re.I),
        TTLClass.STATIC,
    ),
    PromptPattern(
        "debugging",
        "Debugging Help",
        re.compile(r"(?:debug|fix|error|bug|issue|problem|troubleshoot|why.{0,20}not.{0,20}work)", re.I),
        TTLClass.USER_SPECIFIC,
    ),
    PromptPattern(
        "optimization",
        "Code Optimization",
        re.compile(r"(?:optimi[sz]e|improve|refactor|performance|faster|efficient|clean.{0,10}up)", re.I),
        TTLClass.TEMPLATE,
    ),
    PromptPattern(
        "api-docs",
        "API Documentation",
        re.compile(r"(?:api|endpoint|swagger|openapi|rest|graphql).{0,30}(?:document|spec|schema)", re.I),
        TTLClass.STATIC,
    ),
    PromptPattern(
        "testing",
        "Test Generation",
        re.compile(r"(?:unit test|integration test|\btests?\b|e2e|pytest|jest|cypress|playwright)", re.I),
        TTLClass.TEMPLATE,
    ),
    PromptPattern(
        "sql-query",
        "SQL Query Help",
        re.compile(r"\b(?:sql|query|database|select|insert|update|delete|join|where)\b", re.I),
        TTLClass.TEMPLATE,
    ),
)


def detect_pattern(text: str) -> PromptPattern | None:
    for pattern in PROMPT_PATTERNS:
        if pattern.regex.search(text):
            return pattern
    return None


class PatternTier(CacheTier):
    name = "pattern"

    def __init__(self, pattern_ttls: dict[TTLClass, float], max_entries: int = 500) -> None:
        self._ttls = pattern_ttls
        self._store = LRUStore(max_entries)
        self._hits: Counter[str] = Counter()
        self._lock = threading.Lock()

    def key_for(self, request: CompletionRequest) -> tuple[str, PromptPattern] | None:
        text = request.prompt_text
        pattern = detect_pattern(text)
        if pattern is None:
            return None
        signature = hashlib.sha256(semantic_signature(text).encode()).hexdigest()[:20]
        return f"pattern:{pattern.id}:{signature}:{routing_style(request)}", pattern

    async def get(self, request: CompletionRequest) -> CacheEntry | None:
        keyed = self.key_for(request)
        if keyed is None:
            return None
        key, pattern = keyed
        entry = self._store.get(key)
        if entry is not None:
            with self._lock:
                self._hits[pattern.id] += 1
        return entry

    async def set(self, request: CompletionRequest, entry: CacheEntry) -> None:
        keyed = self.key_for(request)
        if keyed is None:
            return
        key, pattern = keyed
        now = time.time()
        # Never outlive the request's own TTL class.
        ttl = min(entry.remaining_ttl(now), self._ttls[pattern.ttl_class])
        self._store.set(
            key, replace(entry, ttl_seconds=now - entry.cached_at + ttl, pattern_id=pattern.id)
        )

    async def invalidate(self, request: CompletionRequest) -> None:
        keyed = self.key_for(request)
        if keyed is not None:
            self._store.delete(keyed[0])

    async def clear(self) -> None:
        self._store.clear()
        with self._lock:
            self._hits.clear()

    def hits_by_pattern(self) -> dict[str, int]:
        with self._lock:
            return dict(self._hits)
