"""Content-driven TTL classification.

Rules are checked in order; the first match wins:

1. document   - mentions a PDF/document, or the text is longer than 5000 chars
2. template   - review / summary / analyze phrasing
3. user       - personal phrasing ("my", "personal")
4. dynamic    - freshness phrasing ("current", "latest", "now")
5. default
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from ai_orchestrator.domain.enums import TTLClass
from ai_orchestrator.domain.models import CompletionRequest

DOCUMENT_LENGTH_THRESHOLD = 5000

_RULES: tuple[tuple[TTLClass, re.Pattern[str]], ...] = (
    (TTLClass.DOCUMENT, re.compile(r"\b(pdf|documents?)\b", re.IGNORECASE)),
    (TTLClass.TEMPLATE, re.compile(r"\b(review|summary|summari[sz]e|analy[sz]e)\b", re.IGNORECASE)),
    (TTLClass.USER_SPECIFIC, re.compile(r"\b(my|personal)\b", re.IGNORECASE)),
    (TTLClass.DYNAMIC, re.compile(r"\b(current|latest|now)\b", re.IGNORECASE)),
)


def classify(text: str) -> TTLClass:
    if len(text) > DOCUMENT_LENGTH_THRESHOLD:
        return TTLClass.DOCUMENT
    for ttl_class, pattern in _RULES:
        if pattern.search(text):
            return ttl_class
    return TTLClass.DEFAULT


class TTLPolicy:
    def __init__(self, ttls: Mapping[TTLClass, float]) -> None:
        missing = set(TTLClass) - set(ttls)
        if missing:
            raise ValueError(f"missing TTLs for {sorted(c.value for c in missing)}")
        self._ttls = dict(ttls)

    def seconds(self, ttl_class: TTLClass) -> float:
        return self._ttls[ttl_class]

    def for_request(self, request: CompletionRequest) -> tuple[TTLClass, float]:
        ttl_class = classify(request.prompt_text)
        return ttl_class, self._ttls[ttl_class]
