"""Cache key derivation.

* exact key     - sha256 over the request's semantically relevant fields
* semantic key  - sha256 over lowercased message text with filler phrases
                  and punctuation removed (first 12 hex chars)
* pattern signature - semantic normalization plus crude suffix stemming
* routing style  - sha256 over everything but the messages (and max_tokens):
                  two requests with the same style are routed identically
"""

from __future__ import annotations

import hashlib
import re

import orjson

from ai_orchestrator.domain.models import CompletionRequest

_FILLERS = re.compile(r"\b(please|can you|could you|would you|help me)\b")
_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")
_SUFFIXES = ("ization", "ations", "ation", "ing", "ies", "ed", "es", "ly", "s")


def normalize_text(text: str) -> str:
    text = _FILLERS.sub("", text.lower())
    text = _PUNCTUATION.sub("", _WHITESPACE.sub(" ", text))
    return _WHITESPACE.sub(" ", text).strip()


def stem(word: str) -> str:
    for suffix in _SUFFIXES:
        if len(word) > len(suffix) + 2 and word.endswith(suffix):
            return word[: -len(suffix)]
    return word


def semantic_signature(text: str) -> str:
    return " ".join(stem(w) for w in normalize_text(text).split())


def semantic_key(request: CompletionRequest) -> str:
    content = " ".join(m.content.strip() for m in request.messages)
    return hashlib.sha256(normalize_text(content).encode()).hexdigest()[:12]


def exact_key(request: CompletionRequest) -> str:
    return request.fingerprint


def distributed_key(namespace: str, request: CompletionRequest) -> str:
    return f"{namespace}:{semantic_key(request)}:{exact_key(request)[:16]}"


def routing_style(request: CompletionRequest) -> str:
    canonical = request.canonical()
    canonical.pop("messages")
    canonical["params"].pop("max_tokens", None)
    return hashlib.sha256(orjson.dumps(canonical, option=orjson.OPT_SORT_KEYS)).hexdigest()[:16]


def similarity_index_key(namespace: str, request: CompletionRequest) -> str:
    return f"{namespace}:semantic:{semantic_key(request)}:{routing_style(request)}"
