"""Core value objects passed between the orchestration layers.

Requests are immutable.  Their ``fingerprint`` covers only semantically
relevant fields so that two requests differing only in correlation id or
creation time hash to the same cache key.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import orjson

from ai_orchestrator.domain.enums import (
    Capability,
    MessageRole,
    PrivacyTier,
    ProviderName,
    Strategy,
)


@dataclass(frozen=True)
class Message:
    role: MessageRole
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class CompletionParams:
    """Provider call parameters.

    Attributes:
        model:       Explicit model id; ``None`` lets the ranked descriptor decide.
        temperature: Sampling temperature.
        max_tokens:  Output ceiling; also drives ``estimate_cost``.
        tools:       Tool definitions forwarded verbatim to the transport.
        stream:      Whether the caller asked for a streaming response.
    """

    model: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    tools: tuple[dict[str, Any], ...] = ()
    stream: bool = False


@dataclass(frozen=True)
class Requirements:
    """What the request needs from a provider."""

    capabilities: frozenset[Capability] = frozenset()
    privacy: PrivacyTier = PrivacyTier.PUBLIC
    min_quality: float = 0.0


@dataclass(frozen=True)
class Constraints:
    """Caller-imposed limits on candidate providers.

    ``max_cost`` is USD per 1k tokens (blended input/output);
    ``max_latency_ms`` is the descriptor's average latency.  Both are ignored
    for providers listed in ``preferred_providers``.
    """

    max_cost: float | None = None
    max_latency_ms: float | None = None
    preferred_providers: tuple[str, ...] = ()
    excluded_providers: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompletionRequest:
    messages: tuple[Message, ...]
    params: CompletionParams = field(default_factory=CompletionParams)
    strategy: Strategy | None = None
    requirements: Requirements = field(default_factory=Requirements)
    constraints: Constraints = field(default_factory=Constraints)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> CompletionRequest:
        return cls(messages=(Message(MessageRole.USER, prompt),), **kwargs)

    @property
    def prompt_text(self) -> str:
        """Concatenated message contents, used by content heuristics."""
        return "\n".join(m.content for m in self.messages)

    @property
    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == MessageRole.USER:
                return message.content
        return self.messages[-1].content if self.messages else ""

    def canonical(self) -> dict[str, Any]:
        """Semantically relevant fields only; excludes request id and timestamp."""
        return {
            "messages": [m.to_dict() for m in self.messages],
            "params": {
                "model": self.params.model,
                "temperature": self.params.temperature,
                "max_tokens": self.params.max_tokens,
                "tools": list(self.params.tools),
            },
            "strategy": self.strategy.value if self.strategy else None,
            "requirements": {
                "capabilities": sorted(c.value for c in self.requirements.capabilities),
                "privacy": self.requirements.privacy.value,
                "min_quality": self.requirements.min_quality,
            },
            "constraints": {
                "max_cost": self.constraints.max_cost,
                "max_latency_ms": self.constraints.max_latency_ms,
                "preferred": sorted(self.constraints.preferred_providers),
                "excluded": sorted(self.constraints.excluded_providers),
            },
        }

    @property
    def fingerprint(self) -> str:
        payload = orjson.dumps(self.canonical(), option=orjson.OPT_SORT_KEYS)
        return hashlib.sha256(payload).hexdigest()


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static catalogue entry for one provider/model pair.

    Attributes:
        name:            Provider variant.
        model:           Default model id served by this entry.
        capabilities:    Declared capability set.
        cost_per_1k_input:  USD per 1k prompt tokens.
        cost_per_1k_output: USD per 1k completion tokens.
        avg_latency_ms:  Typical end-to-end latency.
        quality:         Subjective quality score, 0-100.
        privacy:         Data-handling tier.
    """

    name: ProviderName
    model: str
    capabilities: frozenset[Capability]
    cost_per_1k_input: float
    cost_per_1k_output: float
    avg_latency_ms: float
    quality: float
    privacy: PrivacyTier

    @property
    def blended_cost_per_1k(self) -> float:
        return (self.cost_per_1k_input + self.cost_per_1k_output) / 2

    @property
    def key(self) -> str:
        return f"{self.name.value}-{self.model}"


@dataclass(frozen=True)
class RankedCandidate:
    descriptor: ProviderDescriptor
    score: float
    rationale: str


@dataclass(frozen=True)
class ProviderDecision:
    """Output of ``StrategyEngine.determine``: primary first, then fallbacks."""

    primary: RankedCandidate
    fallbacks: tuple[RankedCandidate, ...]
    complexity: str
    required_capabilities: frozenset[Capability]

    @property
    def ranked(self) -> tuple[RankedCandidate, ...]:
        return (self.primary, *self.fallbacks)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class CompletionResponse:
    id: str
    provider: str
    model: str
    content: str
    finish_reason: str = "stop"
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "model": self.model,
            "content": self.content,
            "finish_reason": self.finish_reason,
            "usage": {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
            },
            "tool_calls": list(self.tool_calls),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompletionResponse:
        usage = data.get("usage") or {}
        return cls(
            id=str(data.get("id", "")),
            provider=str(data.get("provider", "")),
            model=str(data.get("model", "")),
            content=str(data.get("content", "")),
            finish_reason=str(data.get("finish_reason", "stop")),
            usage=TokenUsage(
                prompt_tokens=int(usage.get("prompt_tokens", 0)),
                completion_tokens=int(usage.get("completion_tokens", 0)),
            ),
            tool_calls=tuple(data.get("tool_calls") or ()),
        )


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streamed completion; ``done`` marks the end."""

    content: str = ""
    done: bool = False
    finish_reason: str | None = None


@dataclass(frozen=True)
class CostEstimate:
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float

    @property
    def total(self) -> float:
        return self.input_cost + self.output_cost


@dataclass(frozen=True)
class CostSummary:
    """Cost of the served call plus savings against the priciest candidate."""

    estimated: float
    input_cost: float
    output_cost: float
    savings: float
    efficiency: float


@dataclass(frozen=True)
class PerformanceSummary:
    elapsed_ms: float
    tokens_per_second: float
    total_tokens: int


@dataclass(frozen=True)
class ConfidenceSummary:
    overall: float
    factors: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class OrchestrationResult:
    response: CompletionResponse
    provider: str
    model: str
    request_id: str
    attempted_providers: tuple[str, ...] = ()
    used_fallback: bool = False
    cache_hit: bool = False
    cache_tier: str | None = None
    elapsed_ms: float = 0.0
    cost: CostSummary | None = None
    performance: PerformanceSummary | None = None
    confidence: ConfidenceSummary | None = None


@dataclass(frozen=True)
class WorkflowStep:
    """One step of a sequential workflow.

    ``prompt`` may reference earlier outputs as ``{{step_id.output}}``.
    """

    id: str
    prompt: str
    strategy: Strategy | None = None
    requirements: Requirements | None = None
    constraints: Constraints | None = None


@dataclass(frozen=True)
class HealthReport:
    """Result of a bounded provider health check."""

    provider: str
    model: str
    healthy: bool
    latency_ms: float
    circuit_state: str
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
