"""Domain enumerations for the orchestration core."""

from __future__ import annotations

import enum


class ProviderName(str, enum.Enum):
    """Closed set of provider variants the registry knows how to build."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    LOCAL = "local"


class MessageRole(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Strategy(str, enum.Enum):
    """Named scoring policy used to rank candidate providers."""

    COST_OPTIMIZED = "cost_optimized"
    PERFORMANCE = "performance"
    PRIVACY_FIRST = "privacy_first"
    BALANCED = "balanced"


class Capability(str, enum.Enum):
    CHAT = "chat"
    REASONING = "reasoning"
    VISION = "vision"
    TOOLS = "tools"
    CODING = "coding"
    CREATIVE = "creative"
    ANALYSIS = "analysis"


class PrivacyTier(str, enum.Enum):
    """Data-handling tier declared by a provider (and demanded by a request)."""

    PUBLIC = "public"
    PRIVATE = "private"
    REGULATED = "regulated"

    @property
    def rank(self) -> int:
        return _PRIVACY_RANK[self]


_PRIVACY_RANK: dict[PrivacyTier, int] = {
    PrivacyTier.PUBLIC: 0,
    PrivacyTier.PRIVATE: 1,
    PrivacyTier.REGULATED: 2,
}


class Complexity(str, enum.Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class TTLClass(str, enum.Enum):
    """Heuristic bucket that decides how long a cached answer lives."""

    DOCUMENT = "document"
    TEMPLATE = "template"
    USER_SPECIFIC = "user_specific"
    DYNAMIC = "dynamic"
    STATIC = "static"
    DEFAULT = "default"
