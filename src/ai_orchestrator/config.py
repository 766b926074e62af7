"""AI Orchestrator: Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ai_orchestrator.domain.enums import Strategy, TTLClass


DEFAULT_TTL_SECONDS: dict[TTLClass, float] = {
    TTLClass.DOCUMENT: 48 * 3600.0,
    TTLClass.STATIC: 24 * 3600.0,
    TTLClass.TEMPLATE: 6 * 3600.0,
    TTLClass.USER_SPECIFIC: 3600.0,
    TTLClass.DYNAMIC: 15 * 60.0,
    TTLClass.DEFAULT: 2 * 3600.0,
}


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "ai-orchestrator"
    app_env: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"

    # ── Credentials ──────────────────────────────────────────
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""
    local_api_key: str = ""

    # ── Provider endpoints ───────────────────────────────────
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    local_base_url: str = "http://localhost:11434/v1"

    # ── Resilience ───────────────────────────────────────────
    provider_timeout_seconds: float = 30.0
    health_check_timeout_seconds: float = 10.0
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_multiplier: float = 2.0
    retry_jitter: bool = True
    retry_extra_codes: list[str] = Field(default_factory=list)
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout: float = 60.0

    # ── Strategy ─────────────────────────────────────────────
    default_strategy: Strategy = Strategy.BALANCED
    preferred_provider_bonus: float = 20.0

    # ── Cache ────────────────────────────────────────────────
    redis_url: str = ""
    redis_max_connections: int = 50
    cache_namespace: str = "ai"
    cache_memory_max_entries: int = 1000
    cache_pattern_max_entries: int = 500
    cache_max_entry_bytes: int = 1_048_576
    cache_text_cap_chars: int = 50_000
    cache_similarity_lookup: bool = False
    cache_ttl_seconds: dict[TTLClass, float] = Field(
        default_factory=lambda: dict(DEFAULT_TTL_SECONDS)
    )
    document_cache_max_bytes: int = 50 * 1024 * 1024
    code_review_cache_max_bytes: int = 1024 * 1024
    code_review_ttl_seconds: float = 48 * 3600.0

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("redis_url")
    @classmethod
    def _validate_redis_url(cls, v: str) -> str:
        if v and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must start with 'redis://', 'rediss://' or 'unix://'")
        return v

    @field_validator("cache_ttl_seconds")
    @classmethod
    def _fill_ttl_defaults(cls, v: dict[TTLClass, float]) -> dict[TTLClass, float]:
        merged = {**DEFAULT_TTL_SECONDS, **v}
        if any(ttl <= 0 for ttl in merged.values()):
            raise ValueError("cache TTLs must be positive")
        return merged

    @model_validator(mode="after")
    def _check_resilience_bounds(self) -> Settings:
        if self.retry_base_delay > self.retry_max_delay:
            raise ValueError("retry_base_delay must not exceed retry_max_delay")
        if self.circuit_breaker_failure_threshold < 1:
            raise ValueError("circuit_breaker_failure_threshold must be >= 1")
        if self.app_env == Environment.PRODUCTION and not self.redis_url:
            import warnings
            warnings.warn(
                "redis_url is empty in production; distributed cache falls back to process memory",
                UserWarning,
                stacklevel=2,
            )
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
