"""Credential stores backed by settings or an explicit mapping."""

from __future__ import annotations

from collections.abc import Mapping

from ai_orchestrator.config import Settings
from ai_orchestrator.ports.outbound import CredentialStore


class SettingsCredentialStore(CredentialStore):
    """Reads ``<provider>_api_key`` from ``Settings`` (env / .env backed)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def resolve(self, provider: str) -> str | None:
        value = getattr(self._settings, f"{provider}_api_key", "")
        return value or None


class StaticCredentialStore(CredentialStore):
    def __init__(self, keys: Mapping[str, str]) -> None:
        self._keys = dict(keys)

    def resolve(self, provider: str) -> str | None:
        return self._keys.get(provider) or None
