"""Logging setup and metrics."""

from ai_orchestrator.shared.observability.logging import configure_logging

__all__ = ["configure_logging"]
