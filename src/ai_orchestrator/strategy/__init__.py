"""Provider ranking."""

from ai_orchestrator.strategy.catalog import DEFAULT_CATALOG
from ai_orchestrator.strategy.engine import ProviderSelector, StrategyEngine, analyze_complexity

__all__ = ["DEFAULT_CATALOG", "ProviderSelector", "StrategyEngine", "analyze_complexity"]
