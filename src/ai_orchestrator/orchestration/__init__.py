"""Request orchestration across providers."""

from ai_orchestrator.orchestration.confidence import ConfidenceScorer, HeuristicConfidenceScorer
from ai_orchestrator.orchestration.orchestrator import Orchestrator, qualifies_for_fallback

__all__ = ["ConfidenceScorer", "HeuristicConfidenceScorer", "Orchestrator", "qualifies_for_fallback"]
