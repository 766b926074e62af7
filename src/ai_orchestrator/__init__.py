"""Provider orchestration: resilient calls, ranked fallback and a tiered response cache."""

__version__ = "0.1.0"
