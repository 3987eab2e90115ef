"""Health-aware, budget-aware routing of LLM requests across providers."""

__version__ = "0.1.0"
