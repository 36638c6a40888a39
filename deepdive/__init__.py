"""Deep dive interview orchestrator."""

__version__ = "0.1.0"
