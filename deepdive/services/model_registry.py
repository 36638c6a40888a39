"""Ordered model fallback list.

Attempt 0 uses the first model, attempt 1 the second, and so on; once the
attempt index runs past the end of the list the last model is reused.
"""

from typing import List, Optional, Sequence

from deepdive.core.config import orchestrator_config
from deepdive.core.exceptions import ConfigurationError


class ModelFallbackRegistry:
    """Deterministic model selection by attempt index."""

    def __init__(self, models: Optional[Sequence[str]] = None):
        if models is None:
            models = orchestrator_config.models
        self.models: List[str] = [m for m in models if m]
        if not self.models:
            raise ConfigurationError("Model fallback list is empty")

    def select_model(self, attempt_index: int) -> str:
        if attempt_index < 0:
            attempt_index = 0
        return self.models[min(attempt_index, len(self.models) - 1)]

    def alternate_to(self, model: Optional[str]) -> str:
        """Next model after `model` that differs from it, else the primary."""
        if model in self.models:
            start = self.models.index(model) + 1
            for candidate in self.models[start:] + self.models[:start]:
                if candidate != model:
                    return candidate
        return self.models[0] if self.models[0] != model else self.models[-1]

    @property
    def primary(self) -> str:
        return self.models[0]

    def __len__(self) -> int:
        return len(self.models)
