"""Dependency injection for API routes."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from deepdive.remote.client import get_reasoning_client
from deepdive.services.escalation_service import EscalationService
from deepdive.services.session_service import SessionService


@lru_cache(maxsize=1)
def get_session_service() -> SessionService:
    """Process-wide SessionService.

    Sessions live in its in-memory store, so every request must see the
    same instance. Cached so the service and its client are created once.
    """
    return SessionService(client=get_reasoning_client())


@lru_cache(maxsize=1)
def get_escalation_service() -> EscalationService:
    """Process-wide EscalationService sharing the session service's state."""
    return EscalationService(get_session_service())


# Type aliases for dependency injection
SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]
EscalationServiceDep = Annotated[EscalationService, Depends(get_escalation_service)]
