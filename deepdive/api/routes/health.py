"""
Health check endpoints.

Provides system health information for monitoring.
"""

from fastapi import APIRouter, HTTPException
import structlog

from deepdive import __version__
from deepdive.core.config import orchestrator_config, settings

log = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Service status and the orchestration settings in effect.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "debug": settings.debug,
        "components": {
            "reasoning_service": {
                "url": settings.reasoning_api_url,
                "family": orchestrator_config.endpoints.family,
            },
            "models": orchestrator_config.models,
        },
    }


@router.get("/health/live")
async def liveness():
    """
    Kubernetes-style liveness probe.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness():
    """
    Kubernetes-style readiness probe.

    Returns 200 once a reasoning service URL and a model list are configured.
    """
    if not settings.reasoning_api_url or not orchestrator_config.models:
        raise HTTPException(status_code=503, detail="Reasoning service not configured")

    return {"status": "ready"}
