"""
FastAPI application entry point.

Run with: uvicorn deepdive.main:app --reload
"""

from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from deepdive import __version__
from deepdive.core.config import orchestrator_config, settings
from deepdive.core.exceptions import ConfigurationError
from deepdive.core.logging import configure_logging, get_logger, bind_context, clear_context
from deepdive.api.dependencies import get_session_service
from deepdive.api.routes import health, sessions
from deepdive.api.exception_handlers import setup_exception_handlers

# Configure logging before anything else
configure_logging()
log = get_logger(__name__)


# =============================================================================
# Correlation ID Middleware
# =============================================================================


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique correlation ID to each request.

    - Reuses an incoming X-Request-ID header or generates a UUID4
    - Binds it to structlog context for all logs in that request
    - Adds X-Request-ID header to responses
    """

    async def dispatch(self, request: Request, call_next):
        """Process request and add correlation ID."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        bind_context(request_id=request_id)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


def validate_settings() -> None:
    """
    Fail fast on a reasoning service URL that cannot be called.

    Raises:
        ConfigurationError: If the URL is not http(s)
    """
    url = settings.reasoning_api_url
    if not url.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"REASONING_API_URL must be an http(s) URL, got '{url}'"
        )

    log.info(
        "settings_validated",
        reasoning_api_url=url,
        family=orchestrator_config.endpoints.family,
        models=orchestrator_config.models,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    log.info("application_starting", debug=settings.debug)

    validate_settings()

    log.info("application_started")

    yield

    log.info("application_shutting_down")
    # Let in-flight summary requests finish
    await get_session_service().drain_background()


# Create FastAPI application
app = FastAPI(
    title="Deep Dive Orchestrator",
    description="Adaptive follow-up interview orchestration for symptom assessments",
    version=__version__,
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware for development
if settings.debug:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(CorrelationIDMiddleware)

setup_exception_handlers(app)

app.include_router(health.router, tags=["system"])
app.include_router(sessions.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {"name": "Deep Dive Orchestrator", "version": __version__, "status": "running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deepdive.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
