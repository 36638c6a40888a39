"""
Global exception handlers for FastAPI.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import structlog

from deepdive.core.exceptions import (
    DeepDiveError,
    ConfigurationError,
    InvalidSessionStateError,
    MalformedAnalysisError,
    QuestionLimitReachedError,
    RemoteServiceError,
    SessionAlreadyFinalizedError,
    SessionNotFoundError,
    TransientNetworkFailure,
    ValidationError,
)

log = structlog.get_logger(__name__)

# Checked in order; first isinstance match wins
_STATUS_CODES = (
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidSessionStateError, status.HTTP_409_CONFLICT),
    (SessionAlreadyFinalizedError, status.HTTP_409_CONFLICT),
    (QuestionLimitReachedError, status.HTTP_409_CONFLICT),
    (MalformedAnalysisError, status.HTTP_502_BAD_GATEWAY),
    (RemoteServiceError, status.HTTP_502_BAD_GATEWAY),
    (TransientNetworkFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_code_for(exc: DeepDiveError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def setup_exception_handlers(app: FastAPI):
    """Register custom exception handlers with the FastAPI application.

    Sets up handlers for all DeepDiveError subclasses with appropriate
    HTTP status codes, plus handlers for configuration errors and generic exceptions.
    """

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request,
        exc: ConfigurationError,
    ) -> JSONResponse:
        """Handle configuration errors with HTTP 500 status."""
        log.error(
            "configuration_error",
            path=request.url.path,
            message=exc.message,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "type": "ConfigurationError",
                    "message": "Server configuration error",
                    "recovery_action": None,
                }
            },
        )

    @app.exception_handler(DeepDiveError)
    async def deep_dive_error_handler(
        request: Request,
        exc: DeepDiveError,
    ) -> JSONResponse:
        """Handle DeepDiveError exceptions with appropriate HTTP status codes.

        The body carries the user-facing message and the recovery action the
        client should offer (retry, resume, start_fresh, try_escalation).
        """
        status_code = status_code_for(exc)

        log.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        ).warning(
            "request_error",
            message=exc.message,
            status_code=status_code,
            recovery_action=exc.recovery_action,
        )

        return JSONResponse(
            status_code=status_code,
            content={
                "error": {
                    "type": type(exc).__name__,
                    "message": exc.user_message,
                    "detail": exc.message,
                    "recovery_action": exc.recovery_action,
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle all unhandled exceptions with HTTP 500 status."""
        log.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        ).error(
            "unhandled_exception",
            message=str(exc),
            exc_info=exc,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "type": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "recovery_action": None,
                }
            },
        )
