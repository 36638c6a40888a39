"""
Custom exception hierarchy for the deep dive orchestrator.

All application exceptions inherit from DeepDiveError. Each carries a
``recovery_action`` the presentation layer can offer the user, and a
``user_message`` safe to display.
"""

from typing import Optional


class DeepDiveError(Exception):
    """Base exception for all application errors."""

    recovery_action: Optional[str] = None
    default_user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.message = message
        self.user_message = user_message or self.default_user_message
        super().__init__(message)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(DeepDiveError):
    """Invalid or missing configuration."""

    pass


class ValidationError(DeepDiveError):
    """Input validation failed."""

    default_user_message = "That input could not be accepted."


# =============================================================================
# Remote Service Errors
# =============================================================================


class TransientNetworkFailure(DeepDiveError):
    """Remote call failed in a way that is worth retrying."""

    recovery_action = "retry"
    default_user_message = (
        "We couldn't reach the analysis service. Your previous results are "
        "still available; please try again in a moment."
    )


class EmptyResponseError(TransientNetworkFailure):
    """Remote call succeeded but returned no usable content."""

    pass


class RemoteServiceError(DeepDiveError):
    """Remote service rejected the request (non-retryable)."""

    recovery_action = "retry"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ):
        self.status_code = status_code
        super().__init__(message, user_message)


class MalformedAnalysisError(DeepDiveError):
    """Finalize returned an analysis that is not a structured object."""

    recovery_action = "retry"
    default_user_message = (
        "The analysis came back in an unexpected format. "
        "Please request the analysis again."
    )


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(DeepDiveError):
    """Session-related error."""

    pass


class SessionNotFoundError(SessionError):
    """Session does not exist locally or on the remote service."""

    recovery_action = "start_fresh"
    default_user_message = (
        "This assessment session could not be found. Please start a new assessment."
    )


class SessionAlreadyFinalizedError(SessionError):
    """Remote service considers the session closed to further questions."""

    recovery_action = "try_escalation"
    default_user_message = (
        "This assessment has already been finalized. "
        "Try 'Think Harder' for a deeper analysis instead."
    )


class QuestionLimitReachedError(SessionError):
    """No more questions may be asked in this session."""

    recovery_action = "try_escalation"
    default_user_message = (
        "The maximum number of questions has been reached. "
        "You can still request a deeper analysis."
    )


class InvalidSessionStateError(SessionError):
    """Operation is not permitted in the session's current phase."""

    recovery_action = "resume"
    default_user_message = (
        "This action isn't available right now. "
        "Please continue the assessment from where you left off."
    )


# =============================================================================
# Classification helpers
# =============================================================================

_ESCALATION_MARKERS = (
    (SessionNotFoundError, ("not found", "nonetype", "no session", "does not exist")),
    (
        SessionAlreadyFinalizedError,
        ("already finalized", "already completed", "already been finalized"),
    ),
    (
        QuestionLimitReachedError,
        ("limit reached", "maximum questions", "max questions", "question limit"),
    ),
    (
        InvalidSessionStateError,
        ("invalid state", "not ready", "analysis_ready", "invalid session"),
    ),
)


def classify_escalation_error(
    message: str, status_code: Optional[int] = None
) -> Optional[DeepDiveError]:
    """Map a remote error message to one of the escalation error kinds.

    Args:
        message: Error text returned by the remote service
        status_code: HTTP status code, if known

    Returns:
        A SessionError subclass instance, or None if unrecognised
    """
    text = (message or "").lower()
    for exc_type, markers in _ESCALATION_MARKERS:
        if any(marker in text for marker in markers):
            return exc_type(message)
    if status_code == 404:
        return SessionNotFoundError(message)
    if status_code == 409:
        return SessionAlreadyFinalizedError(message)
    return None
