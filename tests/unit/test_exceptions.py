"""Tests for exception hierarchy."""

import pytest


def test_exception_hierarchy():
    """All exceptions inherit from DeepDiveError."""
    from deepdive.core.exceptions import (
        DeepDiveError,
        ConfigurationError,
        TransientNetworkFailure,
        EmptyResponseError,
        MalformedAnalysisError,
        SessionError,
        SessionNotFoundError,
        SessionAlreadyFinalizedError,
        QuestionLimitReachedError,
        InvalidSessionStateError,
    )

    assert issubclass(ConfigurationError, DeepDiveError)
    assert issubclass(TransientNetworkFailure, DeepDiveError)
    assert issubclass(EmptyResponseError, TransientNetworkFailure)
    assert issubclass(MalformedAnalysisError, DeepDiveError)
    for exc_type in (
        SessionNotFoundError,
        SessionAlreadyFinalizedError,
        QuestionLimitReachedError,
        InvalidSessionStateError,
    ):
        assert issubclass(exc_type, SessionError)


def test_exceptions_can_be_raised():
    """Exceptions can be raised and caught."""
    from deepdive.core.exceptions import SessionNotFoundError

    with pytest.raises(SessionNotFoundError):
        raise SessionNotFoundError("Session test-123 not found")


def test_recovery_actions():
    from deepdive.core.exceptions import (
        InvalidSessionStateError,
        QuestionLimitReachedError,
        SessionAlreadyFinalizedError,
        SessionNotFoundError,
        TransientNetworkFailure,
    )

    assert TransientNetworkFailure("x").recovery_action == "retry"
    assert SessionNotFoundError("x").recovery_action == "start_fresh"
    assert SessionAlreadyFinalizedError("x").recovery_action == "try_escalation"
    assert QuestionLimitReachedError("x").recovery_action == "try_escalation"
    assert InvalidSessionStateError("x").recovery_action == "resume"


def test_user_message_defaults_and_override():
    from deepdive.core.exceptions import TransientNetworkFailure

    default = TransientNetworkFailure("connect timeout")
    custom = TransientNetworkFailure("connect timeout", user_message="Try later")

    assert default.message == "connect timeout"
    assert "previous results are still available" in default.user_message
    assert custom.user_message == "Try later"


class TestClassifyEscalationError:
    """Remote error text is mapped to the escalation error kinds."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Session not found", "SessionNotFoundError"),
            ("'NoneType' object is not subscriptable", "SessionNotFoundError"),
            ("Deep dive already finalized", "SessionAlreadyFinalizedError"),
            ("Question limit reached for this session", "QuestionLimitReachedError"),
            ("Session is in an invalid state", "InvalidSessionStateError"),
            ("status is analysis_ready", "InvalidSessionStateError"),
        ],
    )
    def test_message_markers(self, message, expected):
        from deepdive.core.exceptions import classify_escalation_error

        error = classify_escalation_error(message)

        assert type(error).__name__ == expected
        assert error.message == message

    def test_status_code_fallbacks(self):
        from deepdive.core.exceptions import (
            SessionAlreadyFinalizedError,
            SessionNotFoundError,
            classify_escalation_error,
        )

        assert isinstance(classify_escalation_error("gone", 404), SessionNotFoundError)
        assert isinstance(
            classify_escalation_error("conflict", 409), SessionAlreadyFinalizedError
        )

    def test_unrecognised_returns_none(self):
        from deepdive.core.exceptions import classify_escalation_error

        assert classify_escalation_error("model overloaded", 400) is None
        assert classify_escalation_error("") is None
