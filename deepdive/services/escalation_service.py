"""
Tier escalation: Ask Me More, re-analysis and Think Harder.

Ask Me More re-opens a finished interview toward a higher confidence goal.
Its questions are answered through SessionService.submit_answer (the
escalating phase accepts answers); when it ends the session waits in
awaiting_analysis with the earlier analysis still readable, and reanalyze()
stores the new result at tier enhanced.

Think Harder asks the service for a higher-effort analysis of the same
transcript. The session is escalating while the request runs and returns
to completed either way. It adds no transcript turns; on failure the
session keeps its tier and analysis.
"""

from dataclasses import dataclass

import structlog

from deepdive.core.exceptions import (
    DeepDiveError,
    InvalidSessionStateError,
    QuestionLimitReachedError,
    SessionNotFoundError,
)
from deepdive.core.logging import in_session_context
from deepdive.domain.models.session import (
    AnalysisRecord,
    EscalationKind,
    Session,
    SessionPhase,
    Tier,
)
from deepdive.services.concurrency_guard import COMPLETE, ESCALATE
from deepdive.services.response_normalizer import normalize, normalize_ultra
from deepdive.services.retry import with_retry
from deepdive.services.session_service import SessionService

log = structlog.get_logger(__name__)

_ASK_MORE_PHASES = frozenset({SessionPhase.COMPLETED, SessionPhase.AWAITING_ANALYSIS})


@dataclass(frozen=True)
class EscalationOptions:
    """Which escalation affordances the presentation layer may offer."""

    ask_more: bool
    think_harder: bool
    reanalyze: bool
    questions_remaining: int


class EscalationService:
    """Tier Escalation Controller.

    Shares storage, guards and the turn controller with SessionService so
    both see one view of each session.
    """

    def __init__(self, sessions: SessionService):
        self.sessions = sessions
        self.client = sessions.client
        self.config = sessions.config
        self.turns = sessions.turns
        self.policy = sessions.turns.policy

    @in_session_context
    async def ask_me_more(self, session_id: str) -> Session:
        """Re-open the session for additional questions toward the ask-more target.

        Raises:
            InvalidSessionStateError: session is not completed or awaiting analysis
            QuestionLimitReachedError: the question ceiling is already reached
            SessionNotFoundError, SessionAlreadyFinalizedError: service rejected it
            TransientNetworkFailure: service unreachable after retries
        """
        session = self.sessions.store.get(session_id)
        guard = self.sessions.guards.for_session(session.id)

        with guard.entered(ESCALATE, excludes=(COMPLETE,)) as acquired:
            if not acquired:
                return session.model_copy(deep=True)

            if session.phase not in _ASK_MORE_PHASES:
                raise InvalidSessionStateError(
                    f"Ask Me More is not available while {session.phase.value}"
                )
            _require_remote(session)

            remaining = self.policy.remaining_questions(session.turn_number)
            if remaining == 0:
                raise QuestionLimitReachedError(
                    f"Session {session.id} already asked "
                    f"{session.turn_number} questions"
                )

            escalation = self.config.escalation
            target = escalation.ask_more_target_confidence
            current = (
                session.confidence
                if session.confidence is not None
                else self.config.termination.baseline_confidence
            )
            max_additional = min(escalation.max_additional_questions, remaining)

            log.info(
                "ask_more_requested",
                session_id=session.id,
                current_confidence=current,
                target_confidence=target,
                max_additional=max_additional,
            )

            outcome = await with_retry(
                lambda _: self.client.resume_for_more_questions(
                    session.id, current, target, session.requester_id, max_additional
                ),
                self.config.retry.max_attempts,
                self.config.retry.base_delay_ms,
                sleep=self.sessions.sleep,
                operation_name="ask_more",
            )
            if not outcome.succeeded:
                session.last_error = outcome.error.message
                self.sessions.save_and_emit(session)
                raise outcome.error

            session.phase = SessionPhase.ESCALATING
            session.escalation_kind = EscalationKind.ASK_MORE
            session.escalation_questions = 0
            session.target_confidence = target
            session.last_error = None
            if session.initial_question_count == 0:
                session.initial_question_count = session.turn_number

            decision = await self.turns.resolve(session, normalize(outcome.value))
            self.sessions.save_and_emit(session)

            log.info(
                "ask_more_started",
                session_id=session.id,
                action=decision.action.value,
                reason=decision.reason,
            )
            return session.model_copy(deep=True)

    @in_session_context
    async def reanalyze(self, session_id: str) -> Session:
        """Final re-analysis after Ask Me More, stored at tier enhanced."""
        session = self.sessions.store.get(session_id)
        if not session.analyses or session.phase not in (
            SessionPhase.AWAITING_ANALYSIS,
            SessionPhase.ERRORED,
        ):
            raise InvalidSessionStateError(
                f"Session {session.id} has no additional answers to re-analyze"
            )
        return await self.sessions.complete(session_id)

    @in_session_context
    async def think_harder(self, session_id: str) -> Session:
        """Upgrade the completed analysis to tier ultra.

        Raises:
            InvalidSessionStateError: no completed analysis to upgrade
            TransientNetworkFailure: service unreachable after retries;
                tier and analysis are unchanged
        """
        session = self.sessions.store.get(session_id)
        guard = self.sessions.guards.for_session(session.id)

        with guard.entered(ESCALATE, excludes=(COMPLETE,)) as acquired:
            if not acquired:
                return session.model_copy(deep=True)

            if session.phase != SessionPhase.COMPLETED or session.analysis is None:
                raise InvalidSessionStateError(
                    f"Think Harder needs a completed analysis, session is "
                    f"{session.phase.value}"
                )
            _require_remote(session)

            previous_tier = session.tier
            session.phase = SessionPhase.ESCALATING
            session.escalation_kind = EscalationKind.THINK_HARDER
            self.sessions.save_and_emit(session)
            model = self.config.escalation.think_harder_model

            try:
                outcome = await with_retry(
                    lambda _: self.client.ultra_reanalyze(
                        session.id, session.requester_id, model
                    ),
                    self.config.retry.max_attempts,
                    self.config.retry.base_delay_ms,
                    sleep=self.sessions.sleep,
                    operation_name="ultra_reanalyze",
                )
                value = outcome.unwrap()
                analysis, confidence, progression, insights = normalize_ultra(value)
            except DeepDiveError as e:
                session.phase = SessionPhase.COMPLETED
                session.escalation_kind = None
                session.last_error = e.message
                self.sessions.save_and_emit(session)
                log.warning(
                    "think_harder_failed",
                    session_id=session.id,
                    tier=previous_tier.value,
                    error_type=type(e).__name__,
                    error=e.message,
                )
                raise

            session.store_analysis(
                AnalysisRecord(
                    tier=Tier.ULTRA,
                    analysis=analysis,
                    confidence=confidence,
                    questions_asked=session.turn_number,
                    critical_insights=insights,
                )
            )
            session.progression.merge(progression)
            if confidence is not None:
                session.confidence = confidence
            session.phase = SessionPhase.COMPLETED
            session.escalation_kind = None
            session.last_error = None
            self.sessions.save_and_emit(session)

            log.info(
                "think_harder_completed",
                session_id=session.id,
                previous_tier=previous_tier.value,
                confidence=confidence,
                insights=len(insights),
            )
            return session.model_copy(deep=True)

    def escalation_options(self, session: Session) -> EscalationOptions:
        remaining = self.policy.remaining_questions(session.turn_number)
        remote = not session.is_local
        return EscalationOptions(
            ask_more=(
                remote
                and session.phase in _ASK_MORE_PHASES
                and session.escalation_kind is None
                and remaining > 0
            ),
            think_harder=(
                remote
                and session.phase == SessionPhase.COMPLETED
                and session.analysis is not None
                and session.escalation_kind is None
                and session.tier != Tier.ULTRA
            ),
            reanalyze=(
                session.phase == SessionPhase.AWAITING_ANALYSIS
                and bool(session.analyses)
            ),
            questions_remaining=remaining,
        )


def _require_remote(session: Session) -> None:
    if session.is_local:
        raise SessionNotFoundError(
            f"Session {session.id} was created offline and is unknown to the service"
        )
