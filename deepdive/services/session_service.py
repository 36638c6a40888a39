"""
Session lifecycle orchestration.

Main entry point for the deep dive interview: owns session identity and
phase, and composes the concurrency guard, turn controller, retry engine
and termination policy.

    initializing -> interviewing -> awaiting_analysis -> completed
                            \\______________ errored ______/

Every public operation runs as one guarded unit: the guard flag is taken
synchronously before the first await and released in a finally block, so a
second call for the same session and operation class is a no-op while the
first is in flight. Callers always receive deep copies; only this service
and EscalationService mutate the stored Session.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Set
from uuid import uuid4

import structlog

from deepdive.core.config import OrchestratorConfig, orchestrator_config
from deepdive.core.exceptions import (
    DeepDiveError,
    InvalidSessionStateError,
    MalformedAnalysisError,
    SessionNotFoundError,
)
from deepdive.core.logging import in_session_context
from deepdive.domain.models.session import (
    ANSWERABLE_PHASES,
    AnalysisRecord,
    EscalationKind,
    Session,
    SessionPhase,
    SubjectContext,
    Tier,
    TurnRole,
)
from deepdive.remote.client import ReasoningClient, get_reasoning_client
from deepdive.services.concurrency_guard import (
    COMPLETE,
    ESCALATE,
    INIT,
    SUBMIT,
    GuardRegistry,
)
from deepdive.services.response_normalizer import normalize, normalize_analysis
from deepdive.services.retry import with_retry
from deepdive.services.turn_controller import TurnController

log = structlog.get_logger(__name__)


# =============================================================================
# Storage and progress
# =============================================================================


class InMemorySessionStore:
    """Process-local session storage keyed by session id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def save(self, session: Session) -> None:
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def list(self) -> List[Session]:
        return list(self._sessions.values())


@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot published to progress subscribers."""

    session_id: str
    phase: SessionPhase
    confidence: Optional[int]
    turn_number: int
    tier: Tier
    retry_count: int = 0

    @classmethod
    def of(cls, session: Session) -> "ProgressEvent":
        return cls(
            session_id=session.id,
            phase=session.phase,
            confidence=session.confidence,
            turn_number=session.turn_number,
            tier=session.tier,
            retry_count=session.retry_count,
        )


ProgressCallback = Callable[[ProgressEvent], None]


# =============================================================================
# Service
# =============================================================================


class SessionService:
    """Session Lifecycle Manager.

    Args:
        client: Reasoning service client (defaults to the configured HTTP client)
        config: Orchestrator configuration
        store: Session storage
        turns: Turn controller (built from client/config if None)
        sleep: Awaitable delay used for retry backoff (tests pass a no-op)
    """

    def __init__(
        self,
        client: Optional[ReasoningClient] = None,
        config: Optional[OrchestratorConfig] = None,
        store: Optional[InMemorySessionStore] = None,
        turns: Optional[TurnController] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client or get_reasoning_client()
        self.config = config or orchestrator_config
        self.store = store or InMemorySessionStore()
        self.sleep = sleep
        self.turns = turns or TurnController(
            self.client, config=self.config, sleep=sleep
        )
        self.guards = GuardRegistry()
        self._pending: Dict[str, Session] = {}
        self._subscribers: List[ProgressCallback] = []
        self._last_emitted: Dict[str, ProgressEvent] = {}
        self._background: Set[asyncio.Task] = set()

        log.info(
            "session_service_initialized",
            models=len(self.turns.registry),
            max_attempts=self.config.retry.max_attempts,
        )

    # ------------------------------------------------------------------
    # Entry paths
    # ------------------------------------------------------------------

    async def start(
        self, subject: SubjectContext, requester_id: Optional[str] = None
    ) -> Session:
        """Start a fresh interview and ask the first question.

        A repeated call for the same subject and requester while the first
        is still initializing returns the in-flight session instead of
        creating a second one.
        """
        key = _init_key(subject, requester_id)
        guard = self.guards.for_session(key)

        with guard.entered(INIT) as acquired:
            if not acquired:
                return self._pending[key].model_copy(deep=True)

            session = Session(
                id=f"pending-{uuid4()}",
                subject=subject,
                requester_id=requester_id,
                target_confidence=self.config.escalation.continuation_target_confidence,
            )
            self._pending[key] = session
            self._emit(session)
            try:
                await self.turns.open_interview(session)
            except DeepDiveError as e:
                self._fail(session, e)
                raise
            finally:
                self._pending.pop(key, None)

            self.save_and_emit(session)
            log.info(
                "session_started",
                session_id=session.id,
                local=session.is_local,
                turn_number=session.turn_number,
            )
            return session.model_copy(deep=True)

    @in_session_context
    async def resume(
        self,
        prior_session_id: str,
        subject: SubjectContext,
        requester_id: Optional[str] = None,
        current_confidence: Optional[int] = None,
    ) -> Session:
        """Continue a prior session toward the continuation target.

        If the service reports the target already met, the session is
        created directly in awaiting_analysis with a notice and no question.
        """
        key = f"resume:{prior_session_id}"
        guard = self.guards.for_session(key)

        with guard.entered(INIT) as acquired:
            if not acquired:
                return self._pending[key].model_copy(deep=True)

            escalation = self.config.escalation
            baseline = self.config.termination.baseline_confidence
            current = current_confidence if current_confidence is not None else baseline

            session = Session(
                id=prior_session_id,
                subject=subject,
                requester_id=requester_id,
                confidence=current,
                target_confidence=escalation.continuation_target_confidence,
                escalation_kind=EscalationKind.ASK_MORE,
            )
            self._pending[key] = session
            try:
                outcome = await with_retry(
                    lambda _: self.client.resume_for_more_questions(
                        prior_session_id,
                        current,
                        escalation.continuation_target_confidence,
                        requester_id,
                        escalation.max_additional_questions,
                    ),
                    self.config.retry.max_attempts,
                    self.config.retry.base_delay_ms,
                    sleep=self.sleep,
                    operation_name="resume_for_more_questions",
                )

                session.phase = SessionPhase.ESCALATING
                if outcome.succeeded:
                    result = normalize(outcome.value)
                    if result.session_id:
                        session.id = result.session_id
                    if result.questions_asked:
                        session.advance_turn_number(result.questions_asked)
                        session.initial_question_count = result.questions_asked
                    await self.turns.resolve(session, result)
                else:
                    session.retry_count = outcome.attempts
                    self.turns.fallback_turn(session)
            finally:
                self._pending.pop(key, None)

            self.save_and_emit(session)
            log.info(
                "session_resumed",
                session_id=session.id,
                phase=session.phase.value,
                confidence=session.confidence,
            )
            return session.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Turn-taking
    # ------------------------------------------------------------------

    @in_session_context
    async def submit_answer(self, session_id: str, text: str) -> Session:
        """Record an answer and fetch the next question or ready notice.

        No-op (returns the unchanged session) when the session is not
        awaiting an answer, the text is blank, or another answer for this
        session is still in flight.
        """
        session = self.store.get(session_id)
        guard = self.guards.for_session(session.id)

        with guard.entered(SUBMIT) as acquired:
            if not acquired:
                log.info("answer_ignored_in_flight", session_id=session.id)
                return session.model_copy(deep=True)

            text = (text or "").strip()
            if (
                session.phase not in ANSWERABLE_PHASES
                or not text
                or session.pending_question is None
            ):
                log.info(
                    "answer_ignored",
                    session_id=session.id,
                    phase=session.phase.value,
                    empty=not text,
                )
                return session.model_copy(deep=True)

            session.append_turn(TurnRole.ANSWER, text)
            self._emit(session)
            return await self._run_turn(session, text)

    @in_session_context
    async def retry_last_turn(self, session_id: str) -> Session:
        """Re-send the last recorded answer of an errored session."""
        session = self.store.get(session_id)
        guard = self.guards.for_session(session.id)

        with guard.entered(SUBMIT) as acquired:
            if not acquired:
                return session.model_copy(deep=True)
            last = session.transcript[-1] if session.transcript else None
            if (
                session.phase != SessionPhase.ERRORED
                or session.recoverable_phase not in ANSWERABLE_PHASES
                or last is None
                or last.role != TurnRole.ANSWER
            ):
                raise InvalidSessionStateError(
                    f"Session {session.id} has no failed answer to retry"
                )
            session.phase = session.recoverable_phase
            session.recoverable_phase = None
            session.last_error = None
            return await self._run_turn(session, last.content)

    async def _run_turn(self, session: Session, text: str) -> Session:
        try:
            await self.turns.answer(session, text)
        except DeepDiveError as e:
            self._fail(session, e)
            raise
        self.save_and_emit(session)
        return session.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    @in_session_context
    async def complete(self, session_id: str) -> Session:
        """Finalize the session and store its analysis.

        The first analysis is stored at tier basic; a re-analysis after Ask
        Me More is stored at tier enhanced. A non-object analysis raises
        MalformedAnalysisError and leaves the session in awaiting_analysis.
        """
        session = self.store.get(session_id)
        guard = self.guards.for_session(session.id)

        with guard.entered(COMPLETE, excludes=(ESCALATE,)) as acquired:
            if not acquired:
                log.info("completion_ignored_in_flight", session_id=session.id)
                return session.model_copy(deep=True)

            ready = session.phase == SessionPhase.AWAITING_ANALYSIS or (
                session.phase == SessionPhase.ERRORED
                and session.recoverable_phase == SessionPhase.AWAITING_ANALYSIS
            )
            if not ready:
                raise InvalidSessionStateError(
                    f"Session {session.id} is {session.phase.value}, "
                    "not awaiting analysis"
                )

            if session.is_local:
                error = SessionNotFoundError(
                    f"Session {session.id} was created offline and cannot be analyzed"
                )
                self._fail(session, error, SessionPhase.AWAITING_ANALYSIS)
                raise error

            session.phase = SessionPhase.AWAITING_ANALYSIS
            tier = Tier.ENHANCED if session.analyses else Tier.BASIC
            registry = self.turns.registry

            outcome = await with_retry(
                lambda i: self.client.finalize(
                    session.id, session.requester_id, registry.select_model(i)
                ),
                self.config.retry.max_attempts,
                self.config.retry.base_delay_ms,
                on_attempt=lambda i: setattr(session, "retry_count", i),
                sleep=self.sleep,
                operation_name="finalize",
            )
            if not outcome.succeeded:
                session.retry_count = outcome.attempts
                self._fail(session, outcome.error, SessionPhase.AWAITING_ANALYSIS)
                raise outcome.error
            session.retry_count = 0

            try:
                analysis, confidence, asked, result_id = normalize_analysis(
                    outcome.value
                )
            except MalformedAnalysisError as e:
                session.last_error = e.message
                self.save_and_emit(session)
                raise

            record = AnalysisRecord(
                tier=tier,
                analysis=analysis,
                confidence=confidence,
                questions_asked=asked if asked is not None else session.turn_number,
                result_id=result_id,
            )
            session.store_analysis(record)
            if confidence is not None:
                session.confidence = confidence
            if tier == Tier.BASIC:
                session.initial_question_count = session.turn_number
            session.phase = SessionPhase.COMPLETED
            session.escalation_kind = None
            session.escalation_questions = 0
            session.last_error = None
            session.recoverable_phase = None
            self.save_and_emit(session)

            log.info(
                "session_completed",
                session_id=session.id,
                tier=tier.value,
                confidence=confidence,
                questions_asked=record.questions_asked,
            )

            if result_id:
                self._spawn(self._generate_summary(result_id, session.requester_id))
            return session.model_copy(deep=True)

    async def _generate_summary(self, result_id: str, requester_id: Optional[str]) -> None:
        """Best-effort summary request; failures are logged, never raised."""
        try:
            await self.client.generate_summary(result_id, requester_id)
            log.info("summary_requested", result_id=result_id)
        except Exception as e:
            log.warning(
                "summary_generation_failed",
                result_id=result_id,
                error_type=type(e).__name__,
                error=str(e),
            )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain_background(self) -> None:
        """Wait for fire-and-forget work (summary requests) to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Session:
        return self.store.get(session_id).model_copy(deep=True)

    def progress(self, session_id: str) -> ProgressEvent:
        return ProgressEvent.of(self.store.get(session_id))

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a progress callback. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Persistence (shared with EscalationService)
    # ------------------------------------------------------------------

    def save_and_emit(self, session: Session) -> None:
        """Store the session and notify progress subscribers of any change."""
        self.store.save(session)
        self._emit(session)

    def _emit(self, session: Session) -> None:
        event = ProgressEvent.of(session)
        if self._last_emitted.get(session.id) == event:
            return
        self._last_emitted[session.id] = event
        for callback in list(self._subscribers):
            callback(event)

    def _fail(
        self,
        session: Session,
        error: DeepDiveError,
        recoverable_phase: Optional[SessionPhase] = None,
    ) -> None:
        if session.phase != SessionPhase.ERRORED:
            session.recoverable_phase = recoverable_phase or session.phase
        session.phase = SessionPhase.ERRORED
        session.last_error = error.message
        self.save_and_emit(session)
        log.warning(
            "session_errored",
            session_id=session.id,
            error_type=type(error).__name__,
            error=error.message,
            recoverable_phase=(
                session.recoverable_phase.value if session.recoverable_phase else None
            ),
        )


def _init_key(subject: SubjectContext, requester_id: Optional[str]) -> str:
    fingerprint = json.dumps(subject.model_dump(mode="json"), sort_keys=True)
    return f"init:{requester_id or ''}:{fingerprint}"
