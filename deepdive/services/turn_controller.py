"""Turn controller: one request/response cycle of the interview.

Flow for an answer:
    1. continue_interview through with_retry (model per attempt index)
    2. normalize the raw payload
    3. TerminationPolicy decides; FORCE_ONE_MORE and RETRY_ALTERNATE_MODEL
       issue one extra call each and are re-evaluated before returning
    4. the decision is applied: question appended, or ready notice appended

Transient failures that survive every retry are replaced by a contextual
fallback question so the interview keeps moving.
"""

import asyncio
from dataclasses import replace
from typing import Awaitable, Callable, Optional
from uuid import uuid4

import structlog

from deepdive.core.config import OrchestratorConfig, orchestrator_config
from deepdive.core.exceptions import TransientNetworkFailure
from deepdive.domain.models.session import Session, SessionPhase, TurnRole
from deepdive.domain.models.turn_result import TurnResult
from deepdive.remote.client import ReasoningClient
from deepdive.services.fallback_questions import contextual_fallback_question
from deepdive.services.model_registry import ModelFallbackRegistry
from deepdive.services.response_normalizer import is_empty_question, normalize
from deepdive.services.retry import with_retry
from deepdive.services.termination_policy import (
    Decision,
    PolicyContext,
    TerminationAction,
    TerminationPolicy,
)

log = structlog.get_logger(__name__)

FORCED_CONTINUATION_PROMPT = (
    "Please provide more detail. I'd like to answer at least one more "
    "question before the analysis."
)
READY_NOTICE = (
    "I have all the information I need. Request the analysis whenever you're ready."
)
TARGET_MET_NOTICE = (
    "Your assessment already meets the target confidence, so no additional "
    "questions are needed. Request the analysis whenever you're ready."
)
CEILING_NOTICE = (
    "We've reached the maximum number of questions. "
    "Request the analysis whenever you're ready."
)

Sleep = Callable[[float], Awaitable[None]]


class TurnController:
    """Drives request/response cycles against the reasoning service."""

    def __init__(
        self,
        client: ReasoningClient,
        registry: Optional[ModelFallbackRegistry] = None,
        policy: Optional[TerminationPolicy] = None,
        config: Optional[OrchestratorConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.config = config or orchestrator_config
        self.registry = registry or ModelFallbackRegistry(self.config.models)
        self.policy = policy or TerminationPolicy(
            self.config.termination.minimum_questions_before_ready,
            self.config.termination.max_total_questions,
        )
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Opening question
    # ------------------------------------------------------------------

    async def open_interview(self, session: Session) -> Session:
        """Fetch the first question, falling back to a local one.

        The session id is taken from the service; if the service never
        answered, a local id is issued and the session is marked is_local.
        """
        seen_session_id: Optional[str] = None
        models_used = {}

        async def attempt(attempt_index: int) -> TurnResult:
            nonlocal seen_session_id
            model = self.registry.select_model(attempt_index)
            models_used[attempt_index] = model
            raw = await self.client.start_interview(
                session.subject, session.requester_id, model
            )
            result = normalize(raw)
            if result.session_id:
                seen_session_id = result.session_id
            return result

        outcome = await with_retry(
            attempt,
            self.config.retry.max_attempts,
            self.config.retry.base_delay_ms,
            is_empty=is_empty_question,
            on_attempt=lambda i: self._record_attempt(session, i),
            sleep=self.sleep,
            operation_name="start_interview",
        )

        if seen_session_id:
            session.id = seen_session_id
        else:
            session.id = f"local-{uuid4()}"
            session.is_local = True
            log.warning("session_created_locally", session_id=session.id)

        session.phase = SessionPhase.INTERVIEWING
        session.confidence = self.config.termination.baseline_confidence

        if outcome.succeeded:
            session.retry_count = 0
            result = outcome.value
            self._ask(session, result.question, models_used[outcome.attempts - 1])
            if result.confidence is not None:
                session.confidence = result.confidence
        else:
            session.retry_count = outcome.attempts
            self._ask_fallback(session)

        log.info(
            "interview_opened",
            session_id=session.id,
            attempts=outcome.attempts,
            fallback=not outcome.succeeded,
        )
        return session

    # ------------------------------------------------------------------
    # Answer cycle
    # ------------------------------------------------------------------

    async def answer(self, session: Session, text: str) -> Decision:
        """Send an answer (already in the transcript) and apply the next turn."""
        if session.is_local:
            return self._local_turn(session)

        question_number = max(session.turn_number, 1)
        model_holder = {}

        async def attempt(attempt_index: int) -> TurnResult:
            model = self.registry.select_model(attempt_index)
            model_holder["model"] = model
            raw = await self.client.continue_interview(
                session.id, text, question_number, model
            )
            return normalize(raw)

        outcome = await with_retry(
            attempt,
            self.config.retry.max_attempts,
            self.config.retry.base_delay_ms,
            on_attempt=lambda i: self._record_attempt(session, i),
            sleep=self.sleep,
            operation_name="continue_interview",
        )

        if not outcome.succeeded:
            session.retry_count = outcome.attempts
            log.warning(
                "continue_exhausted_using_fallback",
                session_id=session.id,
                attempts=outcome.attempts,
            )
            return self.fallback_turn(session)

        session.retry_count = 0
        return await self.resolve(
            session, outcome.value, model=model_holder.get("model")
        )

    async def resolve(
        self,
        session: Session,
        result: TurnResult,
        model: Optional[str] = None,
    ) -> Decision:
        """Run the termination policy to a final decision and apply it.

        Forced continuations and alternate-model retries are awaited here,
        so nothing else touches the session until they finish.
        """
        context = self._policy_context(session)
        while True:
            if result.confidence is not None:
                session.confidence = result.confidence
            decision = self.policy.evaluate(result, context)

            if decision.action == TerminationAction.FORCE_ONE_MORE:
                context = replace(context, forced_attempted=True)
                result = await self._single_call(
                    session, FORCED_CONTINUATION_PROMPT, model or self.registry.primary
                )
                continue

            if decision.action == TerminationAction.RETRY_ALTERNATE_MODEL:
                context = replace(context, alternate_attempted=True)
                model = self.registry.alternate_to(model)
                result = await self._single_call(session, _last_answer(session), model)
                continue

            break

        if decision.action == TerminationAction.ASK:
            self._ask(session, decision.question, model)
        else:
            self._mark_ready(session, decision, result)
        return decision

    def fallback_turn(self, session: Session) -> Decision:
        """Ask a locally synthesized question unless the policy says ready."""
        fallback = contextual_fallback_question(
            session.subject, session.asked_questions, session.turn_number
        )
        decision = self.policy.evaluate(
            TurnResult(question=fallback), self._policy_context(session)
        )
        if decision.action == TerminationAction.ASK:
            self._ask(session, fallback, is_fallback=True)
        else:
            self._mark_ready(session, decision, TurnResult())
        return decision

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _policy_context(self, session: Session) -> PolicyContext:
        escalating = session.phase == SessionPhase.ESCALATING
        return PolicyContext(
            questions_asked=session.turn_number,
            escalation_active=escalating,
            target_confidence=session.target_confidence if escalating else None,
            escalation_questions=session.escalation_questions,
            escalation_budget=(
                self.config.escalation.max_additional_questions if escalating else None
            ),
        )

    async def _single_call(self, session: Session, text: str, model: str) -> TurnResult:
        """One extra continue call; a transient failure counts as no question."""
        try:
            raw = await self.client.continue_interview(
                session.id, text, max(session.turn_number, 1), model
            )
        except TransientNetworkFailure as e:
            log.warning(
                "extra_continue_failed",
                session_id=session.id,
                model=model,
                error=e.message,
            )
            return TurnResult()
        return normalize(raw)

    def _local_turn(self, session: Session) -> Decision:
        """Offline session: fallback questions up to the minimum, then ready."""
        if session.turn_number < self.policy.minimum_questions_before_ready:
            self._ask_fallback(session)
            return Decision(TerminationAction.ASK, "contextual_fallback")
        decision = Decision(TerminationAction.READY, "offline_minimum_reached")
        self._mark_ready(session, decision, TurnResult())
        return decision

    def _record_attempt(self, session: Session, attempt_index: int) -> None:
        session.retry_count = attempt_index

    def _ask(
        self,
        session: Session,
        question: str,
        model: Optional[str] = None,
        is_fallback: bool = False,
    ) -> None:
        session.append_turn(TurnRole.QUESTION, question, model=model, is_fallback=is_fallback)
        session.advance_turn_number(session.turn_number + 1)
        if session.phase == SessionPhase.ESCALATING:
            session.escalation_questions += 1
        log.info(
            "question_asked",
            session_id=session.id,
            turn_number=session.turn_number,
            fallback=is_fallback,
        )

    def _ask_fallback(self, session: Session) -> None:
        question = contextual_fallback_question(
            session.subject, session.asked_questions, session.turn_number
        )
        self._ask(session, question, is_fallback=True)

    def _mark_ready(
        self, session: Session, decision: Decision, result: TurnResult
    ) -> None:
        if decision.reason == "question_ceiling":
            notice = CEILING_NOTICE
        elif decision.reason == "target_confidence_met":
            notice = TARGET_MET_NOTICE
        else:
            notice = result.message or READY_NOTICE
        session.append_turn(TurnRole.NOTICE, notice)
        session.phase = SessionPhase.AWAITING_ANALYSIS
        log.info(
            "session_ready_for_analysis",
            session_id=session.id,
            reason=decision.reason,
            turn_number=session.turn_number,
            confidence=session.confidence,
        )


def _last_answer(session: Session) -> str:
    for turn in reversed(session.transcript):
        if turn.role == TurnRole.ANSWER:
            return turn.content
    return ""
