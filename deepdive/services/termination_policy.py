"""Termination policy for the deep dive interview.

Decides, after every normalized turn result, whether to ask the question,
mark the session ready for analysis, force one more question, or retry the
call against an alternate model.

Rules, in evaluation order:
    ceiling  No more than max_total_questions questions across the interview
             and all escalations; reaching it means ready.
    rule 5   Under an active escalation, a finalize signal or confidence at or
             above the target means ready, whatever the question count.
    rule 1   Ready signal with fewer than minimum_questions_before_ready
             questions: force one more question first. If the forced turn
             yields no question, ready.
    rule 2   Ready signal otherwise: ready.
    rule 3   A question: ask it.
    rule 4   No question and not ready below the minimum, outside an
             escalation: retry once against an alternate model, then force
             one more, then ready. Under an escalation it means ready.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from deepdive.core.config import orchestrator_config
from deepdive.domain.models.turn_result import (
    EmptyTurn,
    FinalizeLimit,
    NextQuestion,
    ReadyForAnalysis,
    TurnResult,
)

log = structlog.get_logger(__name__)


class TerminationAction(str, Enum):
    ASK = "ask"
    READY = "ready"
    FORCE_ONE_MORE = "force_one_more"
    RETRY_ALTERNATE_MODEL = "retry_alternate_model"


@dataclass(frozen=True)
class PolicyContext:
    """Session facts the policy needs, captured before the decision.

    Attributes:
        questions_asked: Questions asked so far (session.turn_number)
        forced_attempted: A forced continuation was already issued this turn
        alternate_attempted: An alternate-model retry was already issued this turn
        escalation_active: Ask Me More is in progress
        target_confidence: Confidence goal of the active escalation
        escalation_questions: Questions asked in the active escalation
        escalation_budget: Maximum questions for the active escalation
    """

    questions_asked: int
    forced_attempted: bool = False
    alternate_attempted: bool = False
    escalation_active: bool = False
    target_confidence: Optional[int] = None
    escalation_questions: int = 0
    escalation_budget: Optional[int] = None


@dataclass(frozen=True)
class Decision:
    action: TerminationAction
    reason: str
    question: Optional[str] = None


class TerminationPolicy:
    """Layered confidence / question-count termination rules."""

    def __init__(
        self,
        minimum_questions_before_ready: Optional[int] = None,
        max_total_questions: Optional[int] = None,
    ):
        termination = orchestrator_config.termination
        self.minimum_questions_before_ready = (
            minimum_questions_before_ready
            if minimum_questions_before_ready is not None
            else termination.minimum_questions_before_ready
        )
        self.max_total_questions = (
            max_total_questions
            if max_total_questions is not None
            else termination.max_total_questions
        )

    def ceiling_reached(self, questions_asked: int) -> bool:
        return questions_asked >= self.max_total_questions

    def remaining_questions(self, questions_asked: int) -> int:
        return max(0, self.max_total_questions - questions_asked)

    def evaluate(self, result: TurnResult, context: PolicyContext) -> Decision:
        decision = self._decide(result, context)
        log.info(
            "termination_decision",
            action=decision.action.value,
            reason=decision.reason,
            questions_asked=context.questions_asked,
            confidence=result.confidence,
            escalation_active=context.escalation_active,
        )
        return decision

    def _decide(self, result: TurnResult, context: PolicyContext) -> Decision:
        variant = result.variant()
        asked = context.questions_asked

        if self.ceiling_reached(asked):
            return Decision(TerminationAction.READY, "question_ceiling")

        if context.escalation_active:
            if isinstance(variant, FinalizeLimit):
                return Decision(TerminationAction.READY, "service_finalize")
            if self._target_met(result, context):
                return Decision(TerminationAction.READY, "target_confidence_met")
            if (
                context.escalation_budget is not None
                and context.escalation_questions >= context.escalation_budget
            ):
                return Decision(TerminationAction.READY, "escalation_budget_spent")
            if isinstance(variant, ReadyForAnalysis):
                return Decision(TerminationAction.READY, "service_ready")
            if isinstance(variant, EmptyTurn):
                return Decision(TerminationAction.READY, "no_further_questions")
        elif isinstance(variant, (ReadyForAnalysis, FinalizeLimit)):
            if asked < self.minimum_questions_before_ready:
                if not context.forced_attempted:
                    return Decision(
                        TerminationAction.FORCE_ONE_MORE, "ready_below_minimum"
                    )
                return Decision(TerminationAction.READY, "forced_continuation_empty")
            return Decision(TerminationAction.READY, "service_ready")

        if isinstance(variant, NextQuestion):
            return Decision(
                TerminationAction.ASK, "next_question", question=variant.question
            )

        # EmptyTurn: no question and no ready signal
        if asked < self.minimum_questions_before_ready:
            if not context.alternate_attempted:
                return Decision(
                    TerminationAction.RETRY_ALTERNATE_MODEL, "empty_below_minimum"
                )
            if not context.forced_attempted:
                return Decision(
                    TerminationAction.FORCE_ONE_MORE, "alternate_model_empty"
                )
            return Decision(TerminationAction.READY, "forced_continuation_empty")
        return Decision(TerminationAction.READY, "no_further_questions")

    @staticmethod
    def _target_met(result: TurnResult, context: PolicyContext) -> bool:
        if result.target_reached:
            return True
        target = context.target_confidence
        return (
            target is not None
            and result.confidence is not None
            and result.confidence >= target
        )
