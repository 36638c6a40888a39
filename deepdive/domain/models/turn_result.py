"""Canonical turn result models.

The reasoning service answers with several response shapes depending on
the endpoint and phase. ResponseNormalizer reduces every shape to TurnResult,
and TurnResult.variant() to exactly one of the tagged variants below, so the
termination policy only ever matches on one shape.

Variants:
    - NextQuestion: a question to show the user
    - ReadyForAnalysis: enough information gathered
    - FinalizeLimit: service asks the client to finalize (limit or target hit)
    - EmptyTurn: neither a question nor a ready signal
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class TurnResult(BaseModel):
    """Normalized response from any interview endpoint."""

    question: Optional[str] = None
    question_number: Optional[int] = None
    ready_for_analysis: bool = False
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    target_confidence: Optional[int] = Field(default=None, ge=0, le=100)
    should_finalize: bool = False
    message: Optional[str] = None
    session_id: Optional[str] = None
    question_category: Optional[str] = None
    expected_confidence_gain: Optional[int] = None
    questions_remaining: Optional[int] = None
    questions_asked: Optional[int] = None

    @property
    def has_question(self) -> bool:
        return bool(self.question and self.question.strip())

    @property
    def target_reached(self) -> bool:
        return (
            self.confidence is not None
            and self.target_confidence is not None
            and self.confidence >= self.target_confidence
        )

    def variant(self) -> "TurnVariant":
        """Reduce to a single tagged variant.

        A finalize signal wins over a question; a question wins over a
        ready flag (the service sometimes sends both on the last turn).
        """
        if self.should_finalize:
            return FinalizeLimit(
                message=self.message,
                questions_asked=self.questions_asked,
                confidence=self.confidence,
            )
        if self.has_question:
            return NextQuestion(
                question=self.question.strip(),
                question_number=self.question_number,
                confidence=self.confidence,
                category=self.question_category,
                expected_confidence_gain=self.expected_confidence_gain,
            )
        if self.ready_for_analysis:
            return ReadyForAnalysis(confidence=self.confidence, message=self.message)
        return EmptyTurn(message=self.message)


class NextQuestion(BaseModel):
    kind: Literal["next_question"] = "next_question"
    question: str
    question_number: Optional[int] = None
    confidence: Optional[int] = None
    category: Optional[str] = None
    expected_confidence_gain: Optional[int] = None


class ReadyForAnalysis(BaseModel):
    kind: Literal["ready"] = "ready"
    confidence: Optional[int] = None
    message: Optional[str] = None


class FinalizeLimit(BaseModel):
    kind: Literal["finalize_limit"] = "finalize_limit"
    message: Optional[str] = None
    questions_asked: Optional[int] = None
    confidence: Optional[int] = None


class EmptyTurn(BaseModel):
    kind: Literal["empty"] = "empty"
    message: Optional[str] = None


TurnVariant = Union[NextQuestion, ReadyForAnalysis, FinalizeLimit, EmptyTurn]
