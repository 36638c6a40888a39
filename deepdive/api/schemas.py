"""
API request/response schemas.

Pydantic models for API validation and serialization.
"""

from pydantic import BaseModel, Field, model_validator
from typing import List, Dict, Any, Optional
from datetime import datetime

from deepdive.domain.models.session import (
    EscalationKind,
    Session,
    SessionPhase,
    SubjectContext,
    Tier,
    TurnRole,
)
from deepdive.services.escalation_service import EscalationOptions
from deepdive.services.session_service import ProgressEvent


# ============ SESSION SCHEMAS ============


class SubjectFields(BaseModel):
    """What is being assessed. One of body_part or category is required."""

    body_part: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, max_length=200)
    symptoms: str = Field(default="", max_length=5000)
    form_data: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None

    @model_validator(mode="after")
    def require_area(self) -> "SubjectFields":
        if not (self.body_part or self.category):
            raise ValueError("Either body_part or category is required")
        return self

    def to_subject(self) -> SubjectContext:
        return SubjectContext(
            body_part=self.body_part,
            category=self.category,
            symptoms=self.symptoms,
            form_data=self.form_data,
        )


class SessionCreate(SubjectFields):
    """Request to start a fresh deep dive."""


class SessionResume(SubjectFields):
    """Request to continue a prior session toward a higher confidence."""

    prior_session_id: str = Field(..., min_length=1)
    current_confidence: Optional[int] = Field(default=None, ge=0, le=100)


class AnswerRequest(BaseModel):
    """Answer to the pending question."""

    text: str = Field(..., min_length=1, max_length=5000, description="User's answer text")


class EscalationRequest(BaseModel):
    """Post-completion enhancement request."""

    kind: EscalationKind


# ============ RESPONSE SCHEMAS ============


class TurnSchema(BaseModel):
    role: TurnRole
    content: str
    ordinal: int
    timestamp: datetime
    is_fallback: bool = False


class AnalysisSchema(BaseModel):
    tier: Tier
    analysis: Dict[str, Any]
    confidence: Optional[int] = None
    questions_asked: Optional[int] = None
    result_id: Optional[str] = None
    critical_insights: List[str] = Field(default_factory=list)
    created_at: datetime


class EscalationOptionsSchema(BaseModel):
    ask_more: bool
    think_harder: bool
    reanalyze: bool
    questions_remaining: int

    @classmethod
    def from_options(cls, options: EscalationOptions) -> "EscalationOptionsSchema":
        return cls(
            ask_more=options.ask_more,
            think_harder=options.think_harder,
            reanalyze=options.reanalyze,
            questions_remaining=options.questions_remaining,
        )


class SessionResponse(BaseModel):
    """Session snapshot returned by every session endpoint."""

    id: str
    phase: SessionPhase
    tier: Tier
    turn_number: int
    confidence: Optional[int] = None
    target_confidence: int
    retry_count: int = 0
    pending_question: Optional[str] = None
    transcript: List[TurnSchema] = Field(default_factory=list)
    analysis: Optional[AnalysisSchema] = None
    confidence_progression: Dict[str, Optional[int]] = Field(default_factory=dict)
    escalation_kind: Optional[EscalationKind] = None
    escalation: Optional[EscalationOptionsSchema] = None
    last_error: Optional[str] = None
    is_local: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(
        cls, session: Session, options: Optional[EscalationOptions] = None
    ) -> "SessionResponse":
        analysis = session.analysis
        return cls(
            id=session.id,
            phase=session.phase,
            tier=session.tier,
            turn_number=session.turn_number,
            confidence=session.confidence,
            target_confidence=session.target_confidence,
            retry_count=session.retry_count,
            pending_question=session.pending_question,
            transcript=[
                TurnSchema(
                    role=t.role,
                    content=t.content,
                    ordinal=t.ordinal,
                    timestamp=t.timestamp,
                    is_fallback=t.is_fallback,
                )
                for t in session.transcript
            ],
            analysis=(
                AnalysisSchema(**analysis.model_dump()) if analysis is not None else None
            ),
            confidence_progression=session.progression.model_dump(),
            escalation_kind=session.escalation_kind,
            escalation=(
                EscalationOptionsSchema.from_options(options) if options else None
            ),
            last_error=session.last_error,
            is_local=session.is_local,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class ProgressResponse(BaseModel):
    session_id: str
    phase: SessionPhase
    confidence: Optional[int] = None
    turn_number: int
    tier: Tier
    retry_count: int = 0

    @classmethod
    def from_event(cls, event: ProgressEvent) -> "ProgressResponse":
        return cls(
            session_id=event.session_id,
            phase=event.phase,
            confidence=event.confidence,
            turn_number=event.turn_number,
            tier=event.tier,
            retry_count=event.retry_count,
        )
