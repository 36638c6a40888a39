"""Session domain models for deep dive interview lifecycle management.

Core Models:
    - SubjectContext: Immutable description of what is being assessed
    - Turn: One transcript entry (question, answer, or ready notice)
    - AnalysisRecord: Analysis stored for a single tier
    - ConfidenceProgression: Confidence reached at each tier
    - Session: Top-level interview entity with phase, transcript and analyses

Session Lifecycle:
    initializing -> interviewing -> awaiting_analysis -> completed
    completed -> escalating -> awaiting_analysis/completed (Ask Me More)
    completed -> escalating -> completed at a higher tier (Think Harder)
    any -> errored (transcript and analyses preserved)

Invariants:
    - transcript only grows; entries are never reordered or removed
    - turn_number never decreases
    - analyses are replaced wholesale per tier, never deleted
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionPhase(str, Enum):
    """Interview session phase."""

    INITIALIZING = "initializing"
    INTERVIEWING = "interviewing"
    AWAITING_ANALYSIS = "awaiting_analysis"
    COMPLETED = "completed"
    ESCALATING = "escalating"
    ERRORED = "errored"


# Phases in which a user answer is accepted
ANSWERABLE_PHASES = frozenset({SessionPhase.INTERVIEWING, SessionPhase.ESCALATING})


class Tier(str, Enum):
    """Analysis quality tier, ordered basic < enhanced < ultra."""

    BASIC = "basic"
    ENHANCED = "enhanced"
    ULTRA = "ultra"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [Tier.BASIC, Tier.ENHANCED, Tier.ULTRA]


class TurnRole(str, Enum):
    """Transcript entry role."""

    QUESTION = "question"
    ANSWER = "answer"
    NOTICE = "notice"


class EscalationKind(str, Enum):
    """Post-completion enhancement flows."""

    ASK_MORE = "ask_more"
    THINK_HARDER = "think_harder"
    REANALYZE = "reanalyze"


class SubjectContext(BaseModel):
    """What is being assessed. Set once at session creation."""

    model_config = ConfigDict(frozen=True)

    body_part: Optional[str] = Field(
        default=None, description="Body area for body-scan deep dives"
    )
    category: Optional[str] = Field(
        default=None, description="Assessment category for general deep dives"
    )
    symptoms: str = Field(default="", description="Free-form symptom description")
    form_data: Dict[str, Any] = Field(
        default_factory=dict, description="Structured form answers"
    )

    @property
    def area(self) -> Optional[str]:
        """Body part, falling back to category."""
        return self.body_part or self.category

    @property
    def symptom_text(self) -> str:
        """Symptom description from the free-form field or the form."""
        if self.symptoms:
            return self.symptoms
        value = self.form_data.get("symptoms", "")
        return value if isinstance(value, str) else ""


class Turn(BaseModel):
    """Single transcript entry."""

    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    ordinal: int = Field(description="Position in transcript (0-indexed)")
    timestamp: datetime = Field(default_factory=_utcnow)
    model: Optional[str] = Field(
        default=None, description="Model that produced a question, if known"
    )
    is_fallback: bool = Field(
        default=False, description="Question was synthesized locally"
    )


class AnalysisRecord(BaseModel):
    """Analysis produced for one tier. Immutable once stored."""

    model_config = ConfigDict(frozen=True)

    tier: Tier
    analysis: Dict[str, Any]
    confidence: Optional[int] = None
    questions_asked: Optional[int] = None
    result_id: Optional[str] = None
    critical_insights: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class ConfidenceProgression(BaseModel):
    """Confidence reached at each tier. Values are only ever added."""

    basic: Optional[int] = None
    enhanced: Optional[int] = None
    ultra: Optional[int] = None

    def record(self, tier: Tier, confidence: Optional[int]) -> None:
        if confidence is not None:
            setattr(self, tier.value, confidence)

    def merge(self, reported: Dict[str, Any]) -> None:
        """Fill tiers from a service-reported progression, keeping known values."""
        for tier in _TIER_ORDER:
            value = reported.get(tier.value)
            if getattr(self, tier.value) is None and isinstance(value, (int, float)):
                setattr(self, tier.value, int(value))


class Session(BaseModel):
    """Deep dive interview session.

    Mutated only by SessionService and EscalationService. Callers outside
    those services receive deep copies.
    """

    id: str
    subject: SubjectContext
    requester_id: Optional[str] = None
    phase: SessionPhase = SessionPhase.INITIALIZING
    transcript: List[Turn] = Field(default_factory=list)
    turn_number: int = Field(default=0, ge=0, description="Questions asked so far")
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    target_confidence: int = Field(default=90, ge=0, le=100)
    retry_count: int = Field(default=0, ge=0)
    tier: Tier = Tier.BASIC
    analyses: Dict[Tier, AnalysisRecord] = Field(default_factory=dict)
    progression: ConfidenceProgression = Field(default_factory=ConfidenceProgression)
    escalation_kind: Optional[EscalationKind] = None
    escalation_questions: int = Field(
        default=0, ge=0, description="Questions asked during the active Ask Me More"
    )
    initial_question_count: int = Field(
        default=0, ge=0, description="Questions asked before first completion"
    )
    last_error: Optional[str] = None
    recoverable_phase: Optional[SessionPhase] = Field(
        default=None, description="Phase to return to when an errored step is retried"
    )
    is_local: bool = Field(
        default=False, description="Id was generated locally (service unreachable)"
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    # ------------------------------------------------------------------
    # Mutation helpers
    # ------------------------------------------------------------------

    def append_turn(
        self,
        role: TurnRole,
        content: str,
        model: Optional[str] = None,
        is_fallback: bool = False,
    ) -> Turn:
        turn = Turn(
            role=role,
            content=content,
            ordinal=len(self.transcript),
            model=model,
            is_fallback=is_fallback,
        )
        self.transcript.append(turn)
        self.touch()
        return turn

    def advance_turn_number(self, value: int) -> None:
        """Raise turn_number to value; lower values are ignored."""
        if value > self.turn_number:
            self.turn_number = value
            self.touch()

    def store_analysis(self, record: AnalysisRecord) -> None:
        self.analyses[record.tier] = record
        self.progression.record(record.tier, record.confidence)
        if record.tier.rank >= self.tier.rank:
            self.tier = record.tier
        self.touch()

    def touch(self) -> None:
        self.updated_at = _utcnow()

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def analysis(self) -> Optional[AnalysisRecord]:
        """Analysis for the currently displayed tier."""
        return self.analyses.get(self.tier)

    @property
    def pending_question(self) -> Optional[str]:
        """Last question if it still awaits an answer."""
        if self.transcript and self.transcript[-1].role == TurnRole.QUESTION:
            return self.transcript[-1].content
        return None

    @property
    def asked_questions(self) -> List[str]:
        return [t.content for t in self.transcript if t.role == TurnRole.QUESTION]

    @property
    def is_archived(self) -> bool:
        """Completed with no escalation in progress."""
        return self.phase == SessionPhase.COMPLETED and self.escalation_kind is None
