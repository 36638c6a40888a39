"""Domain models package."""

from .session import (
    AnalysisRecord,
    ConfidenceProgression,
    EscalationKind,
    Session,
    SessionPhase,
    SubjectContext,
    Tier,
    Turn,
    TurnRole,
)
from .turn_result import (
    EmptyTurn,
    FinalizeLimit,
    NextQuestion,
    ReadyForAnalysis,
    TurnResult,
    TurnVariant,
)

__all__ = [
    "AnalysisRecord",
    "ConfidenceProgression",
    "EscalationKind",
    "Session",
    "SessionPhase",
    "SubjectContext",
    "Tier",
    "Turn",
    "TurnRole",
    "EmptyTurn",
    "FinalizeLimit",
    "NextQuestion",
    "ReadyForAnalysis",
    "TurnResult",
    "TurnVariant",
]
