"""Tests for session domain models."""

import pytest
from pydantic import ValidationError

from deepdive.domain.models.session import (
    ANSWERABLE_PHASES,
    AnalysisRecord,
    ConfidenceProgression,
    EscalationKind,
    Session,
    SessionPhase,
    SubjectContext,
    Tier,
    TurnRole,
)


def make_session(**kwargs) -> Session:
    return Session(id="dd-1", subject=SubjectContext(body_part="head"), **kwargs)


class TestSubjectContext:
    def test_area_prefers_body_part(self):
        assert SubjectContext(body_part="knee", category="joints").area == "knee"
        assert SubjectContext(category="sleep").area == "sleep"
        assert SubjectContext().area is None

    def test_symptom_text_from_form(self):
        subject = SubjectContext(body_part="head", form_data={"symptoms": "dizzy"})
        assert subject.symptom_text == "dizzy"
        assert SubjectContext(form_data={"symptoms": 3}).symptom_text == ""

    def test_frozen(self):
        subject = SubjectContext(body_part="head")
        with pytest.raises(ValidationError):
            subject.body_part = "arm"


class TestTranscript:
    def test_append_turn_assigns_ordinals(self):
        session = make_session()

        session.append_turn(TurnRole.QUESTION, "Where does it hurt?")
        session.append_turn(TurnRole.ANSWER, "Forehead")
        session.append_turn(TurnRole.NOTICE, "Ready")

        assert [t.ordinal for t in session.transcript] == [0, 1, 2]
        assert [t.role for t in session.transcript] == [
            TurnRole.QUESTION,
            TurnRole.ANSWER,
            TurnRole.NOTICE,
        ]

    def test_pending_question(self):
        session = make_session()
        assert session.pending_question is None

        session.append_turn(TurnRole.QUESTION, "Where does it hurt?")
        assert session.pending_question == "Where does it hurt?"

        session.append_turn(TurnRole.ANSWER, "Forehead")
        assert session.pending_question is None

    def test_asked_questions(self):
        session = make_session()
        session.append_turn(TurnRole.QUESTION, "Q1")
        session.append_turn(TurnRole.ANSWER, "A1")
        session.append_turn(TurnRole.QUESTION, "Q2")

        assert session.asked_questions == ["Q1", "Q2"]

    def test_turn_number_never_decreases(self):
        session = make_session()

        session.advance_turn_number(3)
        session.advance_turn_number(1)

        assert session.turn_number == 3


class TestAnalyses:
    def test_store_analysis_upgrades_tier(self):
        session = make_session()

        session.store_analysis(AnalysisRecord(tier=Tier.BASIC, analysis={"a": 1}, confidence=80))
        session.store_analysis(AnalysisRecord(tier=Tier.ULTRA, analysis={"a": 2}, confidence=93))

        assert session.tier == Tier.ULTRA
        assert session.analysis.analysis == {"a": 2}
        assert session.analyses[Tier.BASIC].analysis == {"a": 1}
        assert session.progression.basic == 80
        assert session.progression.ultra == 93

    def test_lower_tier_does_not_downgrade_display(self):
        session = make_session()

        session.store_analysis(AnalysisRecord(tier=Tier.ULTRA, analysis={}, confidence=93))
        session.store_analysis(AnalysisRecord(tier=Tier.ENHANCED, analysis={}, confidence=88))

        assert session.tier == Tier.ULTRA
        assert Tier.ENHANCED in session.analyses

    def test_tier_order(self):
        assert Tier.BASIC.rank < Tier.ENHANCED.rank < Tier.ULTRA.rank

    def test_progression_merge_keeps_known_values(self):
        progression = ConfidenceProgression(basic=80)

        progression.merge({"basic": 70, "enhanced": 88.0, "ultra": "n/a", "original": 1})

        assert progression.basic == 80
        assert progression.enhanced == 88
        assert progression.ultra is None


class TestPhases:
    def test_answerable_phases(self):
        assert SessionPhase.INTERVIEWING in ANSWERABLE_PHASES
        assert SessionPhase.ESCALATING in ANSWERABLE_PHASES
        assert SessionPhase.AWAITING_ANALYSIS not in ANSWERABLE_PHASES

    def test_is_archived(self):
        session = make_session(phase=SessionPhase.COMPLETED)
        assert session.is_archived

        session.escalation_kind = EscalationKind.THINK_HARDER
        assert not session.is_archived

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            make_session(confidence=101)

    def test_deep_copy_is_independent(self):
        session = make_session()
        session.append_turn(TurnRole.QUESTION, "Q1")

        snapshot = session.model_copy(deep=True)
        session.append_turn(TurnRole.ANSWER, "A1")

        assert len(snapshot.transcript) == 1
