"""Tests for response normalization."""

import pytest

from deepdive.core.exceptions import MalformedAnalysisError
from deepdive.domain.models.turn_result import (
    EmptyTurn,
    FinalizeLimit,
    NextQuestion,
    ReadyForAnalysis,
)
from deepdive.services.response_normalizer import (
    is_empty_question,
    normalize,
    normalize_analysis,
    normalize_ultra,
)


class TestNormalize:
    """Every interview response shape reduces to one TurnResult."""

    def test_start_response(self):
        result = normalize(
            {"session_id": "dd-1", "question": "Where is the pain?", "question_number": 1}
        )

        assert result.session_id == "dd-1"
        assert result.question == "Where is the pain?"
        assert result.question_number == 1
        assert isinstance(result.variant(), NextQuestion)

    def test_ready_response(self):
        result = normalize({"ready_for_analysis": True, "questions_completed": 3})

        assert result.ready_for_analysis
        assert result.questions_asked == 3
        assert isinstance(result.variant(), ReadyForAnalysis)

    def test_ask_more_response(self):
        result = normalize(
            {
                "question": "Any vision changes?",
                "question_category": "red_flags",
                "expected_confidence_gain": 4,
                "current_confidence": 82,
                "target_confidence": 95,
                "max_questions_remaining": 4,
            }
        )

        assert result.question_category == "red_flags"
        assert result.expected_confidence_gain == 4
        assert result.confidence == 82
        assert result.target_confidence == 95
        assert result.questions_remaining == 4

    def test_limit_reached_response(self):
        result = normalize(
            {"should_finalize": True, "questions_asked": 11, "message": "Limit reached"}
        )

        variant = result.variant()
        assert isinstance(variant, FinalizeLimit)
        assert variant.message == "Limit reached"

    @pytest.mark.parametrize("status", ["target_reached", "sufficient_confidence"])
    def test_finalize_statuses(self, status):
        result = normalize({"status": status, "current_confidence": 96})

        assert result.should_finalize
        assert result.confidence == 96

    def test_final_question_without_question_means_ready(self):
        assert normalize({"is_final_question": True}).ready_for_analysis
        assert not normalize({"is_final_question": True, "question": "Last?"}).ready_for_analysis

    def test_camel_case_and_nesting(self):
        result = normalize(
            {"data": {"followUpQuestion": "How often?", "currentConfidence": "88%"}}
        )

        assert result.question == "How often?"
        assert result.confidence == 88

    def test_fractional_confidence_scaled(self):
        assert normalize({"confidence": 0.85}).confidence == 85
        assert normalize({"confidence": 140}).confidence == 100

    def test_json_string_payload(self):
        result = normalize('{"question": "Since when?"}')

        assert result.question == "Since when?"

    def test_question_object(self):
        assert normalize({"question": {"text": "Which side?"}}).question == "Which side?"

    @pytest.mark.parametrize("raw", [None, [], 42, {}, {"question": "   "}, b"not json"])
    def test_unusable_payloads_never_raise(self, raw):
        result = normalize(raw)

        assert isinstance(result.variant(), EmptyTurn)
        assert is_empty_question(result)

    @pytest.mark.parametrize(
        "raw",
        [
            {"question": "Q", "question_number": "inf"},
            {"question": "Q", "confidence": float("nan")},
            {"question": "Q", "questions_asked": float("-inf")},
            '{"question": "Q", "current_confidence": NaN}',
            '{"question": "Q", "confidence": Infinity}',
        ],
    )
    def test_non_finite_numbers_ignored(self, raw):
        result = normalize(raw)

        assert result.question == "Q"
        assert result.question_number is None
        assert result.confidence is None
        assert result.questions_asked is None


class TestNormalizeAnalysis:
    """Finalize payloads must carry a structured analysis."""

    def test_valid_analysis(self):
        analysis, confidence, asked, result_id = normalize_analysis(
            {
                "analysis": {
                    "primary_diagnosis": "Migraine",
                    "differential_diagnoses": [
                        {"condition": "Tension headache", "probability": 30, "reasoning": "bilateral"}
                    ],
                    "red_flags": ["sudden onset"],
                },
                "confidence": 82,
                "questions_asked": 4,
                "deep_dive_id": "result-9",
            }
        )

        assert confidence == 82
        assert asked == 4
        assert result_id == "result-9"
        assert analysis["primary_assessment"] == "Migraine"
        assert analysis["primary_diagnosis"] == "Migraine"
        assert analysis["confidence"] == 82
        assert analysis["possible_causes"] == [
            {"condition": "Tension headache", "likelihood": 30, "explanation": "bilateral"}
        ]
        assert analysis["urgency"] == "high"
        assert analysis["reasoning_snippets"] == []

    def test_confidence_from_analysis_body(self):
        analysis, confidence, asked, result_id = normalize_analysis(
            {"analysis": {"confidence": 0.7}}
        )

        assert confidence == 70
        assert asked is None
        assert result_id is None
        assert analysis["urgency"] == "medium"

    def test_string_analysis_rejected(self):
        with pytest.raises(MalformedAnalysisError):
            normalize_analysis({"analysis": '{"primary_assessment": "Migraine"}'})

    @pytest.mark.parametrize("raw", [None, "text", {"confidence": 80}, {"analysis": [1, 2]}])
    def test_non_object_rejected(self, raw):
        with pytest.raises(MalformedAnalysisError):
            normalize_analysis(raw)


class TestNormalizeUltra:
    def test_ultra_payload(self):
        analysis, confidence, progression, insights = normalize_ultra(
            {
                "ultra_analysis": {"primary_assessment": "Cluster headache"},
                "confidence_progression": {"original": 80, "ultra": 94},
                "critical_insights": ["Attacks cluster at night"],
            }
        )

        assert analysis["primary_assessment"] == "Cluster headache"
        assert confidence == 94
        assert progression == {"original": 80, "ultra": 94}
        assert insights == ["Attacks cluster at night"]

    def test_missing_ultra_analysis_rejected(self):
        with pytest.raises(MalformedAnalysisError):
            normalize_ultra({"ultra_analysis": "better analysis"})
