"""Response normalization for the reasoning service.

The service does not speak one contract. Depending on endpoint and phase it
returns, among others:

- start:          {session_id, question, question_number, ...}
- continue:       {question, question_number, is_final_question?, ...}
- ready:          {ready_for_analysis: true, questions_completed}
- ask-more:       {question, question_category, expected_confidence_gain,
                   current_confidence, target_confidence, max_questions_remaining}
- limit reached:  {should_finalize: true, questions_asked, message}
- target met:     {status: "target_reached", current_confidence, target_confidence}

Field names also drift between versions (camelCase, nesting under "data").
Everything downstream works against TurnResult only.
"""

import json
import math
from typing import Any, Dict, List, Optional, Tuple

import structlog

from deepdive.core.exceptions import MalformedAnalysisError
from deepdive.domain.models.turn_result import TurnResult

log = structlog.get_logger(__name__)

_QUESTION_KEYS = ("question", "next_question", "follow_up_question", "followUpQuestion")
_QUESTION_NUMBER_KEYS = ("question_number", "questionNumber", "current_question")
_READY_KEYS = ("ready_for_analysis", "readyForAnalysis", "analysis_ready")
_FINALIZE_KEYS = ("should_finalize", "shouldFinalize")
_CONFIDENCE_KEYS = ("current_confidence", "currentConfidence", "confidence", "confidence_level")
_TARGET_KEYS = ("target_confidence", "targetConfidence")
_REMAINING_KEYS = (
    "questions_remaining",
    "remaining_questions",
    "max_questions_remaining",
    "remainingQuestions",
)
_ASKED_KEYS = ("questions_asked", "questions_completed", "questionsAsked")
_NESTED_KEYS = ("data", "result", "response")

_READY_STATUSES = {"analysis_ready", "ready", "ready_for_analysis"}
_FINALIZE_STATUSES = {
    "completed",
    "target_reached",
    "sufficient_confidence",
    "limit_reached",
    "max_questions_reached",
}


def _first(data: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _as_confidence(value: Any) -> Optional[int]:
    """Integer percentage in [0, 100]; fractions such as 0.85 are scaled."""
    if isinstance(value, float) and 0.0 < value <= 1.0:
        value = value * 100
    number = _as_int(value)
    if number is None:
        return None
    return max(0, min(100, number))


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("text") or value.get("question") or value.get("content")
    if isinstance(value, str):
        return value
    return None


def _flatten(raw: Any) -> Dict[str, Any]:
    """Decode strings and lift nested payloads to one flat dict."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {"message": raw}
    if not isinstance(raw, dict):
        return {}

    flat = dict(raw)
    for key in _NESTED_KEYS:
        nested = raw.get(key)
        if isinstance(nested, dict):
            for inner_key, inner_value in nested.items():
                flat.setdefault(inner_key, inner_value)
    return flat


def normalize(raw: Any) -> TurnResult:
    """Map any interview-endpoint response to a TurnResult. Never raises."""
    data = _flatten(raw)

    question = _as_text(_first(data, _QUESTION_KEYS))
    if question is not None:
        question = question.strip() or None

    status = str(data.get("status") or "").strip().lower()
    ready = any(_as_bool(data.get(k)) for k in _READY_KEYS) or status in _READY_STATUSES
    if not ready and question is None and _as_bool(data.get("is_final_question")):
        ready = True

    should_finalize = (
        any(_as_bool(data.get(k)) for k in _FINALIZE_KEYS)
        or status in _FINALIZE_STATUSES
    )

    message = data.get("message") or data.get("info")
    if not isinstance(message, str):
        message = None

    session_id = _first(data, ("session_id", "sessionId"))

    result = TurnResult(
        question=question,
        question_number=_as_int(_first(data, _QUESTION_NUMBER_KEYS)),
        ready_for_analysis=ready,
        confidence=_as_confidence(_first(data, _CONFIDENCE_KEYS)),
        target_confidence=_as_confidence(_first(data, _TARGET_KEYS)),
        should_finalize=should_finalize,
        message=message,
        session_id=str(session_id) if session_id is not None else None,
        question_category=_as_text(data.get("question_category")),
        expected_confidence_gain=_as_int(data.get("expected_confidence_gain")),
        questions_remaining=_as_int(_first(data, _REMAINING_KEYS)),
        questions_asked=_as_int(_first(data, _ASKED_KEYS)),
    )

    log.debug(
        "response_normalized",
        variant=result.variant().kind,
        has_question=result.has_question,
        confidence=result.confidence,
    )
    return result


def is_empty_question(result: TurnResult) -> bool:
    """Retry predicate for calls that must yield a question."""
    return not result.has_question


# =============================================================================
# Analysis payloads
# =============================================================================


def _require_object(value: Any, field_name: str) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    kind = type(value).__name__ if value is not None else "nothing"
    log.error("malformed_analysis", field=field_name, received_type=kind)
    raise MalformedAnalysisError(
        f"Expected '{field_name}' to be an object, received {kind}"
    )


def _possible_causes(analysis: Dict[str, Any]) -> List[Dict[str, Any]]:
    if isinstance(analysis.get("possible_causes"), list):
        return analysis["possible_causes"]
    causes = []
    for item in analysis.get("differential_diagnoses") or analysis.get("differentials") or []:
        if not isinstance(item, dict):
            continue
        causes.append(
            {
                "condition": item.get("condition") or item.get("name") or "",
                "likelihood": item.get("probability") or item.get("likelihood") or 0,
                "explanation": item.get("reasoning") or item.get("explanation") or "",
            }
        )
    return causes


def canonical_analysis(
    analysis: Dict[str, Any],
    confidence: Optional[int],
    reasoning_snippets: Any = None,
) -> Dict[str, Any]:
    """Add the canonical fields the presentation layer reads.

    Original keys are preserved; canonical keys are only filled in.
    """
    red_flags = analysis.get("red_flags") or analysis.get("redFlags") or []
    canonical = dict(analysis)
    canonical.setdefault(
        "primary_assessment",
        analysis.get("primary_diagnosis") or analysis.get("primaryCondition") or "",
    )
    if confidence is not None:
        canonical["confidence"] = confidence
    canonical.setdefault("key_findings", [])
    canonical["possible_causes"] = _possible_causes(analysis)
    canonical.setdefault("recommendations", [])
    canonical.setdefault("urgency", "high" if red_flags else "medium")
    if not isinstance(reasoning_snippets, list):
        reasoning_snippets = analysis.get("reasoning_snippets")
    canonical["reasoning_snippets"] = (
        reasoning_snippets if isinstance(reasoning_snippets, list) else []
    )
    return canonical


def normalize_analysis(
    raw: Any,
) -> Tuple[Dict[str, Any], Optional[int], Optional[int], Optional[str]]:
    """Validate and normalize a finalize payload.

    Returns:
        (analysis, confidence, questions_asked, result_id)

    Raises:
        MalformedAnalysisError: payload or its analysis is not an object.
            A string analysis is rejected even if it contains JSON.
    """
    payload = _require_object(raw, "response")
    analysis = _require_object(payload.get("analysis"), "analysis")

    confidence = _as_confidence(payload.get("confidence"))
    if confidence is None:
        confidence = _as_confidence(analysis.get("confidence"))

    result_id = _first(payload, ("deep_dive_id", "result_id", "summary_id", "id"))
    return (
        canonical_analysis(analysis, confidence, payload.get("reasoning_snippets")),
        confidence,
        _as_int(_first(payload, _ASKED_KEYS)),
        str(result_id) if result_id is not None else None,
    )


def normalize_ultra(
    raw: Any,
) -> Tuple[Dict[str, Any], Optional[int], Dict[str, Any], List[str]]:
    """Validate and normalize an ultra re-analysis payload.

    Returns:
        (analysis, confidence, confidence_progression, critical_insights)

    Raises:
        MalformedAnalysisError: payload or ultra_analysis is not an object
    """
    payload = _require_object(raw, "response")
    analysis = _require_object(
        payload.get("ultra_analysis") or payload.get("analysis"), "ultra_analysis"
    )

    progression = payload.get("confidence_progression")
    if not isinstance(progression, dict):
        progression = {}

    confidence = _as_confidence(payload.get("confidence"))
    if confidence is None:
        confidence = _as_confidence(analysis.get("confidence"))
    if confidence is None:
        confidence = _as_confidence(progression.get("ultra"))

    insights = payload.get("critical_insights")
    if not isinstance(insights, list):
        insights = analysis.get("critical_insights")
    if not isinstance(insights, list):
        insights = []

    return (
        canonical_analysis(analysis, confidence),
        confidence,
        progression,
        [str(i) for i in insights],
    )
