"""
Client for the remote reasoning service.

The reasoning service generates interview questions and analyses; this
module treats it as an opaque RPC boundary. Provides:
- ReasoningClient: abstract interface used by the orchestrator
- HttpReasoningClient: httpx implementation against the deep dive endpoints
- Error mapping from HTTP failures to the DeepDiveError hierarchy

Each call makes exactly one HTTP request. Retries and model fallback are
handled by deepdive.services.retry so the policy is applied uniformly.

Endpoint families:
- body: /api/deep-dive/*          (body-scan deep dive, keyed by body_part)
- general: /api/general-deepdive/* (general assessment, keyed by category)
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import time

import httpx
import structlog

from deepdive.core.config import orchestrator_config, settings
from deepdive.core.exceptions import (
    RemoteServiceError,
    SessionNotFoundError,
    TransientNetworkFailure,
    classify_escalation_error,
)
from deepdive.domain.models.session import SubjectContext

log = structlog.get_logger(__name__)


ENDPOINT_PREFIXES = {
    "body": "/api/deep-dive",
    "general": "/api/general-deepdive",
}


class ReasoningClient(ABC):
    """Abstract interface to the remote reasoning service.

    Every method returns the raw decoded JSON payload; shape reconciliation
    is the job of the response normalizer.
    """

    @abstractmethod
    async def start_interview(
        self,
        subject: SubjectContext,
        requester_id: Optional[str],
        model: str,
    ) -> Any:
        """Start a new interview. Expected: session_id, question, question_number."""

    @abstractmethod
    async def continue_interview(
        self,
        session_id: str,
        answer: str,
        question_number: int,
        model: str,
    ) -> Any:
        """Submit an answer and receive the next turn."""

    @abstractmethod
    async def resume_for_more_questions(
        self,
        session_id: str,
        current_confidence: int,
        target_confidence: int,
        requester_id: Optional[str],
        max_additional: int,
    ) -> Any:
        """Re-open a session to ask questions toward a higher confidence."""

    @abstractmethod
    async def finalize(
        self,
        session_id: str,
        requester_id: Optional[str],
        model: str,
    ) -> Any:
        """Produce the analysis. Expected: analysis, confidence, questions_asked."""

    @abstractmethod
    async def ultra_reanalyze(
        self,
        session_id: str,
        requester_id: Optional[str],
        model: Optional[str],
    ) -> Any:
        """Higher-effort re-analysis. Expected: ultra_analysis, confidence_progression."""

    @abstractmethod
    async def generate_summary(self, result_id: str, requester_id: Optional[str]) -> None:
        """Request an asynchronous textual summary of a completed analysis."""


class HttpReasoningClient(ReasoningClient):
    """Reasoning service client over HTTP using httpx.

    Args:
        base_url: Service base URL (defaults to settings.reasoning_api_url)
        timeout: Per-request timeout in seconds
        family: Endpoint family, "body" or "general"
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        family: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.reasoning_api_url).rstrip("/")
        self.timeout = timeout or settings.reasoning_api_timeout
        self.family = family or orchestrator_config.endpoints.family
        if self.family not in ENDPOINT_PREFIXES:
            raise ValueError(
                f"Unknown endpoint family '{self.family}'. "
                f"Supported: {', '.join(ENDPOINT_PREFIXES)}"
            )
        self.prefix = ENDPOINT_PREFIXES[self.family]
        self.transport = transport

        log.info(
            "reasoning_client_initialized",
            base_url=self.base_url,
            family=self.family,
            timeout=self.timeout,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_interview(
        self,
        subject: SubjectContext,
        requester_id: Optional[str],
        model: str,
    ) -> Any:
        payload: Dict[str, Any] = {
            "form_data": _form_payload(subject),
            "user_id": requester_id,
            "model": model,
        }
        if self.family == "general":
            payload["category"] = subject.category or subject.body_part
        else:
            payload["body_part"] = subject.body_part or subject.category
        return await self._post("start", payload)

    async def continue_interview(
        self,
        session_id: str,
        answer: str,
        question_number: int,
        model: str,
    ) -> Any:
        return await self._post(
            "continue",
            {
                "session_id": session_id,
                "answer": answer,
                "question_number": question_number,
                "fallback_model": model,
            },
        )

    async def resume_for_more_questions(
        self,
        session_id: str,
        current_confidence: int,
        target_confidence: int,
        requester_id: Optional[str],
        max_additional: int,
    ) -> Any:
        return await self._post(
            "ask-more",
            {
                "session_id": session_id,
                "current_confidence": current_confidence,
                "target_confidence": target_confidence,
                "user_id": requester_id,
                "max_questions": max_additional,
            },
        )

    async def finalize(
        self,
        session_id: str,
        requester_id: Optional[str],
        model: str,
    ) -> Any:
        return await self._post(
            "complete",
            {
                "session_id": session_id,
                "user_id": requester_id,
                "fallback_model": model,
            },
        )

    async def ultra_reanalyze(
        self,
        session_id: str,
        requester_id: Optional[str],
        model: Optional[str],
    ) -> Any:
        payload: Dict[str, Any] = {"session_id": session_id, "user_id": requester_id}
        if model:
            payload["model"] = model
        return await self._post("ultra-think", payload)

    async def generate_summary(self, result_id: str, requester_id: Optional[str]) -> None:
        await self._post(
            "summary", {"deep_dive_id": result_id, "user_id": requester_id}
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(self, operation: str, payload: Dict[str, Any]) -> Any:
        """POST to an operation endpoint and decode the JSON body.

        Raises:
            TransientNetworkFailure: timeout, connection error, 429 or 5xx
            SessionNotFoundError: 404 or a not-found message
            SessionAlreadyFinalizedError, QuestionLimitReachedError,
            InvalidSessionStateError: classified 4xx responses
            RemoteServiceError: any other rejected request
        """
        url = f"{self.base_url}{self.prefix}/{operation}"
        start = time.perf_counter()

        log.debug("remote_call_start", operation=operation, url=url)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            log.warning("remote_timeout", operation=operation, timeout=self.timeout)
            raise TransientNetworkFailure(
                f"{operation} timed out after {self.timeout}s"
            ) from e
        except httpx.TransportError as e:
            log.warning("remote_unreachable", operation=operation, error=str(e))
            raise TransientNetworkFailure(f"{operation} failed: {e}") from e

        latency_ms = (time.perf_counter() - start) * 1000

        if response.status_code >= 400:
            raise _map_http_error(operation, response)

        try:
            data = response.json()
        except ValueError as e:
            log.warning("remote_invalid_json", operation=operation)
            raise TransientNetworkFailure(
                f"{operation} returned a non-JSON body"
            ) from e

        if isinstance(data, dict) and data.get("status") == "error":
            message = _error_text(data) or f"{operation} reported an error"
            raise classify_escalation_error(message) or RemoteServiceError(message)

        log.info(
            "remote_call_complete",
            operation=operation,
            status_code=response.status_code,
            latency_ms=round(latency_ms, 2),
        )
        return data


def _form_payload(subject: SubjectContext) -> Dict[str, Any]:
    form = dict(subject.form_data)
    if subject.symptoms and not form.get("symptoms"):
        form["symptoms"] = subject.symptoms
    pain = form.get("painLevel")
    if isinstance(pain, str):
        try:
            form["painLevel"] = int(pain)
        except ValueError:
            form.pop("painLevel")
    return form


def _error_text(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return ""


def _map_http_error(operation: str, response: httpx.Response) -> Exception:
    status_code = response.status_code
    try:
        message = _error_text(response.json())
    except ValueError:
        message = response.text
    message = message or f"{operation} failed with status {status_code}"

    log.warning(
        "remote_http_error",
        operation=operation,
        status_code=status_code,
        message=message,
    )

    if status_code == 429 or status_code >= 500:
        classified = classify_escalation_error(message)
        # Backend surfaces a missing session row as a 500 "NoneType" error
        if isinstance(classified, SessionNotFoundError):
            return classified
        return TransientNetworkFailure(message)
    return classify_escalation_error(message, status_code) or RemoteServiceError(
        message, status_code=status_code
    )


def get_reasoning_client() -> ReasoningClient:
    """Factory for the configured reasoning service client."""
    return HttpReasoningClient()
