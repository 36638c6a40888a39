"""Tests for the HTTP reasoning service client.

Uses httpx.MockTransport so no network is touched.
"""

import json

import httpx
import pytest

from deepdive.core.exceptions import (
    RemoteServiceError,
    SessionAlreadyFinalizedError,
    SessionNotFoundError,
    TransientNetworkFailure,
)
from deepdive.domain.models.session import SubjectContext
from deepdive.remote.client import HttpReasoningClient


def make_client(handler, family="body"):
    return HttpReasoningClient(
        base_url="http://reasoning.test/",
        timeout=5.0,
        family=family,
        transport=httpx.MockTransport(handler),
    )


class Recorder:
    """Mock transport handler that records requests and returns a fixed response."""

    def __init__(self, status_code=200, body=None, text=None):
        self.requests = []
        self.status_code = status_code
        self.body = body if body is not None else {"status": "success"}
        self.text = text

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


class TestRequests:
    """Payloads and paths sent to the service."""

    @pytest.mark.asyncio
    async def test_start_body_family(self):
        handler = Recorder(body={"session_id": "dd-1", "question": "Where?"})
        client = make_client(handler)
        subject = SubjectContext(
            body_part="head",
            symptoms="headache",
            form_data={"painLevel": "7", "duration": "2 days"},
        )

        data = await client.start_interview(subject, "user-1", "model-a")

        assert data == {"session_id": "dd-1", "question": "Where?"}
        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://reasoning.test/api/deep-dive/start"
        payload = handler.last_json
        assert payload["body_part"] == "head"
        assert payload["user_id"] == "user-1"
        assert payload["model"] == "model-a"
        assert payload["form_data"]["painLevel"] == 7
        assert payload["form_data"]["symptoms"] == "headache"

    @pytest.mark.asyncio
    async def test_start_general_family_uses_category(self):
        handler = Recorder()
        client = make_client(handler, family="general")
        subject = SubjectContext(category="sleep", symptoms="insomnia")

        await client.start_interview(subject, None, "model-a")

        assert handler.requests[0].url.path == "/api/general-deepdive/start"
        assert handler.last_json["category"] == "sleep"
        assert "body_part" not in handler.last_json

    @pytest.mark.asyncio
    async def test_unparseable_pain_level_dropped(self):
        handler = Recorder()
        client = make_client(handler)
        subject = SubjectContext(body_part="knee", form_data={"painLevel": "severe"})

        await client.start_interview(subject, None, "model-a")

        assert "painLevel" not in handler.last_json["form_data"]

    @pytest.mark.asyncio
    async def test_continue_sends_fallback_model(self):
        handler = Recorder()
        client = make_client(handler)

        await client.continue_interview("dd-1", "Since Monday", 2, "model-b")

        assert handler.requests[0].url.path == "/api/deep-dive/continue"
        assert handler.last_json == {
            "session_id": "dd-1",
            "answer": "Since Monday",
            "question_number": 2,
            "fallback_model": "model-b",
        }

    @pytest.mark.asyncio
    async def test_escalation_endpoints(self):
        handler = Recorder()
        client = make_client(handler)

        await client.resume_for_more_questions("dd-1", 80, 95, "user-1", 5)
        await client.finalize("dd-1", "user-1", "model-a")
        await client.ultra_reanalyze("dd-1", "user-1", None)
        await client.generate_summary("result-1", "user-1")

        paths = [r.url.path for r in handler.requests]
        assert paths == [
            "/api/deep-dive/ask-more",
            "/api/deep-dive/complete",
            "/api/deep-dive/ultra-think",
            "/api/deep-dive/summary",
        ]
        ask_more = json.loads(handler.requests[0].content)
        assert ask_more["current_confidence"] == 80
        assert ask_more["target_confidence"] == 95
        assert ask_more["max_questions"] == 5
        assert "model" not in json.loads(handler.requests[2].content)
        assert json.loads(handler.requests[3].content)["deep_dive_id"] == "result-1"

    def test_unknown_family_rejected(self):
        with pytest.raises(ValueError):
            HttpReasoningClient(base_url="http://x", family="dental")


class TestErrorMapping:
    """HTTP failures map onto the DeepDiveError hierarchy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 502, 503])
    async def test_retryable_statuses(self, status_code):
        client = make_client(Recorder(status_code, {"error": "overloaded"}))

        with pytest.raises(TransientNetworkFailure):
            await client.finalize("dd-1", None, "model-a")

    @pytest.mark.asyncio
    async def test_server_error_for_missing_session(self):
        body = {"error": "'NoneType' object has no attribute 'get'"}
        client = make_client(Recorder(500, body))

        with pytest.raises(SessionNotFoundError):
            await client.continue_interview("dd-404", "answer", 1, "model-a")

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = make_client(Recorder(404, {"detail": "missing"}))

        with pytest.raises(SessionNotFoundError):
            await client.finalize("dd-1", None, "model-a")

    @pytest.mark.asyncio
    async def test_already_finalized(self):
        body = {"error": "Deep dive already finalized"}
        client = make_client(Recorder(400, body))

        with pytest.raises(SessionAlreadyFinalizedError):
            await client.resume_for_more_questions("dd-1", 80, 95, None, 5)

    @pytest.mark.asyncio
    async def test_other_client_error(self):
        client = make_client(Recorder(422, {"detail": "body_part is required"}))

        with pytest.raises(RemoteServiceError) as exc_info:
            await client.start_interview(SubjectContext(), None, "model-a")

        assert exc_info.value.status_code == 422
        assert exc_info.value.message == "body_part is required"

    @pytest.mark.asyncio
    async def test_non_json_body_is_transient(self):
        client = make_client(Recorder(200, text="<html>gateway</html>"))

        with pytest.raises(TransientNetworkFailure):
            await client.finalize("dd-1", None, "model-a")

    @pytest.mark.asyncio
    async def test_error_status_in_body(self):
        client = make_client(Recorder(200, {"status": "error", "error": "model refused"}))

        with pytest.raises(RemoteServiceError):
            await client.finalize("dd-1", None, "model-a")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(TransientNetworkFailure) as exc_info:
            await client.continue_interview("dd-1", "answer", 1, "model-a")

        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)

        with pytest.raises(TransientNetworkFailure):
            await client.start_interview(SubjectContext(body_part="arm"), None, "m")
