"""
Shared test fixtures.

The reasoning service is replaced by FakeReasoningClient: each operation
pops scripted responses from a queue (an Exception instance is raised
instead of returned) and falls back to a sensible default once the queue is
empty. Every call is recorded for assertions. Retry sleeps are no-ops.
"""

import asyncio
from collections import defaultdict, deque
from typing import Any, Dict

import pytest

from deepdive.core.config import (
    EscalationConfig,
    OrchestratorConfig,
    RetryConfig,
    TerminationConfig,
)
from deepdive.domain.models.session import SessionPhase, SubjectContext
from deepdive.remote.client import ReasoningClient
from deepdive.services.escalation_service import EscalationService
from deepdive.services.session_service import SessionService


DEFAULT_RESPONSES: Dict[str, Any] = {
    "start": {
        "session_id": "dd-1",
        "question": "When did the headache start?",
        "question_number": 1,
    },
    "continue": {"question": "How severe is the pain from 1 to 10?"},
    "ask_more": {
        "question": "Have you noticed any changes in your vision?",
        "question_category": "red_flags",
        "expected_confidence_gain": 5,
        "current_confidence": 80,
        "target_confidence": 95,
    },
    "finalize": {
        "analysis": {
            "primary_assessment": "Tension-type headache",
            "key_findings": ["bilateral pressure", "worse with stress"],
            "recommendations": ["hydration", "regular sleep"],
        },
        "confidence": 80,
        "questions_asked": 2,
        "deep_dive_id": "result-1",
    },
    "ultra": {
        "ultra_analysis": {
            "primary_assessment": "Tension-type headache with medication overuse",
            "confidence": 93,
        },
        "confidence_progression": {"original": 80, "ultra": 93},
        "critical_insights": ["Daily analgesic use may sustain the headaches"],
    },
    "summary": None,
}


class FakeReasoningClient(ReasoningClient):
    """Scripted in-memory stand-in for the reasoning service."""

    def __init__(self) -> None:
        self.queues: Dict[str, deque] = defaultdict(deque)
        self.calls: Dict[str, list] = defaultdict(list)
        self.gates: Dict[str, asyncio.Event] = {}

    def script(self, operation: str, *responses: Any) -> "FakeReasoningClient":
        self.queues[operation].extend(responses)
        return self

    def hold(self, operation: str) -> asyncio.Event:
        """Block calls to operation until the returned event is set."""
        gate = asyncio.Event()
        self.gates[operation] = gate
        return gate

    async def _respond(self, operation: str, **kwargs: Any) -> Any:
        self.calls[operation].append(kwargs)
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if self.queues[operation]:
            item = self.queues[operation].popleft()
        else:
            item = DEFAULT_RESPONSES[operation]
        if isinstance(item, Exception):
            raise item
        return item

    async def start_interview(self, subject, requester_id, model):
        return await self._respond(
            "start", subject=subject, requester_id=requester_id, model=model
        )

    async def continue_interview(self, session_id, answer, question_number, model):
        return await self._respond(
            "continue",
            session_id=session_id,
            answer=answer,
            question_number=question_number,
            model=model,
        )

    async def resume_for_more_questions(
        self, session_id, current_confidence, target_confidence, requester_id, max_additional
    ):
        return await self._respond(
            "ask_more",
            session_id=session_id,
            current_confidence=current_confidence,
            target_confidence=target_confidence,
            requester_id=requester_id,
            max_additional=max_additional,
        )

    async def finalize(self, session_id, requester_id, model):
        return await self._respond(
            "finalize", session_id=session_id, requester_id=requester_id, model=model
        )

    async def ultra_reanalyze(self, session_id, requester_id, model):
        return await self._respond(
            "ultra", session_id=session_id, requester_id=requester_id, model=model
        )

    async def generate_summary(self, result_id, requester_id):
        return await self._respond(
            "summary", result_id=result_id, requester_id=requester_id
        )


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def instant_sleep():
    return no_sleep


@pytest.fixture
def orchestrator_config() -> OrchestratorConfig:
    """Defaults from the shipped config, with zero backoff."""
    return OrchestratorConfig(
        models=["model-a", "model-b", "model-c"],
        retry=RetryConfig(max_attempts=3, base_delay_ms=0),
        termination=TerminationConfig(
            minimum_questions_before_ready=2,
            max_total_questions=11,
            baseline_confidence=85,
        ),
        escalation=EscalationConfig(
            ask_more_target_confidence=95,
            continuation_target_confidence=90,
            max_additional_questions=5,
            think_harder_model="ultra-model",
        ),
    )


@pytest.fixture
def fake_client() -> FakeReasoningClient:
    return FakeReasoningClient()


@pytest.fixture
def subject() -> SubjectContext:
    return SubjectContext(
        body_part="head",
        symptoms="Throbbing headache for three days",
        form_data={"painLevel": 6, "duration": "3 days"},
    )


@pytest.fixture
def session_service(fake_client, orchestrator_config) -> SessionService:
    return SessionService(
        client=fake_client, config=orchestrator_config, sleep=no_sleep
    )


@pytest.fixture
def escalation_service(session_service) -> EscalationService:
    return EscalationService(session_service)


@pytest.fixture
def answer_until_ready():
    """Answer pending questions until the session stops accepting answers."""

    async def run(service: SessionService, session_id: str, limit: int = 20):
        session = service.get(session_id)
        for i in range(limit):
            if session.pending_question is None:
                break
            session = await service.submit_answer(session_id, f"answer {i + 1}")
        return session

    return run


@pytest.fixture
async def ready_session(session_service, fake_client, subject):
    """Session that asked two questions and awaits analysis."""
    fake_client.script("continue", {"question": "Q2"}, {"ready_for_analysis": True})
    session = await session_service.start(subject, "user-1")
    await session_service.submit_answer(session.id, "Monday morning")
    session = await session_service.submit_answer(session.id, "About a 6")
    assert session.phase == SessionPhase.AWAITING_ANALYSIS
    return session


@pytest.fixture
async def completed_session(session_service, ready_session):
    """Session with a basic-tier analysis."""
    session = await session_service.complete(ready_session.id)
    await session_service.drain_background()
    return session
