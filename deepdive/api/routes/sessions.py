"""
Session API routes.

Endpoints for starting deep dives, answering questions, completing the
analysis and requesting escalations.
"""

from fastapi import APIRouter, status
import structlog

from deepdive.api.dependencies import EscalationServiceDep, SessionServiceDep
from deepdive.api.schemas import (
    AnswerRequest,
    EscalationOptionsSchema,
    EscalationRequest,
    ProgressResponse,
    SessionCreate,
    SessionResponse,
    SessionResume,
)
from deepdive.core.config import settings
from deepdive.domain.models.session import EscalationKind, Session

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _respond(session: Session, escalations: EscalationServiceDep) -> SessionResponse:
    return SessionResponse.from_session(
        session, escalations.escalation_options(session)
    )


# ============ ENTRY PATHS ============


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    request: SessionCreate,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    """Start a fresh deep dive and return the session with its first question."""
    session = await service.start(
        request.to_subject(), request.user_id or settings.requester_id
    )
    log.info("session_created", session_id=session.id, phase=session.phase.value)
    return _respond(session, escalations)


@router.post(
    "/resume",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def resume_session(
    request: SessionResume,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    """Continue a prior session toward the continuation target confidence."""
    session = await service.resume(
        request.prior_session_id,
        request.to_subject(),
        request.user_id or settings.requester_id,
        request.current_confidence,
    )
    return _respond(session, escalations)


# ============ READ SIDE ============


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    return _respond(service.get(session_id), escalations)


@router.get("/{session_id}/progress", response_model=ProgressResponse)
async def get_progress(session_id: str, service: SessionServiceDep):
    """Lightweight phase/confidence snapshot for polling clients."""
    return ProgressResponse.from_event(service.progress(session_id))


# ============ TURN-TAKING ============


@router.post("/{session_id}/answers", response_model=SessionResponse)
async def submit_answer(
    session_id: str,
    request: AnswerRequest,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    """Answer the pending question.

    Returns the session unchanged when no answer is expected or another
    answer for this session is still being processed.
    """
    session = await service.submit_answer(session_id, request.text)
    return _respond(session, escalations)


@router.post("/{session_id}/answers/retry", response_model=SessionResponse)
async def retry_answer(
    session_id: str,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    """Re-send the last answer of a session whose turn failed."""
    session = await service.retry_last_turn(session_id)
    return _respond(session, escalations)


# ============ COMPLETION AND ESCALATION ============


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    """Request the analysis for a session that is ready for it."""
    session = await service.complete(session_id)
    return _respond(session, escalations)


@router.get("/{session_id}/escalations", response_model=EscalationOptionsSchema)
async def get_escalation_options(
    session_id: str,
    service: SessionServiceDep,
    escalations: EscalationServiceDep,
):
    options = escalations.escalation_options(service.get(session_id))
    return EscalationOptionsSchema.from_options(options)


@router.post("/{session_id}/escalations", response_model=SessionResponse)
async def escalate(
    session_id: str,
    request: EscalationRequest,
    escalations: EscalationServiceDep,
):
    """Ask Me More, Think Harder, or re-analyze after Ask Me More."""
    log.info("escalation_requested", session_id=session_id, kind=request.kind.value)

    if request.kind == EscalationKind.ASK_MORE:
        session = await escalations.ask_me_more(session_id)
    elif request.kind == EscalationKind.THINK_HARDER:
        session = await escalations.think_harder(session_id)
    else:
        session = await escalations.reanalyze(session_id)
    return _respond(session, escalations)
