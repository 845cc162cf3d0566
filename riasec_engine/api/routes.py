import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

import psutil
from fastapi import APIRouter, Depends, Query, Request

from ..core.engine import AssessmentEngine
from ..core.models import AssessmentResult, Career, Session
from ..core.rate_limiter import ParticipantRateLimiter
from .schemas import (
    AnswerRequest,
    AnswerResponse,
    ErrorResponse,
    MatchesResponse,
    ResumeSessionRequest,
    SectionInsight,
    SessionResponse,
    StartSessionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        404: {"model": ErrorResponse, "description": "Unknown or inactive session, result or career"},
        409: {"model": ErrorResponse, "description": "Out-of-sequence answer or conflicting session"},
        429: {"model": ErrorResponse, "description": "Participant rate limit exceeded"},
    }
)


def get_engine(request: Request) -> AssessmentEngine:
    """Dependency to get the engine created at startup"""
    return request.app.state.engine


def get_rate_limiter(request: Request) -> ParticipantRateLimiter:
    return request.app.state.rate_limiter


def _session_payload(engine: AssessmentEngine, session: Session,
                     include_question: bool = True) -> SessionResponse:
    question = None
    if include_question and session.is_active:
        question = engine.get_current_question(session.session_id).format_for_display()

    return SessionResponse(
        session_id=session.session_id,
        participant_id=session.participant_id,
        status=session.status.value,
        progress=engine.get_progress(session.session_id),
        question=question,
    )


# Sessions

@router.post("/sessions", response_model=SessionResponse, status_code=201, tags=["Sessions"])
def start_session(
    body: StartSessionRequest,
    engine: AssessmentEngine = Depends(get_engine),
    limiter: ParticipantRateLimiter = Depends(get_rate_limiter),
):
    """
    Start a new assessment

    Returns the session and the first question. Fails with 409 when the participant
    already has an active session and ``replace`` is not set.
    """
    limiter.hit(body.participant_id)
    session = engine.start_session(body.participant_id, replace=body.replace)
    return _session_payload(engine, session)


@router.post("/sessions/resume", response_model=SessionResponse, tags=["Sessions"])
def resume_session(
    body: ResumeSessionRequest,
    engine: AssessmentEngine = Depends(get_engine),
    limiter: ParticipantRateLimiter = Depends(get_rate_limiter),
):
    limiter.hit(body.participant_id)
    session = engine.resume_session(body.participant_id)
    return _session_payload(engine, session)


@router.get("/sessions/{session_id}", tags=["Sessions"])
def get_session_status(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    return engine.get_session_status(session_id)


@router.get("/sessions/{session_id}/question", tags=["Sessions"])
def get_current_question(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    question = engine.get_current_question(session_id)
    return {
        "session_id": session_id,
        "progress": engine.get_progress(session_id).model_dump(),
        "question": question.format_for_display(),
    }


@router.post("/sessions/{session_id}/answers", response_model=AnswerResponse, tags=["Sessions"])
def submit_answer(
    session_id: str,
    body: AnswerRequest,
    engine: AssessmentEngine = Depends(get_engine),
    limiter: ParticipantRateLimiter = Depends(get_rate_limiter),
):
    """
    Record the answer to the current question

    The response carries the next question, a section insight when a section was
    just finished, and the full result once the last question is answered.
    """
    session = engine.sessions.get_session(session_id)
    limiter.hit(session.participant_id)

    outcome = engine.record_answer(session_id, body.question_id, body.selection)

    next_question = None
    if not outcome.completed:
        next_question = engine.get_current_question(session_id).format_for_display()

    return AnswerResponse(
        session_id=session_id,
        question_id=outcome.answer.question_id,
        pointer=outcome.pointer,
        progress=engine.get_progress(session_id),
        completed=outcome.completed,
        section_complete=(
            SectionInsight.from_signal(outcome.section_complete)
            if outcome.section_complete else None
        ),
        pattern_recognized=outcome.pattern_recognized,
        next_question=next_question,
        result=outcome.result,
    )


@router.post("/sessions/{session_id}/abandon", response_model=SessionResponse, tags=["Sessions"])
def abandon_session(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    session = engine.abandon(session_id)
    return _session_payload(engine, session, include_question=False)


# Results

@router.get("/results/shared/{share_token}", response_model=AssessmentResult, tags=["Results"])
def get_shared_result(share_token: str, engine: AssessmentEngine = Depends(get_engine)):
    return engine.get_result_by_share_token(share_token)


@router.get("/results/{session_id}", response_model=AssessmentResult, tags=["Results"])
def get_result(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    return engine.get_result(session_id)


@router.post("/results/{session_id}/recompute", response_model=AssessmentResult, tags=["Results"])
def recompute_result(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    return engine.recompute_result(session_id)


@router.get("/results/{session_id}/matches", response_model=MatchesResponse, tags=["Results"])
def get_matches(
    session_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    engine: AssessmentEngine = Depends(get_engine),
):
    result = engine.get_result(session_id)
    return MatchesResponse(
        session_id=session_id,
        code=result.profile.code,
        matches=engine.match_profile(session_id, limit=limit),
    )


# Careers

@router.get("/careers", response_model=List[Career], tags=["Careers"])
def list_careers(
    category: Optional[str] = Query(None, description="Filter by category"),
    engine: AssessmentEngine = Depends(get_engine),
):
    careers = engine.catalog.careers
    if category:
        careers = [c for c in careers if c.category == category.lower()]
    return list(careers)


@router.get("/careers/{career_id}", response_model=Career, tags=["Careers"])
def get_career(career_id: str, engine: AssessmentEngine = Depends(get_engine)):
    return engine.catalog.career(career_id)


# Health

@router.get("/health", tags=["Admin"])
def health_check(request: Request) -> Dict[str, Any]:
    """
    Health check endpoint for monitoring
    """
    engine: AssessmentEngine = request.app.state.engine
    process = psutil.Process(os.getpid())
    memory = process.memory_info()

    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "RIASEC Assessment Engine",
        "engine": engine.health(),
        "rate_limited_participants": len(request.app.state.rate_limiter),
        "system": {
            "process_memory_mb": round(memory.rss / (1024 ** 2), 1),
            "cpu_count": psutil.cpu_count(),
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}",
        },
    }
