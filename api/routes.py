"""FastAPI routes for interview sessions, skill gaps and progress."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from api.schemas import (
    AnswerResp,
    CreateJobDescriptionReq,
    CreateResumeReq,
    GapListResp,
    GapPatchReq,
    SessionListResp,
    StartSessionReq,
    SubmitAnswerReq,
)
from interview_session.engine import Engine
from interview_session.errors import NotFound, StateConflict
from interview_session.models import EndResult, Session, StartResult
from services.ledger_models import GapStatus, SkillGap
from storage.profiles import JobDescriptionRecord, ResumeRecord


router = APIRouter()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


@router.post("/sessions", response_model=StartResult, status_code=201)
def start_session(req: StartSessionReq, engine: Engine = Depends(get_engine)) -> StartResult:
    return engine.orchestrator.start_session(
        req.user_id,
        interview_type=req.interview_type,
        target_role=req.target_role,
        resume_ref=req.resume_ref,
        jd_ref=req.jd_ref,
        max_turns=req.max_turns,
        max_duration_minutes=req.max_duration_minutes,
    )


@router.post("/sessions/{session_id}/answers", response_model=AnswerResp)
def submit_answer(session_id: str, req: SubmitAnswerReq, engine: Engine = Depends(get_engine)):
    return engine.orchestrator.submit_answer(
        session_id,
        req.answer,
        time_spent_ms=req.time_spent_ms,
        turn_index=req.turn_index,
    )


@router.post("/sessions/{session_id}/end", response_model=EndResult)
def end_session(session_id: str, engine: Engine = Depends(get_engine)) -> EndResult:
    return engine.orchestrator.end_session(session_id)


@router.get("/sessions/{session_id}", response_model=Session)
def get_session(session_id: str, engine: Engine = Depends(get_engine)) -> Session:
    return engine.orchestrator.get_session(session_id)


@router.get("/users/{user_id}/sessions", response_model=SessionListResp)
def list_sessions(
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    engine: Engine = Depends(get_engine),
) -> SessionListResp:
    return SessionListResp(sessions=engine.orchestrator.list_sessions(user_id, limit=limit))


@router.get("/users/{user_id}/gaps", response_model=GapListResp)
def list_gaps(
    user_id: str,
    status: Optional[GapStatus] = None,
    engine: Engine = Depends(get_engine),
) -> GapListResp:
    gaps, stats = engine.ledger.list_gaps(user_id, status=status)
    return GapListResp(gaps=gaps, stats=stats)


@router.patch("/gaps/{gap_id}", response_model=SkillGap)
def patch_gap(gap_id: str, req: GapPatchReq, engine: Engine = Depends(get_engine)) -> SkillGap:
    try:
        return engine.ledger.update_gap(gap_id, status=req.status, note=req.note)
    except KeyError as exc:
        raise NotFound(f"gap {gap_id} not found") from exc
    except ValueError as exc:
        raise StateConflict(str(exc)) from exc


@router.get("/users/{user_id}/progress/{role}")
def get_progress(user_id: str, role: str, engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    progress = engine.ledger.progress(user_id, role)
    if progress is None:
        return {"hasProgress": False}
    return {"hasProgress": True, **progress.model_dump(mode="json", by_alias=True)}


@router.post("/users/{user_id}/resumes", response_model=ResumeRecord, status_code=201)
def create_resume(user_id: str, req: CreateResumeReq, engine: Engine = Depends(get_engine)) -> ResumeRecord:
    return engine.profiles.create_resume(user_id, summary=req.summary, skills=req.skills)


@router.post("/users/{user_id}/job-descriptions", response_model=JobDescriptionRecord, status_code=201)
def create_job_description(
    user_id: str,
    req: CreateJobDescriptionReq,
    engine: Engine = Depends(get_engine),
) -> JobDescriptionRecord:
    return engine.profiles.create_job_description(
        user_id,
        title=req.title,
        summary=req.summary,
        required_skills=req.required_skills,
        preferred_skills=req.preferred_skills,
    )


__all__ = ["get_engine", "router"]
