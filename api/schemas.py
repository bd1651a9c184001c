"""Pydantic schemas for the interview engine API."""
from __future__ import annotations

from typing import Annotated, List, Optional, Union

from pydantic import Field

from agents.types import CamelModel, InterviewType
from interview_session.models import (
    CompleteResult,
    FollowUpResult,
    NextQuestionResult,
    SessionListItem,
)
from services.ledger_models import GapStats, GapStatus, SkillGap


class StartSessionReq(CamelModel):
    user_id: str = Field(min_length=1)
    resume_ref: Optional[str] = None
    jd_ref: Optional[str] = None
    interview_type: InterviewType
    target_role: str = ""
    max_turns: Optional[int] = Field(default=None, ge=1, le=50)
    max_duration_minutes: Optional[int] = Field(default=None, ge=1, le=240)


class SubmitAnswerReq(CamelModel):
    answer: str = Field(min_length=1, max_length=20000)
    time_spent_ms: int = Field(default=0, ge=0)
    turn_index: Optional[int] = Field(default=None, ge=0)


class GapPatchReq(CamelModel):
    status: Optional[GapStatus] = None
    note: Optional[str] = Field(default=None, max_length=2000)


class CreateResumeReq(CamelModel):
    summary: str = ""
    skills: List[str] = Field(min_length=1)


class CreateJobDescriptionReq(CamelModel):
    title: str = Field(min_length=1)
    summary: str = ""
    required_skills: List[str] = Field(default_factory=list)
    preferred_skills: List[str] = Field(default_factory=list)


AnswerResp = Annotated[
    Union[NextQuestionResult, FollowUpResult, CompleteResult],
    Field(discriminator="type"),
]


class GapListResp(CamelModel):
    gaps: List[SkillGap]
    stats: GapStats


class SessionListResp(CamelModel):
    sessions: List[SessionListItem]


class ErrorBody(CamelModel):
    code: str
    message: str
    retryable: bool = False


class ErrorResp(CamelModel):
    error: ErrorBody


__all__ = [
    "AnswerResp",
    "CreateJobDescriptionReq",
    "CreateResumeReq",
    "ErrorBody",
    "ErrorResp",
    "GapListResp",
    "GapPatchReq",
    "SessionListResp",
    "StartSessionReq",
    "SubmitAnswerReq",
]
