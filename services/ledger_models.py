from __future__ import annotations  # Skill-gap ledger and progress records

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import Field

from agents.types import CamelModel, utcnow


Severity = Literal["low", "medium", "high", "critical"]
GapStatus = Literal["open", "in-progress", "closed"]
LedgerGapKind = Literal["knowledge", "explanation", "depth", "application", "other"]

SEVERITY_ORDER: List[str] = ["low", "medium", "high", "critical"]


class GapConfirmation(CamelModel):  # One evaluated turn that bears on a gap
    session_id: str
    turn_index: int
    score: float = Field(ge=0.0, le=100.0)
    positive: bool
    timestamp: datetime


class ProgressNote(CamelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    note: str
    source: Literal["engine", "user"] = "engine"


class GapRecommendation(CamelModel):
    topic: str
    priority: int = Field(ge=1, le=5)
    action: str
    steps: List[str] = Field(default_factory=list)


class SkillGap(CamelModel):
    id: str
    user_id: str
    skill: str
    gap_kind: LedgerGapKind
    severity: Severity = "low"
    status: GapStatus = "open"
    confirmations: List[GapConfirmation] = Field(default_factory=list)
    recommendation: Optional[GapRecommendation] = None
    progress_notes: List[ProgressNote] = Field(default_factory=list)
    opened_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def priority(self) -> int:
        return self.recommendation.priority if self.recommendation else 1


class GapStats(CamelModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_kind: Dict[str, int] = Field(default_factory=dict)


class ScorePoint(CamelModel):
    session_id: str
    timestamp: datetime
    score: float = Field(ge=0.0, le=100.0)


class InterviewProgress(CamelModel):
    user_id: str
    target_role: str
    total_sessions: int = 0
    total_questions: int = 0
    total_minutes: float = 0.0
    score_trends: List[ScorePoint] = Field(default_factory=list)
    topic_mastery: Dict[str, float] = Field(default_factory=dict)
    readiness: float = Field(default=0.0, ge=0.0, le=100.0)
    readiness_level: str = "not-ready"
    struggling_topics: List[str] = Field(default_factory=list)
    strong_topics: List[str] = Field(default_factory=list)
    last_practice_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


__all__ = [
    "GapConfirmation",
    "GapRecommendation",
    "GapStats",
    "GapStatus",
    "InterviewProgress",
    "LedgerGapKind",
    "ProgressNote",
    "SEVERITY_ORDER",
    "ScorePoint",
    "Severity",
    "SkillGap",
]
