from __future__ import annotations  # Session aggregate persisted as one document

from datetime import datetime
from typing import Dict, List, Literal, Optional, Set

from pydantic import Field

from agents.types import (
    Answer,
    CamelModel,
    Evaluation,
    FinalEvaluation,
    InterviewType,
    JobDescriptionSnapshot,
    Question,
    ResumeSnapshot,
    SessionState,
    utcnow,
)


SessionStatus = Literal["created", "inProgress", "completed", "abandoned"]

_TRANSITIONS: Dict[str, Set[str]] = {
    "created": {"inProgress", "abandoned"},
    "inProgress": {"completed", "abandoned"},
    "completed": set(),
    "abandoned": set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, set())


class Turn(CamelModel):  # One question, at most one answer, at most one evaluation
    index: int = Field(ge=0)
    question: Question
    asked_at: datetime
    answer: Optional[Answer] = None
    answered_at: Optional[datetime] = None
    evaluation: Optional[Evaluation] = None

    @property
    def evaluated(self) -> bool:
        return self.evaluation is not None


class Session(CamelModel):
    id: str
    user_id: str
    interview_type: InterviewType
    target_role: str
    resume: Optional[ResumeSnapshot] = None
    job_description: Optional[JobDescriptionSnapshot] = None
    status: SessionStatus = "created"
    state: SessionState = Field(default_factory=SessionState)
    turns: List[Turn] = Field(default_factory=list)
    final_evaluation: Optional[FinalEvaluation] = None
    max_turns: int = Field(default=10, ge=1)
    max_duration_minutes: int = Field(default=45, ge=1)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0)

    @property
    def pending_turn(self) -> Optional[Turn]:  # Last turn when it still awaits evaluation
        if self.turns and self.turns[-1].evaluation is None:
            return self.turns[-1]
        return None

    @property
    def evaluated_turns(self) -> List[Turn]:
        return [turn for turn in self.turns if turn.evaluation is not None]

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "abandoned")


class SessionAnalytics(CamelModel):  # Post-session statistics
    total_turns: int = 0
    follow_up_count: int = 0
    average_response_ms: int = 0
    difficulty_curve: List[int] = Field(default_factory=list)
    topics_covered: List[str] = Field(default_factory=list)
    duration_minutes: float = 0.0


class SessionSummary(CamelModel):
    session_id: str
    status: SessionStatus
    final_evaluation: Optional[FinalEvaluation] = None
    analytics: SessionAnalytics = Field(default_factory=SessionAnalytics)
    completed_at: Optional[datetime] = None


class SessionContext(CamelModel):  # State view returned with each transition
    status: SessionStatus
    max_turns: int
    state: SessionState


class StartResult(CamelModel):
    session_id: str
    first_question: Question
    context: SessionContext
    degraded: bool = False


class NextQuestionResult(CamelModel):
    type: Literal["nextQuestion"] = "nextQuestion"
    evaluation: Evaluation
    next_question: Question
    context: SessionContext
    degraded: bool = False


class FollowUpResult(CamelModel):
    type: Literal["followUp"] = "followUp"
    evaluation: Evaluation
    next_question: Question
    context: SessionContext
    degraded: bool = False


class CompleteResult(CamelModel):
    type: Literal["complete"] = "complete"
    evaluation: Evaluation
    summary: SessionSummary
    degraded: bool = False


class EndResult(CamelModel):
    summary: SessionSummary
    degraded: bool = False


class SessionListItem(CamelModel):
    session_id: str
    status: SessionStatus
    interview_type: InterviewType
    target_role: str
    turns: int
    overall_score: Optional[float] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


__all__ = [
    "CompleteResult",
    "EndResult",
    "FollowUpResult",
    "NextQuestionResult",
    "Session",
    "SessionAnalytics",
    "SessionContext",
    "SessionListItem",
    "SessionStatus",
    "SessionSummary",
    "StartResult",
    "Turn",
    "can_transition",
]
