"""Pure session-state transitions and termination rules."""
from __future__ import annotations

from datetime import datetime
from statistics import mean
from typing import List, Literal, Optional

from agents.question_selector import adjust_difficulty
from agents.types import SessionState
from interview_session.models import Session, Turn

STRUGGLING_BELOW = 50.0
STRONG_AT = 80.0
MASTERY_SCORE = 85.0
MASTERY_STREAK = 3

NextStep = Literal["finalize", "follow_up", "next"]


def _add(items: List[str], value: str) -> List[str]:
    return items if value in items else [*items, value]


def apply_evaluation(state: SessionState, turn: Turn, evaluated: List[Turn]) -> SessionState:
    """Return the state after ``turn`` was evaluated.

    ``evaluated`` holds every evaluated turn of the session including ``turn``.
    """

    evaluation = turn.evaluation
    if evaluation is None:
        raise ValueError("turn is not evaluated")
    question = turn.question
    score = evaluation.overall_score
    topic = question.topic

    struggling = list(state.struggling_areas)
    strong = list(state.strong_areas)
    if score < STRUGGLING_BELOW:
        struggling = _add(struggling, topic)
        strong = [area for area in strong if area != topic]
    elif score >= STRONG_AT:
        strong = _add(strong, topic)
        struggling = [area for area in struggling if area != topic]

    difficulty = state.difficulty_level
    if not question.is_follow_up:
        difficulty = adjust_difficulty(difficulty, score)

    recent = [t.evaluation.overall_score for t in evaluated[-3:]]
    skills = list(state.skills_probed)
    for tag in question.skill_tags:
        skills = _add(skills, tag)

    return state.model_copy(
        update={
            "current_turn": state.current_turn + 1,
            "topics_covered": _add(list(state.topics_covered), topic),
            "skills_probed": skills,
            "difficulty_level": difficulty,
            "confidence_estimate": round(mean(recent) / 100.0, 3) if recent else state.confidence_estimate,
            "struggling_areas": struggling,
            "strong_areas": strong,
        }
    )


def termination_reason(session: Session, now: datetime) -> Optional[str]:
    """Why the session must finish now, or None to keep going."""

    if session.state.current_turn >= session.max_turns:
        return "max_turns"
    started = session.started_at or session.created_at
    if (now - started).total_seconds() >= session.max_duration_minutes * 60:
        return "duration"
    evaluated = session.evaluated_turns
    if (
        session.state.difficulty_level == 5
        and len(evaluated) >= MASTERY_STREAK
        and all(t.evaluation.overall_score >= MASTERY_SCORE for t in evaluated[-MASTERY_STREAK:])
    ):
        return "mastery"
    return None


def follow_up_budget_left(session: Session, parent_index: int, per_parent: int) -> bool:
    follow_ups = [t for t in session.turns if t.question.is_follow_up]
    for_parent = sum(1 for t in follow_ups if t.question.parent_index == parent_index)
    return for_parent < per_parent and len(follow_ups) < session.max_turns // 3


def next_step(session: Session, turn: Turn, *, now: datetime, per_parent: int) -> NextStep:
    """Decide what follows the evaluation of ``turn`` (already applied to ``session``)."""

    if termination_reason(session, now) is not None:
        return "finalize"
    if turn.evaluation is not None and turn.evaluation.needs_follow_up:
        if follow_up_budget_left(session, turn.index, per_parent):
            return "follow_up"
    return "next"


__all__ = [
    "MASTERY_SCORE",
    "STRONG_AT",
    "STRUGGLING_BELOW",
    "apply_evaluation",
    "follow_up_budget_left",
    "next_step",
    "termination_reason",
]
