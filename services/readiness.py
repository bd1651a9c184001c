"""Readiness scoring and progress aggregation."""
from __future__ import annotations

from datetime import datetime
from statistics import mean
from typing import Dict, List, Optional, Sequence

from interview_session.models import Session
from services.ledger_models import InterviewProgress, ScorePoint, SkillGap

RECENCY_DECAY = 0.7
MASTERY_CARRY = 0.7
SESSION_SATURATION = 10
STRUGGLING_BELOW = 50.0
STRONG_AT = 80.0


def recent_mean(scores: Sequence[float], decay: float = RECENCY_DECAY) -> float:
    """Recency-weighted mean; the newest score has weight 1, older ones decay geometrically."""

    if not scores:
        return 0.0
    n = len(scores)
    weights = [decay ** (n - 1 - i) for i in range(n)]
    return sum(w * s for w, s in zip(weights, scores)) / sum(weights)


def compute_readiness(
    scores: Sequence[float],
    *,
    open_high_gaps: int,
    total_gaps: int,
    total_sessions: int,
) -> float:
    value = (
        50.0 * recent_mean(scores) / 100.0
        + 30.0 * (1.0 - open_high_gaps / max(1, total_gaps))
        + 20.0 * min(total_sessions, SESSION_SATURATION) / SESSION_SATURATION
    )
    return round(max(0.0, min(100.0, value)), 1)


def readiness_level(readiness: float) -> str:
    if readiness >= 80:
        return "highly-confident"
    if readiness >= 65:
        return "interview-ready"
    if readiness >= 40:
        return "needs-improvement"
    return "not-ready"


def blend_mastery(previous: Optional[float], turn_mean: float) -> float:
    if previous is None:
        return round(turn_mean, 1)
    return round(MASTERY_CARRY * previous + (1.0 - MASTERY_CARRY) * turn_mean, 1)


def _topic_turn_means(session: Session) -> Dict[str, float]:
    grouped: Dict[str, List[float]] = {}
    for turn in session.evaluated_turns:
        grouped.setdefault(turn.question.topic, []).append(turn.evaluation.overall_score)
    return {topic: mean(scores) for topic, scores in grouped.items()}


def update_progress(
    progress: Optional[InterviewProgress],
    session: Session,
    gaps: Sequence[SkillGap],
    *,
    now: datetime,
) -> InterviewProgress:
    """Fold a completed session into the user's progress for its target role."""

    if session.final_evaluation is None:
        raise ValueError("session has no final evaluation")
    base = progress or InterviewProgress(user_id=session.user_id, target_role=session.target_role)
    finished = session.completed_at or now
    trends = [
        *base.score_trends,
        ScorePoint(session_id=session.id, timestamp=finished, score=session.final_evaluation.overall_score),
    ]
    mastery = dict(base.topic_mastery)
    for topic, turn_mean in _topic_turn_means(session).items():
        mastery[topic] = blend_mastery(mastery.get(topic), turn_mean)

    started = session.started_at or session.created_at
    minutes = max(0.0, (finished - started).total_seconds() / 60.0)
    total_sessions = base.total_sessions + 1
    open_high = sum(1 for g in gaps if g.status != "closed" and g.severity in ("high", "critical"))
    readiness = compute_readiness(
        [point.score for point in trends],
        open_high_gaps=open_high,
        total_gaps=len(gaps),
        total_sessions=total_sessions,
    )
    return base.model_copy(
        update={
            "total_sessions": total_sessions,
            "total_questions": base.total_questions + len(session.evaluated_turns),
            "total_minutes": round(base.total_minutes + minutes, 1),
            "score_trends": trends,
            "topic_mastery": mastery,
            "readiness": readiness,
            "readiness_level": readiness_level(readiness),
            "struggling_topics": sorted(t for t, v in mastery.items() if v < STRUGGLING_BELOW),
            "strong_topics": sorted(t for t, v in mastery.items() if v >= STRONG_AT),
            "last_practice_at": finished,
            "updated_at": now,
        }
    )


__all__ = [
    "blend_mastery",
    "compute_readiness",
    "readiness_level",
    "recent_mean",
    "update_progress",
]
