"""Cross-session skill-gap ledger.

A finished session is folded into the user's gaps and progress exactly once;
``ledger_applications`` is the dedup record and the whole update commits in
one transaction.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime
from statistics import mean
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from agents.types import utcnow
from interview_session.locks import KeyedLocks
from interview_session.models import Session
from observability import log_event
from services.ledger_models import (
    SEVERITY_ORDER,
    GapConfirmation,
    GapRecommendation,
    GapStats,
    InterviewProgress,
    ProgressNote,
    SkillGap,
)
from services.readiness import update_progress
from storage.base import InterviewStore

logger = logging.getLogger(__name__)

CLOSE_AT = 75.0
POSITIVE_AT = 75.0

_ACTIONS: Dict[str, Tuple[str, List[str]]] = {
    "knowledge": (
        "learn-fundamentals",
        [
            "Study the core concepts from a reliable reference",
            "Work through two or three introductory problems",
            "Summarise the key ideas in your own words",
        ],
    ),
    "explanation": (
        "practice-explaining",
        [
            "Explain the concept out loud in under two minutes",
            "Use the context, approach, result structure",
            "Record yourself and review for clarity",
        ],
    ),
    "depth": (
        "improve-depth",
        [
            "List the trade-offs and failure modes of the approach",
            "Compare it with one alternative",
            "Practice an advanced problem on the topic",
        ],
    ),
    "application": (
        "build-project",
        [
            "Apply the skill in a small project or kata",
            "Write down a real scenario where you would use it",
            "Walk through that scenario step by step",
        ],
    ),
}


def severity_for(confirmations: Sequence[GapConfirmation]) -> str:
    """Ordinal severity from the number of confirmations and their mean score."""

    if not confirmations:
        return "low"
    value = 1 + math.floor(len(confirmations) / 2) - mean(c.score for c in confirmations) / 40.0
    index = max(0, min(len(SEVERITY_ORDER) - 1, math.floor(value)))
    return SEVERITY_ORDER[index]


def priority_for(severity: str, gap_kind: str) -> int:
    base = SEVERITY_ORDER.index(severity) + 1
    if gap_kind == "knowledge":
        base += 1
    return min(5, base)


def recommendation_for(skill: str, gap_kind: str, severity: str) -> GapRecommendation:
    action, steps = _ACTIONS.get(gap_kind, ("review-skill", ["Review the topic and practice one problem"]))
    return GapRecommendation(topic=skill, priority=priority_for(severity, gap_kind), action=action, steps=list(steps))


def should_close(confirmations: Sequence[GapConfirmation]) -> bool:
    scores = [c.score for c in confirmations]
    if not scores or scores[-1] < CLOSE_AT:
        return False
    if mean(scores[-3:]) >= CLOSE_AT:
        return True
    return len(scores) >= 2 and all(score >= CLOSE_AT for score in scores[-2:])


def closable(gap: SkillGap) -> bool:  # A strong confirmation exists after the most recent (re)open
    return any(c.positive and c.score >= CLOSE_AT and c.timestamp >= gap.opened_at for c in gap.confirmations)


def _recomputed(gap: SkillGap, confirmations: List[GapConfirmation], **changes) -> SkillGap:
    severity = severity_for(confirmations)
    return gap.model_copy(
        update={
            "confirmations": confirmations,
            "severity": severity,
            "recommendation": recommendation_for(gap.skill, gap.gap_kind, severity),
            **changes,
        }
    )


def confirm_negative(gap: SkillGap, confirmation: GapConfirmation) -> SkillGap:
    confirmations = [*gap.confirmations, confirmation]
    notes = list(gap.progress_notes)
    changes: Dict[str, object] = {"status": "open", "updated_at": confirmation.timestamp}
    if gap.status == "closed":
        changes.update(opened_at=confirmation.timestamp, closed_at=None)
        notes.append(ProgressNote(timestamp=confirmation.timestamp, note=f"Reopened after scoring {confirmation.score:.0f}"))
    changes["progress_notes"] = notes
    return _recomputed(gap, confirmations, **changes)


def confirm_positive(gap: SkillGap, confirmation: GapConfirmation) -> SkillGap:
    confirmations = [*gap.confirmations, confirmation]
    notes = list(gap.progress_notes)
    if should_close(confirmations):
        notes.append(ProgressNote(timestamp=confirmation.timestamp, note=f"Closed after scoring {confirmation.score:.0f}"))
        changes: Dict[str, object] = {"status": "closed", "closed_at": confirmation.timestamp}
    else:
        notes.append(ProgressNote(timestamp=confirmation.timestamp, note=f"Improving: scored {confirmation.score:.0f}"))
        changes = {"status": "in-progress"}
    return _recomputed(gap, confirmations, progress_notes=notes, updated_at=confirmation.timestamp, **changes)


def new_gap(user_id: str, skill: str, gap_kind: str, opened_at: datetime) -> SkillGap:
    return SkillGap(
        id=f"gap_{uuid4().hex[:16]}",
        user_id=user_id,
        skill=skill,
        gap_kind=gap_kind,
        opened_at=opened_at,
        updated_at=opened_at,
    )


def gap_stats(gaps: Sequence[SkillGap]) -> GapStats:
    return GapStats(
        total=len(gaps),
        by_status=dict(Counter(g.status for g in gaps)),
        by_severity=dict(Counter(g.severity for g in gaps)),
        by_kind=dict(Counter(g.gap_kind for g in gaps)),
    )


def fold_session(gaps: Sequence[SkillGap], session: Session) -> Tuple[List[SkillGap], List[SkillGap]]:
    """Apply the session's evaluated turns to ``gaps``.

    Returns ``(all_gaps, touched_gaps)``.
    """

    by_key: Dict[Tuple[str, str], SkillGap] = {(g.skill, g.gap_kind): g for g in gaps}
    touched: Dict[str, SkillGap] = {}
    for turn in session.evaluated_turns:
        evaluation = turn.evaluation
        skill = turn.question.primary_skill
        stamp = turn.answered_at or session.completed_at or utcnow()
        if evaluation.detected_gap_kind != "none" and evaluation.overall_score < POSITIVE_AT:
            key = (skill, evaluation.detected_gap_kind)
            gap = by_key.get(key) or new_gap(session.user_id, skill, evaluation.detected_gap_kind, stamp)
            confirmation = GapConfirmation(
                session_id=session.id,
                turn_index=turn.index,
                score=evaluation.overall_score,
                positive=False,
                timestamp=stamp,
            )
            gap = confirm_negative(gap, confirmation)
            by_key[key] = gap
            touched[gap.id] = gap
        elif evaluation.overall_score >= POSITIVE_AT:
            for key, gap in list(by_key.items()):
                if gap.skill != skill or gap.status == "closed":
                    continue
                confirmation = GapConfirmation(
                    session_id=session.id,
                    turn_index=turn.index,
                    score=evaluation.overall_score,
                    positive=True,
                    timestamp=stamp,
                )
                gap = confirm_positive(gap, confirmation)
                by_key[key] = gap
                touched[gap.id] = gap
    return list(by_key.values()), list(touched.values())


class SkillGapLedger:
    def __init__(self, store: InterviewStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._user_locks = KeyedLocks()

    def apply_session_results(self, session: Session) -> bool:
        """Fold a completed session into gaps and progress; False if it was already applied."""

        if session.status != "completed" or session.final_evaluation is None:
            raise ValueError(f"session {session.id} is not completed")
        with self._user_locks.hold(session.user_id, wait_s=30.0):
            if self._store.is_ledger_applied(session.id):
                return False
            existing = self._store.load_gaps_by_user(session.user_id)
            all_gaps, touched = fold_session(existing, session)
            progress = update_progress(
                self._store.load_progress(session.user_id, session.target_role),
                session,
                all_gaps,
                now=self._clock(),
            )
            applied = self._store.commit_ledger(session.id, session.user_id, touched, progress)
        if applied:
            log_event(
                "ledger.applied",
                session.id,
                user_id=session.user_id,
                gaps_touched=len(touched),
                readiness=progress.readiness,
            )
        return applied

    def weak_areas(self, user_id: str, limit: int = 5) -> List[str]:
        """Skills with unresolved gaps, most urgent first."""

        gaps = [g for g in self._store.load_gaps_by_user(user_id) if g.status != "closed"]
        gaps.sort(key=lambda g: (-SEVERITY_ORDER.index(g.severity), -g.priority, g.skill))
        skills: List[str] = []
        for gap in gaps:
            if gap.skill not in skills:
                skills.append(gap.skill)
        return skills[:limit]

    def list_gaps(self, user_id: str, *, status: Optional[str] = None) -> Tuple[List[SkillGap], GapStats]:
        gaps = self._store.load_gaps_by_user(user_id, status=status)
        return gaps, gap_stats(gaps)

    def get_gap(self, gap_id: str) -> Optional[SkillGap]:
        return self._store.load_gap(gap_id)

    def update_gap(self, gap_id: str, *, status: Optional[str] = None, note: Optional[str] = None) -> SkillGap:
        """Apply a user edit. Raises KeyError for unknown gaps, ValueError for a disallowed close."""

        gap = self._store.load_gap(gap_id)
        if gap is None:
            raise KeyError(gap_id)
        with self._user_locks.hold(gap.user_id, wait_s=30.0):
            gap = self._store.load_gap(gap_id) or gap
            now = self._clock()
            changes: Dict[str, object] = {"updated_at": now}
            notes = list(gap.progress_notes)
            if note:
                notes.append(ProgressNote(timestamp=now, note=note.strip(), source="user"))
            if status is not None and status != gap.status:
                if status == "closed":
                    if not closable(gap):
                        raise ValueError("a gap closes only after a scored answer of 75 or more on its skill")
                    changes["closed_at"] = now
                elif gap.status == "closed":
                    changes.update(opened_at=now, closed_at=None)
                changes["status"] = status
            changes["progress_notes"] = notes
            updated = gap.model_copy(update=changes)
            self._store.upsert_gap(updated)
        log_event("gap.updated", None, gap_id=gap_id, status=updated.status)
        return updated

    def progress(self, user_id: str, target_role: str) -> Optional[InterviewProgress]:
        return self._store.load_progress(user_id, target_role)


__all__ = [
    "SkillGapLedger",
    "closable",
    "confirm_negative",
    "confirm_positive",
    "fold_session",
    "gap_stats",
    "priority_for",
    "recommendation_for",
    "severity_for",
    "should_close",
]
