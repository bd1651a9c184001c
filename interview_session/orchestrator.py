"""Interview session lifecycle.

Every mutating operation on a session runs under that session's lock, so
turns are strictly serialised. LLM calls happen while the lock is held but
the session document is only written at well-defined points:

* the answer is recorded before evaluation (``phase=awaitingQuestion``);
* evaluation, state update and the next question are written together;
* finalisation writes the terminal status and final evaluation together.

A retry with the same answer resumes from whatever was last written.
"""
from __future__ import annotations

import hashlib
import logging
import re
import sqlite3
from datetime import datetime, timedelta
from statistics import mean
from typing import Callable, List, Optional, Union
from uuid import uuid4

from agents.finalizer import SessionFinalizer
from agents.question_selector import QuestionSelector
from agents.response_evaluator import ResponseEvaluator
from agents.types import Answer, Evaluation, SessionState, utcnow
from config import DeadlineConfig, SessionConfig
from interview_session.errors import (
    EngineError,
    NotFound,
    OperationTimeout,
    StateConflict,
    ValidationFailed,
    from_gateway_error,
)
from interview_session.locks import KeyedLocks, LockBusy, LockTimeout
from interview_session.models import (
    CompleteResult,
    EndResult,
    FollowUpResult,
    NextQuestionResult,
    Session,
    SessionAnalytics,
    SessionContext,
    SessionListItem,
    SessionSummary,
    StartResult,
    Turn,
    can_transition,
)
from interview_session.policy import apply_evaluation, next_step, termination_reason
from llm_gateway import CallCancelled, Deadline, DeadlineExceeded, LlmGatewayError
from observability import log_event, span
from services.skill_gaps import SkillGapLedger
from storage.base import InterviewStore, VersionConflict
from storage.profiles import ProfileStore

logger = logging.getLogger(__name__)

MAX_ANSWER_CHARS = 20000
MAX_TURNS_LIMIT = 50
MAX_DURATION_LIMIT = 240
_WS = re.compile(r"\s+")

AnswerResult = Union[NextQuestionResult, FollowUpResult, CompleteResult]


def answer_digest(text: str) -> str:
    """Stable hash of an answer, insensitive to surrounding and repeated whitespace."""

    normalised = _WS.sub(" ", text.strip())
    return hashlib.sha256(normalised.encode("utf-8")).hexdigest()


class SessionOrchestrator:
    def __init__(
        self,
        *,
        store: InterviewStore,
        profiles: ProfileStore,
        selector: QuestionSelector,
        evaluator: ResponseEvaluator,
        finalizer: SessionFinalizer,
        ledger: SkillGapLedger,
        session_config: Optional[SessionConfig] = None,
        deadlines: Optional[DeadlineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._profiles = profiles
        self._selector = selector
        self._evaluator = evaluator
        self._finalizer = finalizer
        self._ledger = ledger
        self._cfg = session_config or SessionConfig()
        self._deadlines = deadlines or DeadlineConfig()
        self._clock = clock
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def start_session(
        self,
        user_id: str,
        *,
        interview_type: str,
        target_role: str = "",
        resume_ref: Optional[str] = None,
        jd_ref: Optional[str] = None,
        max_turns: Optional[int] = None,
        max_duration_minutes: Optional[int] = None,
    ) -> StartResult:
        """Create a session and ask its first question."""

        user_id = (user_id or "").strip()
        if not user_id:
            raise ValidationFailed("userId is required")
        resume = None
        if resume_ref:
            resume = self._profiles.resume_snapshot(user_id, resume_ref)
            if resume is None:
                raise NotFound(f"resume {resume_ref} not found")
        jd = None
        if jd_ref:
            jd = self._profiles.job_description_snapshot(user_id, jd_ref)
            if jd is None:
                raise NotFound(f"job description {jd_ref} not found")
        role = (target_role or "").strip() or (jd.title if jd else "")
        if not role:
            raise ValidationFailed("targetRole is required")
        turns_cap = self._cfg.default_max_turns if max_turns is None else max_turns
        if not 1 <= turns_cap <= MAX_TURNS_LIMIT:
            raise ValidationFailed(f"maxTurns must be between 1 and {MAX_TURNS_LIMIT}")
        minutes_cap = self._cfg.default_max_duration_minutes if max_duration_minutes is None else max_duration_minutes
        if not 1 <= minutes_cap <= MAX_DURATION_LIMIT:
            raise ValidationFailed(f"maxDurationMinutes must be between 1 and {MAX_DURATION_LIMIT}")

        session = Session(
            id=f"ses_{uuid4().hex}",
            user_id=user_id,
            interview_type=interview_type,
            target_role=role,
            resume=resume,
            job_description=jd,
            state=SessionState(difficulty_level=self._cfg.initial_difficulty),
            max_turns=turns_cap,
            max_duration_minutes=minutes_cap,
            created_at=self._clock(),
        )
        deadline = Deadline(self._deadlines.start_s)
        with self._locks.hold(session.id) as cancel:
            op = Deadline(deadline.remaining(), cancel_event=cancel)
            session = self._store.create_session(session)
            log_event("session.created", session.id, user_id=user_id, interview_type=interview_type)
            try:
                with span(session.id, "select_first_question"):
                    selected = self._selector.select(
                        session,
                        weak_areas=self._ledger.weak_areas(user_id),
                        deadline=op,
                    )
            except (LlmGatewayError, DeadlineExceeded, CallCancelled) as exc:
                self._save(session.model_copy(update={"status": "abandoned", "completed_at": self._clock()}))
                log_event("session.abandoned", session.id, level=logging.WARNING, reason=type(exc).__name__)
                raise self._translate(exc) from exc
            started = self._after(session.created_at)
            first = Turn(index=0, question=selected.question, asked_at=started)
            live = session.model_copy(
                update={
                    "status": "inProgress",
                    "started_at": started,
                    "turns": [first],
                    "state": session.state.model_copy(update={"phase": "awaitingAnswer"}),
                }
            )
            live = self._save(live)
        self._log_question(live, first, selected.degraded)
        return StartResult(
            session_id=live.id,
            first_question=first.question,
            context=self._context(live),
            degraded=selected.degraded,
        )

    def submit_answer(
        self,
        session_id: str,
        answer: str,
        *,
        time_spent_ms: int = 0,
        turn_index: Optional[int] = None,
    ) -> AnswerResult:
        """Record, evaluate and advance; identical resubmissions replay the stored outcome."""

        text = (answer or "").strip()
        if not text:
            raise ValidationFailed("answer must not be empty")
        if len(text) > MAX_ANSWER_CHARS:
            raise ValidationFailed(f"answer exceeds {MAX_ANSWER_CHARS} characters")
        if time_spent_ms < 0:
            raise ValidationFailed("timeSpentMs must not be negative")
        digest = answer_digest(text)
        deadline = Deadline(self._deadlines.answer_s)
        snapshot = self._load(session_id)
        target = turn_index if turn_index is not None else self._default_target(snapshot, digest)
        try:
            with self._locks.hold(
                session_id,
                marker=(target, digest),
                coalesce_s=max(0.0, deadline.remaining()),
            ) as cancel:
                op = Deadline(deadline.remaining(), cancel_event=cancel)
                session = self._load(session_id)
                return self._submit_locked(session, target, text, digest, time_spent_ms, op)
        except LockBusy:
            log_event("answer.conflict", session_id, level=logging.WARNING, turn=target)
            raise StateConflict("another answer for this session is being processed")
        except LockTimeout as exc:
            raise OperationTimeout("timed out waiting for the in-flight answer") from exc

    def end_session(self, session_id: str) -> EndResult:
        """Finish the session now, cancelling in-flight work; idempotent once terminal."""

        deadline = Deadline(self._deadlines.end_s)
        self._load(session_id)
        if self._locks.cancel(session_id):
            log_event("session.cancel_inflight", session_id)
        try:
            with self._locks.hold(session_id, wait_s=max(0.0, deadline.remaining())) as cancel:
                op = Deadline(deadline.remaining(), cancel_event=cancel)
                session = self._load(session_id)
                if session.status == "completed":
                    self.ensure_ledger(session)
                    return self._end_result(session)
                if session.status == "abandoned":
                    return self._end_result(session)
                if session.status == "created":
                    abandoned = self._save(session.model_copy(update={"status": "abandoned", "completed_at": self._clock()}))
                    log_event("session.abandoned", session_id, reason="ended_before_start")
                    return self._end_result(abandoned)
                candidate = session
                pending = session.pending_turn
                if pending is not None and pending.answer is not None:
                    evaluation = self._evaluator.evaluate(
                        pending,
                        session.state,
                        max_turns=session.max_turns,
                        deadline=op,
                        heuristic_on_deadline=True,
                    )
                    candidate = self._with_evaluation(session, pending, evaluation)
                try:
                    finished = self._finalize_locked(candidate, op, reason="ended")
                except (DeadlineExceeded, CallCancelled) as exc:
                    raise self._translate(exc) from exc
                return self._end_result(finished)
        except LockTimeout as exc:
            raise OperationTimeout("session is busy; end request timed out") from exc

    def get_session(self, session_id: str) -> Session:
        return self._load(session_id)

    def list_sessions(self, user_id: str, *, limit: int = 20) -> List[SessionListItem]:
        items: List[SessionListItem] = []
        for session in self._store.list_sessions_by_user(user_id, limit=limit):
            final = session.final_evaluation
            items.append(
                SessionListItem(
                    session_id=session.id,
                    status=session.status,
                    interview_type=session.interview_type,
                    target_role=session.target_role,
                    turns=len(session.evaluated_turns),
                    overall_score=final.overall_score if final else None,
                    created_at=session.created_at,
                    completed_at=session.completed_at,
                )
            )
        return items

    def ensure_ledger(self, session: Session) -> None:
        """Apply a completed session to the ledger if an earlier attempt did not land."""

        if session.status != "completed" or self._store.is_ledger_applied(session.id):
            return
        for attempt in (1, 2):
            try:
                self._ledger.apply_session_results(session)
                return
            except sqlite3.Error as exc:
                logger.warning("Ledger update failed for %s (attempt %d): %s", session.id, attempt, exc)
        log_event("ledger.deferred", session.id, level=logging.WARNING)

    def summary(self, session: Session) -> SessionSummary:
        turns = session.evaluated_turns
        answers = [t.answer.time_spent_ms for t in turns if t.answer is not None]
        started = session.started_at or session.created_at
        finished = session.completed_at or self._clock()
        return SessionSummary(
            session_id=session.id,
            status=session.status,
            final_evaluation=session.final_evaluation,
            analytics=SessionAnalytics(
                total_turns=len(turns),
                follow_up_count=sum(1 for t in turns if t.question.is_follow_up),
                average_response_ms=int(mean(answers)) if answers else 0,
                difficulty_curve=[t.question.difficulty for t in turns],
                topics_covered=list(session.state.topics_covered),
                duration_minutes=round(max(0.0, (finished - started).total_seconds()) / 60.0, 1),
            ),
            completed_at=session.completed_at,
        )

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------
    def _submit_locked(
        self,
        session: Session,
        target: Optional[int],
        text: str,
        digest: str,
        time_spent_ms: int,
        op: Deadline,
    ) -> AnswerResult:
        if target is None or not 0 <= target < len(session.turns):
            raise StateConflict("no question is awaiting this answer")
        turn = session.turns[target]
        if turn.evaluation is not None:
            if turn.answer is not None and turn.answer.answer_hash == digest:
                log_event("answer.replayed", session.id, turn=target)
                return self._replay(session, target)
            raise StateConflict(f"turn {target} was already answered")
        if session.status != "inProgress":
            raise StateConflict(f"session is {session.status}")
        if target != len(session.turns) - 1:
            raise StateConflict(f"turn {target} is not the current question")

        if turn.answer is None:
            turn = turn.model_copy(
                update={
                    "answer": Answer(text=text, time_spent_ms=time_spent_ms, answer_hash=digest),
                    "answered_at": self._after(turn.asked_at),
                }
            )
            session = self._save(
                session.model_copy(
                    update={
                        "turns": [*session.turns[:target], turn],
                        "state": session.state.model_copy(update={"phase": "awaitingQuestion"}),
                    }
                )
            )
            log_event("answer.recorded", session.id, turn=target)
        elif turn.answer.answer_hash != digest:
            raise StateConflict("a different answer is already recorded for this turn")

        try:
            with span(session.id, "evaluate_answer"):
                evaluation = self._evaluator.evaluate(turn, session.state, max_turns=session.max_turns, deadline=op)
        except (DeadlineExceeded, CallCancelled) as exc:
            raise self._translate(exc) from exc
        log_event(
            "answer.evaluated",
            session.id,
            turn=target,
            topic=turn.question.topic,
            score=evaluation.overall_score,
            gap_kind=evaluation.detected_gap_kind,
            degraded=evaluation.degraded,
        )
        return self._advance(session, turn, evaluation, op)

    def _advance(self, session: Session, turn: Turn, evaluation: Evaluation, op: Deadline) -> AnswerResult:
        candidate = self._with_evaluation(session, turn, evaluation)
        evaluated_turn = candidate.turns[turn.index]
        now = self._clock()
        step = next_step(candidate, evaluated_turn, now=now, per_parent=self._cfg.follow_ups_per_parent)
        log_event("turn.decision", session.id, turn=turn.index, decision=step)

        if step == "finalize":
            try:
                finished = self._finalize_locked(candidate, op, reason=termination_reason(candidate, now) or "policy")
            except (DeadlineExceeded, CallCancelled) as exc:
                raise self._translate(exc) from exc
            final = finished.final_evaluation
            return CompleteResult(
                evaluation=evaluation,
                summary=self.summary(finished),
                degraded=evaluation.degraded or bool(final and final.degraded),
            )

        try:
            with span(session.id, "select_question"):
                if step == "follow_up":
                    selected = self._selector.select(candidate, follow_up_of=evaluated_turn, deadline=op)
                else:
                    selected = self._selector.select(
                        candidate,
                        weak_areas=self._ledger.weak_areas(candidate.user_id),
                        deadline=op,
                    )
        except (LlmGatewayError, DeadlineExceeded, CallCancelled) as exc:
            log_event("question.failed", session.id, level=logging.WARNING, reason=type(exc).__name__)
            raise self._translate(exc) from exc

        new_turn = Turn(
            index=len(candidate.turns),
            question=selected.question,
            asked_at=self._after(evaluated_turn.answered_at or now),
        )
        follow_up = step == "follow_up"
        state = candidate.state.model_copy(
            update={
                "phase": "awaitingAnswer",
                "follow_ups_used": candidate.state.follow_ups_used + (1 if follow_up else 0),
            }
        )
        saved = self._save(candidate.model_copy(update={"turns": [*candidate.turns, new_turn], "state": state}))
        self._log_question(saved, new_turn, selected.degraded)
        degraded = evaluation.degraded or selected.degraded
        if follow_up:
            return FollowUpResult(
                evaluation=evaluation,
                next_question=new_turn.question,
                context=self._context(saved),
                degraded=degraded,
            )
        return NextQuestionResult(
            evaluation=evaluation,
            next_question=new_turn.question,
            context=self._context(saved),
            degraded=degraded,
        )

    def _with_evaluation(self, session: Session, turn: Turn, evaluation: Evaluation) -> Session:
        evaluated_turn = turn.model_copy(update={"evaluation": evaluation})
        turns = [*session.turns[: turn.index], evaluated_turn, *session.turns[turn.index + 1 :]]
        candidate = session.model_copy(update={"turns": turns})
        state = apply_evaluation(session.state, evaluated_turn, candidate.evaluated_turns)
        return candidate.model_copy(update={"state": state})

    def _finalize_locked(self, session: Session, op: Deadline, *, reason: str) -> Session:
        """Write the terminal state. Unanswered questions are dropped."""

        turns = [t for t in session.turns if t.evaluation is not None]
        base = session.model_copy(
            update={
                "turns": turns,
                "completed_at": self._clock(),
                "state": session.state.model_copy(update={"phase": None}),
            }
        )
        if not turns:
            abandoned = self._save(base.model_copy(update={"status": "abandoned"}))
            log_event("session.abandoned", session.id, reason=reason)
            return abandoned
        with span(session.id, "finalize"):
            final = self._finalizer.finalize(base, deadline=op)
        completed = self._save(base.model_copy(update={"status": "completed", "final_evaluation": final}))
        log_event(
            "session.completed",
            session.id,
            reason=reason,
            score=final.overall_score,
            degraded=final.degraded,
        )
        self.ensure_ledger(completed)
        return completed

    def _replay(self, session: Session, index: int) -> AnswerResult:
        evaluation = session.turns[index].evaluation
        context = self._context(session)
        if index + 1 < len(session.turns):
            following = session.turns[index + 1].question
            if following.is_follow_up and following.parent_index == index:
                return FollowUpResult(
                    evaluation=evaluation,
                    next_question=following,
                    context=context,
                    degraded=evaluation.degraded,
                )
            return NextQuestionResult(
                evaluation=evaluation,
                next_question=following,
                context=context,
                degraded=evaluation.degraded,
            )
        if session.status == "completed":
            return CompleteResult(evaluation=evaluation, summary=self.summary(session), degraded=evaluation.degraded)
        raise StateConflict("the outcome of this answer is not available yet")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _default_target(session: Session, digest: str) -> Optional[int]:
        """The pending turn; the final turn of a finished session when it matches ``digest``.

        Replaying an earlier turn of a live session needs an explicit ``turn_index``.
        """

        pending = session.pending_turn
        if pending is not None:
            return pending.index
        evaluated = session.evaluated_turns
        if evaluated:
            last = evaluated[-1]
            if last.answer is not None and last.answer.answer_hash == digest:
                return last.index
        return None

    def _load(self, session_id: str) -> Session:
        session = self._store.load_session(session_id)
        if session is None:
            raise NotFound(f"session {session_id} not found")
        return session

    def _save(self, session: Session) -> Session:
        current = self._store.load_session(session.id)
        if current is not None and current.status != session.status and not can_transition(current.status, session.status):
            raise StateConflict(f"cannot move session from {current.status} to {session.status}")
        try:
            return self._store.save_session(session, expected_version=session.version)
        except VersionConflict as exc:
            raise StateConflict("session was modified concurrently; reload and retry") from exc
        except KeyError as exc:
            raise NotFound(f"session {session.id} not found") from exc

    def _after(self, moment: datetime) -> datetime:  # Strictly later than ``moment``
        now = self._clock()
        return now if now > moment else moment + timedelta(microseconds=1)

    @staticmethod
    def _context(session: Session) -> SessionContext:
        return SessionContext(status=session.status, max_turns=session.max_turns, state=session.state)

    def _end_result(self, session: Session) -> EndResult:
        final = session.final_evaluation
        return EndResult(summary=self.summary(session), degraded=bool(final and final.degraded))

    @staticmethod
    def _translate(exc: Exception) -> EngineError:
        if isinstance(exc, LlmGatewayError):
            return from_gateway_error(exc)
        if isinstance(exc, DeadlineExceeded):
            return OperationTimeout("operation exceeded its deadline")
        if isinstance(exc, CallCancelled):
            return StateConflict("operation cancelled because the session was ended")
        return EngineError(str(exc))

    @staticmethod
    def _log_question(session: Session, turn: Turn, degraded: bool) -> None:
        log_event(
            "question.selected",
            session.id,
            turn=turn.index,
            topic=turn.question.topic,
            difficulty=turn.question.difficulty,
            follow_up=turn.question.is_follow_up,
            degraded=degraded,
        )


__all__ = ["AnswerResult", "SessionOrchestrator", "answer_digest"]
