"""Adaptive question selection.

Policy (topic, difficulty, follow-up linkage) is decided here
deterministically; the LLM only phrases the question. When the LLM is
degraded or its output is unusable the YAML question bank supplies the text.
"""
from __future__ import annotations

import logging
import random
from typing import Iterable, List, Literal, Optional, Sequence, Set

from pydantic import BaseModel

from agents.question_bank import QuestionBank
from agents.types import Question, normalize_skill, normalize_skills
from interview_session.models import Session, Turn
from llm_gateway import Deadline, LlmGateway, LlmGatewayError, LlmRequest
from prompts import (
    FirstQuestionSpec,
    FollowUpSpec,
    NextQuestionSpec,
    QuestionDraft,
    RecentTurnView,
    build_prompt,
)

logger = logging.getLogger(__name__)

MAX_SKILL_TAGS = 5
_ANSWER_PREVIEW_CHARS = 600
_TEMPLATE_KINDS = {"malformedResponse", "unavailable"}


class SelectedQuestion(BaseModel):
    question: Question
    degraded: bool = False
    source: Literal["llm", "template"] = "llm"


def adjust_difficulty(level: int, score: float) -> int:
    """Step difficulty up after a strong answer and down after a weak one."""

    if score >= 80:
        return min(5, level + 1)
    if score <= 40:
        return max(1, level - 1)
    return level


def covered_topics(session: Session) -> Set[str]:
    return set(session.state.topics_covered) | {turn.question.topic for turn in session.turns}


def choose_topic(
    session: Session,
    weak_areas: Sequence[str],
    generic_topics: Sequence[str],
    rng: random.Random,
) -> str:
    """Pick the next main-question topic.

    Order: JD skills the resume also claims, then weak areas from the skill
    gap ledger, then remaining required JD skills, then a random resume skill,
    then the generic pool for the interview type.
    """

    covered = covered_topics(session)
    resume_skills = normalize_skills(session.resume.skills) if session.resume else []
    jd = session.job_description
    jd_skills = jd.all_skills if jd else []
    required = normalize_skills(jd.required_skills) if jd else []

    def fresh(candidates: Iterable[str]) -> List[str]:
        return [c for c in candidates if c and c not in covered]

    overlap = fresh(skill for skill in jd_skills if skill in resume_skills)
    if overlap:
        return overlap[0]
    weak = fresh(normalize_skill(area) for area in weak_areas)
    if weak:
        return weak[0]
    remaining = fresh(required)
    if remaining:
        return remaining[0]
    resume_left = fresh(resume_skills)
    if resume_left:
        return rng.choice(resume_left)
    generic_left = fresh(generic_topics)
    if generic_left:
        return generic_left[0]
    pool = resume_skills or jd_skills or list(generic_topics) or ["problem-solving"]
    return rng.choice(pool)


def recent_turn_views(session: Session, limit: int = 3) -> List[RecentTurnView]:
    views: List[RecentTurnView] = []
    for turn in session.evaluated_turns[-limit:]:
        answer = turn.answer.text if turn.answer else ""
        views.append(
            RecentTurnView(
                question=turn.question.text,
                topic=turn.question.topic,
                answer=answer[:_ANSWER_PREVIEW_CHARS],
                score=turn.evaluation.overall_score if turn.evaluation else None,
            )
        )
    return views


class QuestionSelector:
    def __init__(self, gateway: LlmGateway, bank: Optional[QuestionBank] = None) -> None:
        self._gateway = gateway
        self._bank = bank or QuestionBank()

    @property
    def bank(self) -> QuestionBank:
        return self._bank

    def select(
        self,
        session: Session,
        *,
        weak_areas: Sequence[str] = (),
        follow_up_of: Optional[Turn] = None,
        deadline: Optional[Deadline] = None,
    ) -> SelectedQuestion:
        """Return the next question for ``session`` without mutating it."""

        if follow_up_of is not None:
            parent = follow_up_of.question
            topic = parent.topic
            difficulty = parent.difficulty
            base_tags = list(parent.skill_tags) or [topic]
            spec = FollowUpSpec(
                parent_question=parent,
                parent_answer=follow_up_of.answer.text if follow_up_of.answer else "",
                evaluation=follow_up_of.evaluation,
            )
        else:
            rng = random.Random(f"{session.id}:{len(session.turns)}")
            topic = choose_topic(session, weak_areas, self._bank.generic_topics(session.interview_type), rng)
            difficulty = session.state.difficulty_level
            base_tags = [topic]
            spec = self._main_spec(session, topic, difficulty)

        bundle = build_prompt(spec)
        request = LlmRequest(
            system_prompt=bundle.system_prompt,
            user_prompt=bundle.user_prompt,
            temperature=bundle.temperature,
            max_tokens=bundle.max_tokens,
            response_schema=bundle.response_schema,
        )
        try:
            response = self._gateway.complete(request, deadline=deadline)
        except LlmGatewayError as exc:
            if exc.kind not in _TEMPLATE_KINDS:
                raise
            logger.warning("Question generation unusable (%s); using template bank", exc.kind)
            return self._from_template(topic, difficulty, base_tags, session, follow_up_of)
        if response.degraded:
            return self._from_template(topic, difficulty, base_tags, session, follow_up_of)

        draft = response.as_schema(QuestionDraft)
        text = draft.text.strip()
        if not text:
            return self._from_template(topic, difficulty, base_tags, session, follow_up_of)
        if follow_up_of is not None:
            tags = base_tags
        else:
            tags = normalize_skills([*base_tags, *draft.skill_tags])[:MAX_SKILL_TAGS]
        return SelectedQuestion(question=self._question(text, topic, tags, difficulty, follow_up_of))

    def _main_spec(self, session: Session, topic: str, difficulty: int):
        resume = session.resume
        jd = session.job_description
        if not session.turns:
            return FirstQuestionSpec(
                interview_type=session.interview_type,
                target_role=session.target_role,
                focus_topic=topic,
                difficulty=difficulty,
                resume_summary=resume.summary if resume else "",
                resume_skills=normalize_skills(resume.skills) if resume else [],
                jd_summary=jd.summary if jd else "",
                jd_skills=jd.all_skills if jd else [],
            )
        return NextQuestionSpec(
            interview_type=session.interview_type,
            target_role=session.target_role,
            focus_topic=topic,
            difficulty=difficulty,
            state=session.state,
            recent_turns=recent_turn_views(session),
            resume_summary=resume.summary if resume else "",
            jd_summary=jd.summary if jd else "",
        )

    def _from_template(
        self,
        topic: str,
        difficulty: int,
        tags: List[str],
        session: Session,
        follow_up_of: Optional[Turn],
    ) -> SelectedQuestion:
        if follow_up_of is not None:
            gap_kind = follow_up_of.evaluation.detected_gap_kind if follow_up_of.evaluation else None
            text = self._bank.follow_up_text(topic, gap_kind)
        else:
            text = self._bank.question_text(topic, difficulty, session.interview_type)
        question = self._question(text, topic, tags, difficulty, follow_up_of)
        return SelectedQuestion(question=question, degraded=True, source="template")

    @staticmethod
    def _question(
        text: str,
        topic: str,
        tags: List[str],
        difficulty: int,
        follow_up_of: Optional[Turn],
    ) -> Question:
        return Question(
            text=text,
            topic=topic,
            skill_tags=tags,
            difficulty=difficulty,
            is_follow_up=follow_up_of is not None,
            parent_index=follow_up_of.index if follow_up_of is not None else None,
        )


__all__ = [
    "QuestionSelector",
    "SelectedQuestion",
    "adjust_difficulty",
    "choose_topic",
    "covered_topics",
    "recent_turn_views",
]
