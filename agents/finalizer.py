"""Whole-session evaluation with a deterministic aggregate fallback."""
from __future__ import annotations

import logging
from collections import OrderedDict
from statistics import mean
from typing import Dict, List, Optional, Tuple

from agents.types import RUBRIC_DIMENSIONS, FinalEvaluation, RubricScores
from interview_session.models import Session, Turn
from llm_gateway import Deadline, DeadlineExceeded, LlmGateway, LlmGatewayError, LlmRequest
from prompts import FinalEvaluationDraft, FinalEvaluationSpec, RecentTurnView, build_prompt

logger = logging.getLogger(__name__)

_MIN_LLM_BUDGET_S = 1.0
_DIMENSION_ADVICE = {
    "correctness": "Review core concepts and verify claims against documentation.",
    "depth": "Practice explaining mechanisms and trade-offs, not only definitions.",
    "clarity": "Practice explaining solutions out loud in plain language.",
    "structure": "Organise answers as context, approach, result.",
    "completeness": "Check that every part of a question is addressed before finishing.",
}


def _r1(value: float) -> float:
    return float(f"{value:.1f}")


def summary_for(score: float) -> str:
    if score >= 85:
        return "Excellent performance. You are well prepared for interviews at this level."
    if score >= 70:
        return "Good performance with a few areas to polish before the real interview."
    if score >= 55:
        return "Fair performance. Focused practice on the weaker topics will help."
    return "Needs improvement. Start with the fundamentals of the topics listed below."


def skill_scores(turns: List[Turn]) -> Dict[str, float]:  # Mean score per primary skill
    grouped: "OrderedDict[str, List[float]]" = OrderedDict()
    for turn in turns:
        grouped.setdefault(turn.question.primary_skill, []).append(turn.evaluation.overall_score)
    return {skill: _r1(mean(scores)) for skill, scores in grouped.items()}


def topic_means(turns: List[Turn]) -> Dict[str, float]:
    grouped: Dict[str, List[float]] = {}
    for turn in turns:
        grouped.setdefault(turn.question.topic, []).append(turn.evaluation.overall_score)
    return {topic: _r1(mean(scores)) for topic, scores in grouped.items()}


def _ranked(scores: Dict[str, float]) -> Tuple[List[str], List[str]]:
    best = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    worst = sorted(scores.items(), key=lambda item: (item[1], item[0]))
    return [skill for skill, _ in best[:3]], [skill for skill, _ in worst[:3]]


def _dimension_means(turns: List[Turn]) -> RubricScores:
    return RubricScores(
        **{
            name: _r1(mean(getattr(turn.evaluation.rubric_scores, name) for turn in turns))
            for name in RUBRIC_DIMENSIONS
        }
    )


def recommendations_for(per_dimension: RubricScores, weaknesses: List[str], struggling: List[str]) -> List[str]:
    items: List[str] = []
    for name, value in per_dimension.as_dict().items():
        if value < 60:
            items.append(_DIMENSION_ADVICE[name])
    for skill in weaknesses:
        if skill in struggling:
            items.append(f"Revisit {skill.replace('-', ' ')} fundamentals before your next session.")
    if not items:
        items.append("Increase difficulty in your next practice session to keep progressing.")
    return items


def aggregate(session: Session, *, degraded: bool = True) -> FinalEvaluation:
    """Deterministic final evaluation computed from the per-turn evaluations."""

    turns = session.evaluated_turns
    if not turns:
        raise ValueError("cannot aggregate a session without evaluated turns")
    overall = _r1(mean(turn.evaluation.overall_score for turn in turns))
    per_dimension = _dimension_means(turns)
    strengths, weaknesses = _ranked(skill_scores(turns))
    recommendations = recommendations_for(per_dimension, weaknesses, session.state.struggling_areas)
    deltas = {topic: _r1(value - overall) for topic, value in topic_means(turns).items()}
    return FinalEvaluation(
        overall_score=overall,
        per_dimension_scores=per_dimension,
        strengths=strengths,
        weaknesses=weaknesses,
        recommendation=" ".join(recommendations),
        recommendations=recommendations,
        topic_mastery_deltas=deltas,
        summary=summary_for(overall),
        turns_evaluated=len(turns),
        degraded=degraded,
    )


class SessionFinalizer:
    def __init__(self, gateway: LlmGateway) -> None:
        self._gateway = gateway

    def finalize(self, session: Session, *, deadline: Optional[Deadline] = None) -> FinalEvaluation:
        baseline = aggregate(session, degraded=True)
        if deadline is not None and deadline.remaining() < _MIN_LLM_BUDGET_S:
            logger.warning("Skipping LLM final evaluation; %.2fs left", deadline.remaining())
            return baseline
        spec = FinalEvaluationSpec(
            interview_type=session.interview_type,
            target_role=session.target_role,
            state=session.state,
            turns=[
                RecentTurnView(
                    question=turn.question.text,
                    topic=turn.question.topic,
                    answer=(turn.answer.text if turn.answer else "")[:400],
                    score=turn.evaluation.overall_score,
                )
                for turn in session.evaluated_turns
            ],
        )
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
        except (LlmGatewayError, DeadlineExceeded) as exc:
            logger.warning("Final evaluation via LLM failed (%s); using aggregate", type(exc).__name__)
            return baseline
        if response.degraded:
            return baseline
        return self._merge(response.as_schema(FinalEvaluationDraft), baseline)

    @staticmethod
    def _merge(draft: FinalEvaluationDraft, baseline: FinalEvaluation) -> FinalEvaluation:
        overall = _r1(max(0.0, min(100.0, draft.overall_score)))
        per_dimension = baseline.per_dimension_scores
        if draft.per_dimension_scores is not None:
            raw = draft.per_dimension_scores.model_dump()
            per_dimension = RubricScores(**{name: _r1(max(0.0, min(100.0, raw[name]))) for name in RUBRIC_DIMENSIONS})
        deltas = {
            topic: _r1(max(-100.0, min(100.0, value))) for topic, value in draft.topic_mastery_deltas.items()
        } or baseline.topic_mastery_deltas
        recommendation = draft.recommendation.strip() or baseline.recommendation
        return baseline.model_copy(
            update={
                "overall_score": overall,
                "per_dimension_scores": per_dimension,
                "strengths": [s for s in draft.strengths if s.strip()][:3] or baseline.strengths,
                "weaknesses": [w for w in draft.weaknesses if w.strip()][:3] or baseline.weaknesses,
                "recommendation": recommendation,
                "topic_mastery_deltas": deltas,
                "summary": summary_for(overall),
                "degraded": False,
            }
        )


__all__ = ["SessionFinalizer", "aggregate", "recommendations_for", "skill_scores", "summary_for", "topic_means"]
