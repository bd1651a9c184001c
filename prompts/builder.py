"""Deterministic prompt assembly.

Every prompt is a fixed system template plus a user message rendered from a
typed spec as sorted JSON, so equal specs always produce byte-identical
prompts (which is what the gateway cache keys on).
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from agents.types import RUBRIC_WEIGHTS, Evaluation, Question, SessionState

from .schemas import EvaluationDraft, FinalEvaluationDraft, QuestionDraft


TEMPLATE_DIR = Path(__file__).with_name("templates")

RUBRIC_GUIDE: Dict[str, str] = {
    "correctness": "Technical accuracy of the claims made.",
    "depth": "Goes beyond definitions into mechanisms, trade-offs and edge cases.",
    "clarity": "Easy to follow; terms are explained rather than name-dropped.",
    "structure": "Logical ordering: context, approach, result.",
    "completeness": "Addresses every part of the question.",
}


class _Spec(BaseModel):
    model_config = ConfigDict(frozen=True)


class RecentTurnView(_Spec):  # Condensed turn for prompt context
    question: str
    topic: str
    answer: str = ""
    score: Optional[float] = None


class FirstQuestionSpec(_Spec):
    kind: Literal["first_question"] = "first_question"
    interview_type: str
    target_role: str
    focus_topic: str
    difficulty: int = Field(ge=1, le=5)
    resume_summary: str = ""
    resume_skills: List[str] = Field(default_factory=list)
    jd_summary: str = ""
    jd_skills: List[str] = Field(default_factory=list)


class NextQuestionSpec(_Spec):
    kind: Literal["next_question"] = "next_question"
    interview_type: str
    target_role: str
    focus_topic: str
    difficulty: int = Field(ge=1, le=5)
    state: SessionState
    recent_turns: List[RecentTurnView] = Field(default_factory=list, max_length=3)
    resume_summary: str = ""
    jd_summary: str = ""


class EvaluationSpec(_Spec):
    kind: Literal["evaluation"] = "evaluation"
    question: Question
    answer: str


class FollowUpSpec(_Spec):
    kind: Literal["follow_up"] = "follow_up"
    parent_question: Question
    parent_answer: str
    evaluation: Evaluation


class FinalEvaluationSpec(_Spec):
    kind: Literal["final_evaluation"] = "final_evaluation"
    interview_type: str
    target_role: str
    state: SessionState
    turns: List[RecentTurnView]


PromptSpec = Annotated[
    Union[FirstQuestionSpec, NextQuestionSpec, EvaluationSpec, FollowUpSpec, FinalEvaluationSpec],
    Field(discriminator="kind"),
]


class PromptBundle(BaseModel):  # What the gateway needs to make one call
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kind: str
    system_prompt: str
    user_prompt: str
    response_schema: Type[BaseModel]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@lru_cache(maxsize=None)
def system_template(kind: str) -> str:
    path = TEMPLATE_DIR / f"{kind}.txt"
    return path.read_text(encoding="utf-8").strip()


def _state_view(state: SessionState) -> Dict[str, Any]:
    return {
        "currentTurn": state.current_turn,
        "difficultyLevel": state.difficulty_level,
        "confidenceEstimate": round(state.confidence_estimate, 3),
        "topicsCovered": sorted(state.topics_covered),
        "skillsProbed": sorted(state.skills_probed),
        "strugglingAreas": sorted(state.struggling_areas),
        "strongAreas": sorted(state.strong_areas),
    }


def _question_view(question: Question) -> Dict[str, Any]:
    return {
        "text": question.text,
        "topic": question.topic,
        "skillTags": list(question.skill_tags),
        "difficulty": question.difficulty,
        "isFollowUp": question.is_follow_up,
    }


def _turn_views(turns: List[RecentTurnView]) -> List[Dict[str, Any]]:
    return [
        {"question": t.question, "topic": t.topic, "answer": t.answer, "score": t.score}
        for t in turns
    ]


def _first_question(spec: FirstQuestionSpec) -> Dict[str, Any]:
    return {
        "interviewType": spec.interview_type,
        "targetRole": spec.target_role,
        "focusTopic": spec.focus_topic,
        "targetDifficulty": spec.difficulty,
        "resume": {"summary": spec.resume_summary, "skills": sorted(spec.resume_skills)},
        "jobDescription": {"summary": spec.jd_summary, "skills": sorted(spec.jd_skills)},
    }


def _next_question(spec: NextQuestionSpec) -> Dict[str, Any]:
    return {
        "interviewType": spec.interview_type,
        "targetRole": spec.target_role,
        "focusTopic": spec.focus_topic,
        "targetDifficulty": spec.difficulty,
        "sessionState": _state_view(spec.state),
        "recentTurns": _turn_views(spec.recent_turns),
        "resumeSummary": spec.resume_summary,
        "jobDescriptionSummary": spec.jd_summary,
    }


def _evaluation(spec: EvaluationSpec) -> Dict[str, Any]:
    return {
        "question": _question_view(spec.question),
        "answer": spec.answer,
        "rubric": {
            name: {"weight": weight, "guide": RUBRIC_GUIDE[name]}
            for name, weight in RUBRIC_WEIGHTS.items()
        },
        "scoreRange": [0, 100],
    }


def _follow_up(spec: FollowUpSpec) -> Dict[str, Any]:
    evaluation = spec.evaluation
    return {
        "parentQuestion": _question_view(spec.parent_question),
        "parentAnswer": spec.parent_answer,
        "focusTopic": spec.parent_question.topic,
        "targetDifficulty": spec.parent_question.difficulty,
        "assessment": {
            "overallScore": evaluation.overall_score,
            "weaknesses": sorted(evaluation.identified_weaknesses),
            "detectedGapKind": evaluation.detected_gap_kind,
        },
    }


def _final_evaluation(spec: FinalEvaluationSpec) -> Dict[str, Any]:
    return {
        "interviewType": spec.interview_type,
        "targetRole": spec.target_role,
        "sessionState": _state_view(spec.state),
        "turns": _turn_views(spec.turns),
    }


_BUILDERS: Dict[str, Callable[[Any], Dict[str, Any]]] = {
    "first_question": _first_question,
    "next_question": _next_question,
    "evaluation": _evaluation,
    "follow_up": _follow_up,
    "final_evaluation": _final_evaluation,
}

_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "first_question": QuestionDraft,
    "next_question": QuestionDraft,
    "evaluation": EvaluationDraft,
    "follow_up": QuestionDraft,
    "final_evaluation": FinalEvaluationDraft,
}

_CALL_PARAMS: Dict[str, Dict[str, Any]] = {
    "first_question": {"max_tokens": 300},
    "next_question": {"max_tokens": 300},
    "follow_up": {"max_tokens": 300},
    "evaluation": {"temperature": 0.0, "max_tokens": 500},
    "final_evaluation": {"temperature": 0.2, "max_tokens": 700},
}


def render_inputs(inputs: Dict[str, Any]) -> str:
    return json.dumps(inputs, sort_keys=True, indent=2, ensure_ascii=False)


def build_prompt(spec: PromptSpec) -> PromptBundle:
    """Render ``spec`` into a byte-stable prompt bundle."""

    inputs = _BUILDERS[spec.kind](spec)
    return PromptBundle(
        kind=spec.kind,
        system_prompt=system_template(spec.kind),
        user_prompt=render_inputs(inputs),
        response_schema=_SCHEMAS[spec.kind],
        **_CALL_PARAMS[spec.kind],
    )


__all__ = [
    "EvaluationSpec",
    "FinalEvaluationSpec",
    "FirstQuestionSpec",
    "FollowUpSpec",
    "NextQuestionSpec",
    "PromptBundle",
    "PromptSpec",
    "RecentTurnView",
    "build_prompt",
    "render_inputs",
    "system_template",
]
