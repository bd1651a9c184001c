from __future__ import annotations  # Re-export prompt builder API

from .builder import (
    EvaluationSpec,
    FinalEvaluationSpec,
    FirstQuestionSpec,
    FollowUpSpec,
    NextQuestionSpec,
    PromptBundle,
    PromptSpec,
    RecentTurnView,
    build_prompt,
)
from .schemas import EvaluationDraft, FinalEvaluationDraft, QuestionDraft, RubricDraft

__all__ = [
    "EvaluationDraft",
    "EvaluationSpec",
    "FinalEvaluationDraft",
    "FinalEvaluationSpec",
    "FirstQuestionSpec",
    "FollowUpSpec",
    "NextQuestionSpec",
    "PromptBundle",
    "PromptSpec",
    "QuestionDraft",
    "RecentTurnView",
    "RubricDraft",
    "build_prompt",
]
