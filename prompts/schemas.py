from __future__ import annotations  # Response schemas the LLM must satisfy

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agents.types import GAP_KINDS


_TOPIC_HINT = re.compile(r'"(?:focusTopic|topic)":\s*"([^"]*)"')
_DIFFICULTY_HINT = re.compile(r'"(?:targetDifficulty|difficulty)":\s*(\d)')


class LlmSchema(BaseModel):  # Tolerant of extra keys, camelCase on the wire
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RubricDraft(LlmSchema):
    correctness: float
    depth: float
    clarity: float
    structure: float
    completeness: float


class QuestionDraft(LlmSchema):
    text: str = Field(min_length=1)
    topic: str = ""
    skill_tags: List[str] = Field(default_factory=list)
    difficulty: int = 3

    @classmethod
    def degraded_default(cls, user_prompt: str) -> "QuestionDraft":
        topic_match = _TOPIC_HINT.search(user_prompt)
        topic = topic_match.group(1) if topic_match else "your recent work"
        difficulty_match = _DIFFICULTY_HINT.search(user_prompt)
        difficulty = int(difficulty_match.group(1)) if difficulty_match else 3
        return cls(
            text=f"Walk me through how you have applied {topic} in a recent project. What trade-offs did you make?",
            topic=topic,
            skill_tags=[topic] if topic_match else [],
            difficulty=difficulty,
        )


class EvaluationDraft(LlmSchema):
    overall_score: Optional[float] = None
    rubric_scores: RubricDraft
    identified_strengths: List[str] = Field(default_factory=list)
    identified_weaknesses: List[str] = Field(default_factory=list)
    detected_gap_kind: str = "none"
    needs_follow_up: bool = False
    feedback: str = ""

    @field_validator("detected_gap_kind", mode="before")
    @classmethod
    def _normalise_gap_kind(cls, value: object) -> str:
        text = str(value or "none").strip().lower().replace("_", "-")
        if text.endswith("-gap"):
            text = text[: -len("-gap")]
        return text if text in GAP_KINDS else "none"

    @classmethod
    def degraded_default(cls, user_prompt: str) -> "EvaluationDraft":
        return cls(
            overall_score=55.0,
            rubric_scores=RubricDraft(correctness=55, depth=55, clarity=55, structure=55, completeness=55),
            feedback="Automated scoring is temporarily limited; this is a provisional assessment.",
        )


class FinalEvaluationDraft(LlmSchema):
    overall_score: float
    per_dimension_scores: Optional[RubricDraft] = None
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendation: str = ""
    topic_mastery_deltas: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def degraded_default(cls, user_prompt: str) -> "FinalEvaluationDraft":
        return cls(overall_score=0.0, recommendation="")


__all__ = ["EvaluationDraft", "FinalEvaluationDraft", "LlmSchema", "QuestionDraft", "RubricDraft"]
