from __future__ import annotations  # Shared interview domain models

import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


InterviewType = Literal["technical", "behavioral", "systemDesign", "mixed"]
GapKind = Literal["none", "knowledge", "explanation", "depth", "application"]

GAP_KINDS: tuple[str, ...] = ("none", "knowledge", "explanation", "depth", "application")
RUBRIC_DIMENSIONS: tuple[str, ...] = ("correctness", "depth", "clarity", "structure", "completeness")
RUBRIC_WEIGHTS: Dict[str, float] = {
    "correctness": 0.35,
    "depth": 0.20,
    "clarity": 0.15,
    "structure": 0.10,
    "completeness": 0.20,
}

_SKILL_SEPARATORS = re.compile(r"[\s_/]+")
_SKILL_STRIP = re.compile(r"[^a-z0-9+#.\-]")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_skill(name: str) -> str:
    """Canonical skill key: lower-case, hyphen separated (``"Binary Search"`` -> ``"binary-search"``)."""

    text = _SKILL_SEPARATORS.sub("-", (name or "").strip().lower())
    text = _SKILL_STRIP.sub("", text)
    return re.sub(r"-{2,}", "-", text).strip("-")


def normalize_skills(names: Iterable[str]) -> List[str]:  # Order-preserving, de-duplicated
    seen: List[str] = []
    for name in names:
        key = normalize_skill(name)
        if key and key not in seen:
            seen.append(key)
    return seen


class CamelModel(BaseModel):  # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Question(CamelModel):
    text: str = Field(min_length=1)
    topic: str
    skill_tags: List[str] = Field(default_factory=list)
    difficulty: int = Field(ge=1, le=5)
    is_follow_up: bool = False
    parent_index: Optional[int] = Field(default=None, ge=0)

    @property
    def primary_skill(self) -> str:
        return self.skill_tags[0] if self.skill_tags else self.topic


class Answer(CamelModel):
    text: str = Field(min_length=1)
    time_spent_ms: int = Field(default=0, ge=0)
    answer_hash: str


class RubricScores(CamelModel):
    correctness: float = Field(ge=0.0, le=100.0)
    depth: float = Field(ge=0.0, le=100.0)
    clarity: float = Field(ge=0.0, le=100.0)
    structure: float = Field(ge=0.0, le=100.0)
    completeness: float = Field(ge=0.0, le=100.0)

    def as_dict(self) -> Dict[str, float]:
        return {name: float(getattr(self, name)) for name in RUBRIC_DIMENSIONS}

    def weighted_overall(self) -> float:
        values = self.as_dict()
        return round(sum(values[name] * weight for name, weight in RUBRIC_WEIGHTS.items()), 1)

    def lowest(self) -> float:
        return min(self.as_dict().values())


class Evaluation(CamelModel):  # Per-turn assessment
    overall_score: float = Field(ge=0.0, le=100.0)
    rubric_scores: RubricScores
    identified_strengths: List[str] = Field(default_factory=list)
    identified_weaknesses: List[str] = Field(default_factory=list)
    detected_gap_kind: GapKind = "none"
    needs_follow_up: bool = False
    feedback: str = ""
    degraded: bool = False


class FinalEvaluation(CamelModel):  # Whole-session assessment
    overall_score: float = Field(ge=0.0, le=100.0)
    per_dimension_scores: RubricScores
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendation: str = ""
    recommendations: List[str] = Field(default_factory=list)
    topic_mastery_deltas: Dict[str, float] = Field(default_factory=dict)
    summary: str = ""
    turns_evaluated: int = Field(default=0, ge=0)
    degraded: bool = False
    generated_at: datetime = Field(default_factory=utcnow)


class ResumeSnapshot(CamelModel):
    ref: Optional[str] = None
    summary: str = ""
    skills: List[str] = Field(default_factory=list)


class JobDescriptionSnapshot(CamelModel):
    ref: Optional[str] = None
    title: str = ""
    summary: str = ""
    required_skills: List[str] = Field(default_factory=list)
    preferred_skills: List[str] = Field(default_factory=list)

    @property
    def all_skills(self) -> List[str]:
        return normalize_skills([*self.required_skills, *self.preferred_skills])


class SessionState(CamelModel):  # Adaptive state carried between turns
    current_turn: int = Field(default=0, ge=0)
    topics_covered: List[str] = Field(default_factory=list)
    skills_probed: List[str] = Field(default_factory=list)
    difficulty_level: int = Field(default=3, ge=1, le=5)
    confidence_estimate: float = Field(default=0.5, ge=0.0, le=1.0)
    struggling_areas: List[str] = Field(default_factory=list)
    strong_areas: List[str] = Field(default_factory=list)
    follow_ups_used: int = Field(default=0, ge=0)
    phase: Optional[Literal["awaitingAnswer", "awaitingQuestion"]] = None


__all__ = [
    "Answer",
    "CamelModel",
    "Evaluation",
    "FinalEvaluation",
    "GAP_KINDS",
    "GapKind",
    "InterviewType",
    "JobDescriptionSnapshot",
    "Question",
    "RUBRIC_DIMENSIONS",
    "RUBRIC_WEIGHTS",
    "ResumeSnapshot",
    "RubricScores",
    "SessionState",
    "normalize_skill",
    "normalize_skills",
    "utcnow",
]
