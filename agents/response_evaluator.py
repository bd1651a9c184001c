"""LLM-backed response evaluator with a rule-based fallback."""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from agents.types import RUBRIC_DIMENSIONS, Evaluation, Question, RubricScores, SessionState
from interview_session.models import Turn
from llm_gateway import Deadline, DeadlineExceeded, LlmGateway, LlmGatewayError, LlmRequest
from prompts import EvaluationDraft, EvaluationSpec, build_prompt

logger = logging.getLogger(__name__)

FOLLOW_UP_THRESHOLD = 55.0
SHORT_ANSWER_WORDS = 20
_STRUCTURE_MARKERS = (
    r"\bfirst(ly)?\b",
    r"\bsecond(ly)?\b",
    r"\bthen\b",
    r"\bfinally\b",
    r"\bbecause\b",
    r"\bfor example\b",
    r"\bfor instance\b",
    r"\btrade-?offs?\b",
    r"^\s*[-*\d]+[.)]?\s",
)
_WORD = re.compile(r"[A-Za-z0-9+#']+")


def _token_count(text: str) -> int:
    return 0 if not text else len(_WORD.findall(text))


def _round_1dp(value: float) -> float:
    return float(f"{value:.1f}")


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, float(value)))


def _band(fraction: float) -> float:  # Map a 0..1 signal onto the heuristic 40..70 range
    return _round_1dp(40.0 + 30.0 * max(0.0, min(1.0, fraction)))


def _length_factor(words: int) -> float:
    if words < SHORT_ANSWER_WORDS:
        return 0.0
    if words < 60:
        return 0.5
    if words <= 250:
        return 1.0
    return 0.7


def _skill_coverage(tags: List[str], text: str) -> float:
    if not tags:
        return 0.0
    lowered = text.lower()
    hits = 0
    for tag in tags:
        phrase = tag.replace("-", " ")
        parts = [part for part in tag.split("-") if len(part) > 2]
        if phrase in lowered or tag in lowered or (parts and all(part in lowered for part in parts)):
            hits += 1
    return hits / len(tags)


def _structure_factor(text: str) -> float:
    found = sum(1 for marker in _STRUCTURE_MARKERS if re.search(marker, text, re.IGNORECASE | re.MULTILINE))
    return min(found, 3) / 3.0


def heuristic_evaluate(question: Question, answer_text: str) -> Evaluation:
    """Score an answer without the LLM.

    Uses answer length, coverage of the question's skill tags and structural
    markers. Scores stay inside 40..70 so a rule-based verdict never reads
    as strong evidence either way.
    """

    words = _token_count(answer_text)
    length = _length_factor(words)
    coverage = _skill_coverage(question.skill_tags or [question.topic], answer_text)
    structure = _structure_factor(answer_text)
    example = 1.0 if re.search(r"\b(for example|for instance|e\.g\.|because)\b", answer_text, re.IGNORECASE) else 0.0

    rubric = RubricScores(
        correctness=_band(0.5 * coverage + 0.5 * length),
        depth=_band(0.6 * length + 0.4 * example),
        clarity=_band(0.7 * length + 0.3 * structure),
        structure=_band(structure),
        completeness=_band(0.5 * coverage + 0.5 * length),
    )
    if words < SHORT_ANSWER_WORDS:
        gap_kind = "explanation"
    elif coverage == 0:
        gap_kind = "knowledge"
    else:
        gap_kind = "none"

    strengths: List[str] = []
    weaknesses: List[str] = []
    if coverage > 0:
        strengths.append(f"Addresses {question.topic}")
    else:
        weaknesses.append(f"Does not engage with {question.topic}")
    if length >= 1.0:
        strengths.append("Well-developed answer")
    elif words < SHORT_ANSWER_WORDS:
        weaknesses.append("Answer is too brief")
    if structure >= 2 / 3:
        strengths.append("Clear structure")
    else:
        weaknesses.append("Could be better organised")

    return Evaluation(
        overall_score=rubric.weighted_overall(),
        rubric_scores=rubric,
        identified_strengths=strengths,
        identified_weaknesses=weaknesses,
        detected_gap_kind=gap_kind,
        needs_follow_up=rubric.lowest() < FOLLOW_UP_THRESHOLD,
        feedback="Provisional rule-based assessment based on length, topic coverage and structure.",
        degraded=True,
    )


def follow_up_allowed(question: Question, state: SessionState, max_turns: int) -> bool:
    return not question.is_follow_up and state.current_turn < max_turns - 2


def _from_draft(draft: EvaluationDraft) -> Evaluation:
    raw = draft.rubric_scores.model_dump()
    rubric = RubricScores(**{name: _round_1dp(_clamp(raw[name])) for name in RUBRIC_DIMENSIONS})
    overall = draft.overall_score
    if overall is None or not 0.0 <= overall <= 100.0:
        overall = rubric.weighted_overall()
    return Evaluation(
        overall_score=_round_1dp(overall),
        rubric_scores=rubric,
        identified_strengths=[s.strip() for s in draft.identified_strengths if s.strip()][:5],
        identified_weaknesses=[w.strip() for w in draft.identified_weaknesses if w.strip()][:5],
        detected_gap_kind=draft.detected_gap_kind,
        needs_follow_up=rubric.lowest() < FOLLOW_UP_THRESHOLD,
        feedback=(draft.feedback or "")[:1000],
    )


class ResponseEvaluator:
    def __init__(self, gateway: LlmGateway) -> None:
        self._gateway = gateway

    def evaluate(
        self,
        turn: Turn,
        state: SessionState,
        *,
        max_turns: int,
        deadline: Optional[Deadline] = None,
        heuristic_on_deadline: bool = False,
    ) -> Evaluation:
        """Evaluate the answer recorded on ``turn``.

        Gateway failures fall back to :func:`heuristic_evaluate` with the
        degraded flag set. Operation deadline and cancellation propagate
        unless ``heuristic_on_deadline`` is set.
        """

        if turn.answer is None:
            raise ValueError("turn has no answer to evaluate")
        question = turn.question
        answer_text = turn.answer.text
        bundle = build_prompt(EvaluationSpec(question=question, answer=answer_text))
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
            logger.warning("Evaluation via LLM failed (%s); using heuristic scoring", exc.kind)
            evaluation = heuristic_evaluate(question, answer_text)
        except DeadlineExceeded:
            if not heuristic_on_deadline:
                raise
            logger.warning("Evaluation deadline reached; using heuristic scoring")
            evaluation = heuristic_evaluate(question, answer_text)
        else:
            if response.degraded:
                evaluation = heuristic_evaluate(question, answer_text)
            else:
                evaluation = _from_draft(response.as_schema(EvaluationDraft))

        needs = evaluation.needs_follow_up and follow_up_allowed(question, state, max_turns)
        return evaluation.model_copy(update={"needs_follow_up": needs})


__all__ = ["FOLLOW_UP_THRESHOLD", "ResponseEvaluator", "follow_up_allowed", "heuristic_evaluate"]
