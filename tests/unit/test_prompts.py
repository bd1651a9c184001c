import json

from agents.types import Evaluation, Question, RubricScores, SessionState
from prompts import (
    EvaluationDraft,
    EvaluationSpec,
    FinalEvaluationDraft,
    FirstQuestionSpec,
    FollowUpSpec,
    NextQuestionSpec,
    QuestionDraft,
    build_prompt,
)


def _question() -> Question:
    return Question(text="How does a hash map resolve collisions?", topic="hashing", skill_tags=["hashing"], difficulty=3)


def test_equal_specs_render_identical_prompts():
    a = FirstQuestionSpec(
        interview_type="technical",
        target_role="Backend Engineer",
        focus_topic="caching",
        difficulty=3,
        resume_skills=["python", "caching", "sql"],
        jd_skills=["sql", "caching"],
    )
    b = FirstQuestionSpec(
        interview_type="technical",
        target_role="Backend Engineer",
        focus_topic="caching",
        difficulty=3,
        resume_skills=["sql", "python", "caching"],
        jd_skills=["caching", "sql"],
    )
    first, second = build_prompt(a), build_prompt(b)
    assert first.user_prompt == second.user_prompt
    assert first.system_prompt == second.system_prompt
    assert first.response_schema is QuestionDraft
    assert '"focusTopic": "caching"' in first.user_prompt


def test_state_lists_are_sorted_in_prompt():
    state = SessionState(topics_covered=["sql", "caching"], struggling_areas=["sql", "graphs"])
    spec = NextQuestionSpec(
        interview_type="technical",
        target_role="Backend Engineer",
        focus_topic="graphs",
        difficulty=2,
        state=state,
    )
    bundle = build_prompt(spec)
    rendered = json.loads(bundle.user_prompt)["sessionState"]
    assert rendered["topicsCovered"] == ["caching", "sql"]
    assert rendered["strugglingAreas"] == ["graphs", "sql"]
    assert bundle.kind == "next_question"


def test_evaluation_prompt_is_deterministic_and_carries_rubric():
    bundle = build_prompt(EvaluationSpec(question=_question(), answer="Chaining or open addressing."))
    assert bundle.temperature == 0.0
    assert bundle.response_schema is EvaluationDraft
    for name in ("correctness", "depth", "clarity", "structure", "completeness"):
        assert f'"{name}"' in bundle.user_prompt
    assert bundle.system_prompt


def test_follow_up_prompt_names_the_gap():
    evaluation = Evaluation(
        overall_score=45.0,
        rubric_scores=RubricScores(correctness=45, depth=45, clarity=45, structure=45, completeness=45),
        detected_gap_kind="depth",
    )
    bundle = build_prompt(FollowUpSpec(parent_question=_question(), parent_answer="Not sure.", evaluation=evaluation))
    assert '"detectedGapKind": "depth"' in bundle.user_prompt
    assert '"focusTopic": "hashing"' in bundle.user_prompt


def test_degraded_question_default_uses_prompt_hints():
    bundle = build_prompt(
        FirstQuestionSpec(interview_type="technical", target_role="SRE", focus_topic="observability", difficulty=4)
    )
    draft = QuestionDraft.degraded_default(bundle.user_prompt)
    assert draft.topic == "observability"
    assert draft.difficulty == 4
    assert "observability" in draft.text


def test_gap_kind_labels_are_normalised():
    draft = EvaluationDraft.model_validate(
        {
            "rubricScores": {"correctness": 1, "depth": 1, "clarity": 1, "structure": 1, "completeness": 1},
            "detectedGapKind": "Knowledge_Gap",
        }
    )
    assert draft.detected_gap_kind == "knowledge"
    other = EvaluationDraft.model_validate(
        {
            "rubricScores": {"correctness": 1, "depth": 1, "clarity": 1, "structure": 1, "completeness": 1},
            "detectedGapKind": "vibes",
        }
    )
    assert other.detected_gap_kind == "none"


def test_final_draft_requires_overall_score():
    draft = FinalEvaluationDraft.model_validate({"overallScore": 81, "extra": "ignored"})
    assert draft.overall_score == 81
    assert draft.per_dimension_scores is None
