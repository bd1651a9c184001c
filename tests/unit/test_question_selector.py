import random
from datetime import datetime, timezone

import pytest

from agents.question_bank import QuestionBank
from agents.question_selector import QuestionSelector, adjust_difficulty, choose_topic
from agents.types import (
    Answer,
    Evaluation,
    JobDescriptionSnapshot,
    Question,
    ResumeSnapshot,
    RubricScores,
    SessionState,
)
from config import GatewayConfig, LlmRoute
from interview_session.models import Session, Turn
from llm_gateway import LlmGateway, LlmGatewayError

ROUTE = LlmRoute(base_url="http://llm.test", endpoint="/v1/chat/completions", model="test-model", timeout_s=5.0)
T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _session(**overrides) -> Session:
    data = dict(
        id="ses_test",
        user_id="u1",
        interview_type="technical",
        target_role="Backend Engineer",
        resume=ResumeSnapshot(skills=["python", "caching", "sql"]),
        job_description=JobDescriptionSnapshot(
            title="Backend Engineer",
            required_skills=["sql", "kubernetes"],
            preferred_skills=["caching"],
        ),
        status="inProgress",
        created_at=T0,
    )
    data.update(overrides)
    return Session(**data)


def _selector(llm) -> QuestionSelector:
    return QuestionSelector(LlmGateway(ROUTE, GatewayConfig(cache_ttl_s=0), client=llm))


def test_adjust_difficulty_steps_and_clamps():
    assert adjust_difficulty(3, 85) == 4
    assert adjust_difficulty(3, 80) == 4
    assert adjust_difficulty(3, 60) == 3
    assert adjust_difficulty(3, 40) == 2
    assert adjust_difficulty(5, 95) == 5
    assert adjust_difficulty(1, 10) == 1


def test_topic_order_prefers_overlap_then_weak_then_required():
    rng = random.Random(0)
    generic = QuestionBank().generic_topics("technical")
    session = _session()
    assert choose_topic(session, [], generic, rng) == "sql"

    session = _session(state=SessionState(topics_covered=["sql"]))
    assert choose_topic(session, ["Graphs"], generic, rng) == "caching"

    session = _session(state=SessionState(topics_covered=["sql", "caching"]))
    assert choose_topic(session, ["Graphs"], generic, rng) == "graphs"
    assert choose_topic(session, [], generic, rng) == "kubernetes"

    session = _session(state=SessionState(topics_covered=["sql", "caching", "kubernetes"]))
    assert choose_topic(session, [], generic, rng) == "python"

    session = _session(state=SessionState(topics_covered=["sql", "caching", "kubernetes", "python"]))
    assert choose_topic(session, [], generic, rng) == generic[0]


def test_generic_pool_without_resume_or_jd():
    session = _session(resume=None, job_description=None, interview_type="behavioral")
    bank = QuestionBank()
    assert choose_topic(session, [], bank.generic_topics("behavioral"), random.Random(1)) == "teamwork"


def test_llm_question_keeps_policy_topic_and_difficulty(llm):
    session = _session(state=SessionState(difficulty_level=4))
    selected = _selector(llm).select(session)
    assert selected.source == "llm"
    assert not selected.degraded
    assert selected.question.topic == "sql"
    assert selected.question.difficulty == 4
    assert selected.question.skill_tags == ["sql"]
    assert not selected.question.is_follow_up


def test_unusable_llm_output_falls_back_to_template(llm):
    llm.raw.extend(["no json here", "still no json"])
    selector = _selector(llm)
    selected = selector.select(_session())
    assert selected.degraded
    assert selected.source == "template"
    assert selected.question.text == selector.bank.question_text("sql", 3, "technical")


def test_quota_errors_are_not_masked(llm):
    llm.statuses.append(429)
    with pytest.raises(LlmGatewayError) as err:
        _selector(llm).select(_session())
    assert err.value.kind == "quotaExceeded"


def test_follow_up_links_to_parent(llm):
    parent = Turn(
        index=0,
        question=Question(text="Explain SQL joins.", topic="sql", skill_tags=["sql", "joins"], difficulty=2),
        asked_at=T0,
        answer=Answer(text="They combine tables.", answer_hash="h"),
        answered_at=T0,
        evaluation=Evaluation(
            overall_score=45,
            rubric_scores=RubricScores(correctness=45, depth=45, clarity=45, structure=45, completeness=45),
            detected_gap_kind="depth",
            needs_follow_up=True,
        ),
    )
    session = _session(turns=[parent])
    selected = _selector(llm).select(session, follow_up_of=parent)
    question = selected.question
    assert question.is_follow_up
    assert question.parent_index == 0
    assert question.topic == "sql"
    assert question.difficulty == 2
    assert question.skill_tags == ["sql", "joins"]


def test_follow_up_template_matches_gap_kind(llm):
    llm.raw.extend(["no json here", "still no json"])
    parent = Turn(
        index=0,
        question=Question(text="Explain SQL joins.", topic="sql", skill_tags=["sql"], difficulty=2),
        asked_at=T0,
        answer=Answer(text="They combine tables.", answer_hash="h"),
        answered_at=T0,
        evaluation=Evaluation(
            overall_score=45,
            rubric_scores=RubricScores(correctness=45, depth=45, clarity=45, structure=45, completeness=45),
            detected_gap_kind="depth",
        ),
    )
    selector = _selector(llm)
    selected = selector.select(_session(turns=[parent]), follow_up_of=parent)
    assert selected.degraded
    assert selected.question.is_follow_up
    assert selected.question.text == selector.bank.follow_up_text("sql", "depth")
    assert "trade-offs" in selected.question.text
