import pytest

from interview_session.errors import NotFound, QuotaExceeded, ServiceUnavailable, StateConflict, ValidationFailed
from interview_session.orchestrator import answer_digest

ANSWER = "Indexes speed up reads because the database can seek instead of scanning every row."


def _start(engine, **kwargs):
    params = {"interview_type": "technical", "target_role": "Backend Engineer"}
    params.update(kwargs)
    return engine.orchestrator.start_session("u1", **params)


def test_answer_digest_ignores_whitespace():
    assert answer_digest("  a  b\n c ") == answer_digest("a b c")
    assert answer_digest("a b c") != answer_digest("a b d")


def test_start_validates_inputs(engine):
    orchestrator = engine.orchestrator
    with pytest.raises(ValidationFailed):
        orchestrator.start_session("  ", interview_type="technical", target_role="SRE")
    with pytest.raises(ValidationFailed):
        orchestrator.start_session("u1", interview_type="technical", target_role="")
    with pytest.raises(ValidationFailed):
        orchestrator.start_session("u1", interview_type="technical", target_role="SRE", max_turns=0)
    with pytest.raises(ValidationFailed):
        orchestrator.start_session("u1", interview_type="technical", target_role="SRE", max_duration_minutes=241)
    with pytest.raises(NotFound):
        orchestrator.start_session("u1", interview_type="technical", target_role="SRE", resume_ref="res_missing")


def test_target_role_defaults_to_job_title(engine):
    jd = engine.profiles.create_job_description(
        "u1", title="Data Engineer", summary="", required_skills=["sql"], preferred_skills=[]
    )
    result = engine.orchestrator.start_session("u1", interview_type="technical", jd_ref=jd.id)
    session = engine.orchestrator.get_session(result.session_id)
    assert session.target_role == "Data Engineer"
    assert result.first_question.topic == "sql"


def test_start_records_first_question(engine):
    result = _start(engine)
    assert result.context.status == "inProgress"
    assert result.context.state.phase == "awaitingAnswer"
    assert not result.degraded
    session = engine.orchestrator.get_session(result.session_id)
    assert len(session.turns) == 1
    assert session.started_at is not None
    assert session.turns[0].asked_at >= session.started_at


def test_failed_start_abandons_session(engine, llm):
    llm.statuses.append(429)
    with pytest.raises(QuotaExceeded):
        _start(engine)
    (item,) = engine.orchestrator.list_sessions("u1")
    assert item.status == "abandoned"


def test_identical_resubmission_replays(engine, llm):
    start = _start(engine)
    first = engine.orchestrator.submit_answer(start.session_id, ANSWER, time_spent_ms=1200)
    calls = len(llm.calls)
    again = engine.orchestrator.submit_answer(start.session_id, "  " + ANSWER.replace(" ", "  ") + " ", turn_index=0)
    assert again.model_dump() == first.model_dump()
    assert len(llm.calls) == calls
    session = engine.orchestrator.get_session(start.session_id)
    assert len(session.turns) == 2


def test_same_text_for_consecutive_questions_is_recorded_twice(engine, llm):
    start = _start(engine)
    first = engine.orchestrator.submit_answer(start.session_id, "I am not sure.")
    second = engine.orchestrator.submit_answer(start.session_id, "I am not sure.")
    assert first.type in ("nextQuestion", "followUp")
    assert second.type in ("nextQuestion", "followUp")
    assert llm.count("EvaluationDraft") == 2

    session = engine.orchestrator.get_session(start.session_id)
    assert session.state.current_turn == 2
    assert [t.answer.text for t in session.turns[:2]] == ["I am not sure.", "I am not sure."]
    assert all(t.evaluation is not None for t in session.turns[:2])
    assert session.turns[2].answer is None


def test_turn_timestamps_are_strictly_ordered(engine):
    start = _start(engine, max_turns=6)
    for text in ("First answer.", "Second answer.", "Third answer.", "Fourth answer."):
        engine.orchestrator.submit_answer(start.session_id, text)
    session = engine.orchestrator.get_session(start.session_id)
    assert [t.index for t in session.turns] == list(range(len(session.turns)))
    for turn, following in zip(session.turns, session.turns[1:]):
        assert turn.asked_at < turn.answered_at < following.asked_at


def test_different_answer_for_evaluated_turn_conflicts(engine):
    start = _start(engine)
    engine.orchestrator.submit_answer(start.session_id, ANSWER)
    with pytest.raises(StateConflict):
        engine.orchestrator.submit_answer(start.session_id, "Another answer entirely.", turn_index=0)


def test_selection_failure_keeps_answer_and_retry_resumes(engine, llm):
    start = _start(engine)
    llm.statuses.extend([None, 503, 503])
    with pytest.raises(ServiceUnavailable) as err:
        engine.orchestrator.submit_answer(start.session_id, ANSWER)
    assert err.value.retryable

    session = engine.orchestrator.get_session(start.session_id)
    assert session.state.phase == "awaitingQuestion"
    assert session.turns[0].answer.text == ANSWER
    assert session.turns[0].evaluation is None
    assert session.state.current_turn == 0

    with pytest.raises(StateConflict):
        engine.orchestrator.submit_answer(start.session_id, "A different answer.")

    result = engine.orchestrator.submit_answer(start.session_id, ANSWER)
    assert result.type == "nextQuestion"
    session = engine.orchestrator.get_session(start.session_id)
    assert session.state.phase == "awaitingAnswer"
    assert session.state.current_turn == 1
    assert len(session.turns) == 2


def test_end_evaluates_recorded_answer(engine, llm):
    start = _start(engine)
    llm.statuses.extend([None, 503, 503])
    with pytest.raises(ServiceUnavailable):
        engine.orchestrator.submit_answer(start.session_id, ANSWER)

    ended = engine.orchestrator.end_session(start.session_id)
    assert ended.summary.status == "completed"
    assert ended.summary.analytics.total_turns == 1
    assert engine.store.is_ledger_applied(start.session_id)


def test_end_without_answers_abandons(engine):
    start = _start(engine)
    ended = engine.orchestrator.end_session(start.session_id)
    assert ended.summary.status == "abandoned"
    assert ended.summary.final_evaluation is None
    session = engine.orchestrator.get_session(start.session_id)
    assert session.turns == []
    assert not engine.store.is_ledger_applied(start.session_id)


def test_end_is_idempotent(engine):
    start = _start(engine)
    engine.orchestrator.submit_answer(start.session_id, ANSWER)
    first = engine.orchestrator.end_session(start.session_id)
    second = engine.orchestrator.end_session(start.session_id)
    assert second.summary.final_evaluation == first.summary.final_evaluation
    assert second.summary.status == "completed"


def test_unknown_session(engine):
    with pytest.raises(NotFound):
        engine.orchestrator.submit_answer("ses_missing", ANSWER)
    with pytest.raises(NotFound):
        engine.orchestrator.end_session("ses_missing")


def test_empty_answer_rejected(engine):
    start = _start(engine)
    with pytest.raises(ValidationFailed):
        engine.orchestrator.submit_answer(start.session_id, "   ")
    with pytest.raises(ValidationFailed):
        engine.orchestrator.submit_answer(start.session_id, "x" * 20001)


def test_max_turns_completes_session(engine):
    start = _start(engine, max_turns=2)
    engine.orchestrator.submit_answer(start.session_id, ANSWER)
    result = engine.orchestrator.submit_answer(start.session_id, ANSWER + " Also covering indexes.")
    assert result.type == "complete"
    assert result.summary.status == "completed"
    assert result.summary.analytics.total_turns == 2
    assert result.summary.final_evaluation.turns_evaluated == 2
    progress = engine.ledger.progress("u1", "Backend Engineer")
    assert progress.total_sessions == 1
