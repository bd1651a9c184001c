import threading

import pytest

from agents.question_bank import QuestionBank
from llm_gateway import LlmGatewayError, LlmRequest


def _start(client, **body):
    payload = {"userId": "u1", "interviewType": "technical", "targetRole": "backend"}
    payload.update(body)
    resp = client.post("/sessions", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _answer(client, session_id, text, **extra):
    return client.post(f"/sessions/{session_id}/answers", json={"answer": text, "timeSpentMs": 15000, **extra})


def _gaps(client, user_id="u1"):
    resp = client.get(f"/users/{user_id}/gaps")
    assert resp.status_code == 200
    return resp.json()


def test_happy_path_exits_on_mastery(client, llm):
    before = client.get("/users/u1/progress/backend").json()
    assert before == {"hasProgress": False}

    start = _start(client, maxTurns=10)
    sid = start["sessionId"]
    assert start["firstQuestion"]["difficulty"] == 3
    assert start["degraded"] is False

    llm.queue_scores(88, 90, 92)
    first = _answer(client, sid, "A thorough answer about the first topic.").json()
    assert first["type"] == "nextQuestion"
    assert first["nextQuestion"]["difficulty"] == 4
    second = _answer(client, sid, "A thorough answer about the second topic.").json()
    assert second["type"] == "nextQuestion"
    assert second["nextQuestion"]["difficulty"] == 5
    third = _answer(client, sid, "A thorough answer about the third topic.").json()
    assert third["type"] == "complete"

    summary = third["summary"]
    assert summary["status"] == "completed"
    assert summary["analytics"]["totalTurns"] == 3
    assert summary["analytics"]["difficultyCurve"] == [3, 4, 5]
    assert summary["finalEvaluation"]["overallScore"] >= 85

    assert _gaps(client)["gaps"] == []
    after = client.get("/users/u1/progress/backend").json()
    assert after["hasProgress"] is True
    assert after["totalSessions"] == 1
    assert after["readiness"] > 0


def test_weak_answer_gets_follow_up_then_new_topic(client, llm):
    resume = client.post("/users/u1/resumes", json={"summary": "Backend developer", "skills": ["Binary Search", "Graphs"]})
    assert resume.status_code == 201
    jd = client.post(
        "/users/u1/job-descriptions",
        json={"title": "Backend Engineer", "requiredSkills": ["binary-search", "graphs"]},
    )
    assert jd.status_code == 201

    start = _start(client, resumeRef=resume.json()["id"], jdRef=jd.json()["id"])
    sid = start["sessionId"]
    first_question = start["firstQuestion"]
    assert first_question["topic"] == "binary-search"

    llm.queue_scores(48, 80)
    follow = _answer(client, sid, "You just loop over the list I think.").json()
    assert follow["type"] == "followUp"
    question = follow["nextQuestion"]
    assert question["isFollowUp"] is True
    assert question["parentIndex"] == 0
    assert question["topic"] == "binary-search"
    assert question["difficulty"] == first_question["difficulty"]
    assert follow["context"]["state"]["followUpsUsed"] == 1
    assert follow["evaluation"]["detectedGapKind"] == "knowledge"

    nxt = _answer(client, sid, "Halve the sorted range each step, comparing with the middle element.").json()
    assert nxt["type"] == "nextQuestion"
    assert nxt["nextQuestion"]["isFollowUp"] is False
    assert nxt["nextQuestion"]["topic"] == "graphs"

    session = client.get(f"/sessions/{sid}").json()
    assert len(session["turns"]) == 3
    assert session["state"]["currentTurn"] == 2


def test_gap_lifecycle_across_sessions(client, llm):
    resume = client.post("/users/u1/resumes", json={"skills": ["dynamic programming"]}).json()

    a = _start(client, resumeRef=resume["id"])
    assert a["firstQuestion"]["topic"] == "dynamic-programming"
    llm.queue_scores(35, 40)
    assert _answer(client, a["sessionId"], "Not sure, maybe recursion.").json()["type"] == "followUp"
    assert _answer(client, a["sessionId"], "Something about caching results?").json()["type"] == "nextQuestion"
    ended = client.post(f"/sessions/{a['sessionId']}/end")
    assert ended.status_code == 200
    assert ended.json()["summary"]["status"] == "completed"
    assert ended.json()["summary"]["finalEvaluation"]["turnsEvaluated"] == 2

    (gap,) = _gaps(client)["gaps"]
    assert gap["skill"] == "dynamic-programming"
    assert gap["gapKind"] == "knowledge"
    assert gap["severity"] == "medium"
    assert gap["status"] == "open"
    assert [c["score"] for c in gap["confirmations"]] == [35, 40]

    refused = client.patch(f"/gaps/{gap['id']}", json={"status": "closed"})
    assert refused.status_code == 409
    assert refused.json()["error"]["code"] == "stateConflict"

    b = _start(client)
    assert b["firstQuestion"]["topic"] == "dynamic-programming"
    llm.queue_scores(80)
    _answer(client, b["sessionId"], "Break the problem into overlapping subproblems and memoise them.")
    client.post(f"/sessions/{b['sessionId']}/end")
    (gap,) = _gaps(client)["gaps"]
    assert gap["status"] == "in-progress"
    assert gap["severity"] == "low"

    c = _start(client)
    assert c["firstQuestion"]["topic"] == "dynamic-programming"
    llm.queue_scores(78)
    _answer(client, c["sessionId"], "Define the state, the transition and the base cases, then fill a table.")
    client.post(f"/sessions/{c['sessionId']}/end")
    body = _gaps(client)
    (gap,) = body["gaps"]
    assert gap["status"] == "closed"
    assert gap["closedAt"] is not None
    assert body["stats"]["byStatus"] == {"closed": 1}

    closed = client.get("/users/u1/gaps", params={"status": "closed"}).json()
    assert len(closed["gaps"]) == 1


def test_llm_outage_degrades_but_completes(client, engine, llm):
    llm.fail_all = True
    for _ in range(3):
        with pytest.raises(LlmGatewayError):
            engine.gateway.complete(LlmRequest(system_prompt="ping", user_prompt="ping"))
    assert engine.gateway.breaker.state == "open"

    start = _start(client)
    assert start["degraded"] is True
    first = start["firstQuestion"]
    assert first["text"] == QuestionBank().question_text(first["topic"], first["difficulty"], "technical")

    resp = _answer(client, start["sessionId"], "First I would profile the code, then fix the slowest part because it matters most.")
    assert resp.status_code == 200
    body = resp.json()
    assert body["degraded"] is True
    evaluation = body["evaluation"]
    assert evaluation["degraded"] is True
    for value in evaluation["rubricScores"].values():
        assert 40 <= value <= 70

    ended = client.post(f"/sessions/{start['sessionId']}/end").json()
    assert ended["summary"]["status"] == "completed"
    assert ended["degraded"] is True
    assert ended["summary"]["finalEvaluation"]["degraded"] is True


def test_concurrent_submits_are_serialised(client, engine, llm):
    sid = _start(client)["sessionId"]
    gate = llm.hold_evaluations()
    results = {}

    def submit(name, text):
        try:
            results[name] = engine.orchestrator.submit_answer(sid, text)
        except Exception as exc:  # noqa: BLE001
            results[name] = exc

    holder = threading.Thread(target=submit, args=("holder", "Use a queue and a worker pool."))
    holder.start()
    assert llm.entered.wait(timeout=5)

    rival = _answer(client, sid, "Something completely different.")
    assert rival.status_code == 409
    assert rival.json()["error"]["code"] == "stateConflict"

    twin = threading.Thread(target=submit, args=("twin", "Use a queue and a worker pool."))
    twin.start()
    gate.set()
    holder.join(timeout=10)
    twin.join(timeout=10)

    assert results["holder"].type == "nextQuestion"
    assert results["twin"].model_dump() == results["holder"].model_dump()
    assert llm.count("EvaluationDraft") == 1

    session = client.get(f"/sessions/{sid}").json()
    assert len(session["turns"]) == 2
    assert session["state"]["currentTurn"] == 1


def test_early_end_uses_evaluated_turns(client, engine, llm):
    sid = _start(client)["sessionId"]
    llm.queue_scores(72, 64)
    assert _answer(client, sid, "Answer one with some detail.").json()["type"] == "nextQuestion"
    assert _answer(client, sid, "Answer two with other detail.").json()["type"] == "nextQuestion"

    resp = client.post(f"/sessions/{sid}/end")
    assert resp.status_code == 200
    summary = resp.json()["summary"]
    assert summary["status"] == "completed"
    assert summary["finalEvaluation"]["turnsEvaluated"] == 2
    assert summary["finalEvaluation"]["overallScore"] == 68.0
    assert summary["analytics"]["totalTurns"] == 2
    assert engine.store.is_ledger_applied(sid)
    assert client.get("/users/u1/progress/backend").json()["hasProgress"] is True

    late = _answer(client, sid, "A third answer after the end.")
    assert late.status_code == 409
    assert late.json()["error"]["code"] == "stateConflict"

    again = client.post(f"/sessions/{sid}/end")
    assert again.status_code == 200
    assert again.json()["summary"]["finalEvaluation"]["overallScore"] == 68.0


def test_repeated_answer_text_is_recorded_on_each_turn(client, llm):
    sid = _start(client)["sessionId"]
    for _ in range(2):
        resp = _answer(client, sid, "I am not sure.")
        assert resp.status_code == 200
        assert resp.json()["type"] == "nextQuestion"

    session = client.get(f"/sessions/{sid}").json()
    assert session["state"]["currentTurn"] == 2
    assert [t["answer"]["text"] for t in session["turns"][:2]] == ["I am not sure.", "I am not sure."]
    assert session["turns"][2]["answer"] is None

    replay = _answer(client, sid, "I am not sure.", turnIndex=1)
    assert replay.status_code == 200
    assert replay.json()["nextQuestion"] == session["turns"][2]["question"]
    assert llm.count("EvaluationDraft") == 2
