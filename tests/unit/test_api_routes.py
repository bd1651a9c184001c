from __future__ import annotations


def test_start_requires_known_interview_type(client):
    resp = client.post("/sessions", json={"userId": "u1", "interviewType": "trivia", "targetRole": "SRE"})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "validation"
    assert error["retryable"] is False
    assert "interviewType" in error["message"]


def test_start_rejects_out_of_range_turns(client):
    resp = client.post(
        "/sessions",
        json={"userId": "u1", "interviewType": "technical", "targetRole": "SRE", "maxTurns": 51},
    )
    assert resp.status_code == 400


def test_unknown_session_is_not_found(client):
    resp = client.get("/sessions/ses_missing")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "notFound"

    resp = client.post("/sessions/ses_missing/answers", json={"answer": "hello"})
    assert resp.status_code == 404


def test_empty_answer_is_rejected(client):
    sid = client.post(
        "/sessions", json={"userId": "u1", "interviewType": "behavioral", "targetRole": "Lead"}
    ).json()["sessionId"]
    resp = client.post(f"/sessions/{sid}/answers", json={"answer": ""})
    assert resp.status_code == 400
    resp = client.post(f"/sessions/{sid}/answers", json={"answer": "   "})
    assert resp.status_code == 400


def test_quota_maps_to_429(client, llm):
    llm.statuses.append(429)
    resp = client.post("/sessions", json={"userId": "u1", "interviewType": "technical", "targetRole": "SRE"})
    assert resp.status_code == 429
    body = resp.json()["error"]
    assert body["code"] == "quotaExceeded"
    assert body["retryable"] is True


def test_unknown_resume_reference(client):
    resp = client.post(
        "/sessions",
        json={"userId": "u1", "interviewType": "technical", "targetRole": "SRE", "resumeRef": "res_nope"},
    )
    assert resp.status_code == 404


def test_resume_and_job_description_creation(client):
    resume = client.post("/users/u1/resumes", json={"summary": "Go and SQL", "skills": ["Go", "SQL", "go"]})
    assert resume.status_code == 201
    assert resume.json()["skills"] == ["go", "sql"]
    assert resume.json()["id"].startswith("res_")

    assert client.post("/users/u1/resumes", json={"skills": []}).status_code == 400

    jd = client.post("/users/u1/job-descriptions", json={"title": "Platform Engineer", "requiredSkills": ["Terraform"]})
    assert jd.status_code == 201
    assert jd.json()["requiredSkills"] == ["terraform"]


def test_session_listing(client):
    for role in ("SRE", "Lead"):
        client.post("/sessions", json={"userId": "u9", "interviewType": "mixed", "targetRole": role})
    resp = client.get("/users/u9/sessions")
    assert resp.status_code == 200
    sessions = resp.json()["sessions"]
    assert {s["targetRole"] for s in sessions} == {"SRE", "Lead"}
    assert all(s["status"] == "inProgress" for s in sessions)
    assert client.get("/users/u9/sessions", params={"limit": 1}).json()["sessions"][0]["turns"] == 0


def test_gap_patch_unknown(client):
    resp = client.patch("/gaps/gap_missing", json={"note": "hi"})
    assert resp.status_code == 404


def test_session_document_is_camel_case(client):
    sid = client.post(
        "/sessions", json={"userId": "u1", "interviewType": "systemDesign", "targetRole": "Architect"}
    ).json()["sessionId"]
    body = client.get(f"/sessions/{sid}").json()
    assert body["interviewType"] == "systemDesign"
    assert body["status"] == "inProgress"
    assert body["turns"][0]["question"]["skillTags"]
    assert body["state"]["phase"] == "awaitingAnswer"
