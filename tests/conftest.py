import json
import os
import sys
import tempfile
import threading
import time
from collections import deque
from pathlib import Path
from statistics import mean

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storage.migrate import migrate
from config.settings import settings
from config import DeadlineConfig, EngineConfig, GatewayConfig, LlmRoute


SCHEMA_NAMES = ("FinalEvaluationDraft", "EvaluationDraft", "QuestionDraft")
DIMENSIONS = ("correctness", "depth", "clarity", "structure", "completeness")


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield db_path
    finally:
        td.cleanup()


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("body is not JSON")
        return self._payload

    @property
    def text(self):
        return json.dumps(self._payload) if self._payload is not None else ""


def schema_name(payload):
    system = payload["messages"][0]["content"]
    for name in SCHEMA_NAMES:
        if f'"title": "{name}"' in system:
            return name
    return None


class ScriptedLlm:
    """HttpClient double answering by the response schema named in the system prompt.

    Evaluations score whatever was queued with ``queue_scores`` (default 70);
    a score below 50 reports a knowledge gap unless a kind is given.
    """

    def __init__(self):
        self.calls = []
        self.scores = deque()
        self.default_score = 70.0
        self.raw = deque()
        self.statuses = deque()
        self.failures = 0
        self.timeouts = 0
        self.fail_all = False
        self.delay_s = 0.0
        self.gate = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def queue_scores(self, *items):
        for item in items:
            if isinstance(item, tuple):
                self.scores.append(item)
            else:
                self.scores.append((float(item), "knowledge" if item < 50 else "none"))

    def hold_evaluations(self):
        self.gate = threading.Event()
        self.entered.clear()
        return self.gate

    def count(self, name):
        with self._lock:
            return sum(1 for call in self.calls if schema_name(call) == name)

    def post(self, url, *, json, headers, timeout):
        payload = json
        name = schema_name(payload)
        with self._lock:
            self.calls.append(payload)
            fail = self.fail_all or self.failures > 0
            if self.failures > 0:
                self.failures -= 1
            time_out = not fail and self.timeouts > 0
            if time_out:
                self.timeouts -= 1
            status = self.statuses.popleft() if self.statuses else None
        if self.delay_s:
            time.sleep(self.delay_s)
        if fail:
            raise ConnectionError("connection refused")
        if time_out:
            raise TimeoutError("read timed out")
        if status is not None:
            return FakeResponse(status, {"error": {"message": "scripted failure"}})
        if name == "EvaluationDraft" and self.gate is not None:
            self.entered.set()
            self.gate.wait(timeout=10)
        with self._lock:
            content = self.raw.popleft() if self.raw else self._reply(name, payload)
        return FakeResponse(
            200,
            {"choices": [{"message": {"content": content}}], "usage": {"total_tokens": 42}},
        )

    def _reply(self, name, payload):
        if name == "EvaluationDraft":
            score, kind = self.scores.popleft() if self.scores else (self.default_score, "none")
            return _dumps(
                {
                    "overallScore": score,
                    "rubricScores": {dim: score for dim in DIMENSIONS},
                    "identifiedStrengths": ["Relevant example"] if score >= 50 else [],
                    "identifiedWeaknesses": [] if score >= 55 else ["Misses the core idea"],
                    "detectedGapKind": kind,
                    "needsFollowUp": score < 55,
                    "feedback": f"Scored {score}",
                }
            )
        user = _loads(payload["messages"][1]["content"])
        if name == "FinalEvaluationDraft":
            scores = [t["score"] for t in user.get("turns", []) if t.get("score") is not None]
            return _dumps(
                {
                    "overallScore": round(mean(scores), 1) if scores else 0.0,
                    "strengths": ["Communicates clearly"],
                    "weaknesses": [],
                    "recommendation": "Keep practising at this level.",
                    "topicMasteryDeltas": {},
                }
            )
        topic = user.get("focusTopic", "general")
        return _dumps(
            {
                "text": f"Tell me how {topic} works in practice.",
                "topic": topic,
                "skillTags": [topic],
                "difficulty": user.get("targetDifficulty", 3),
            }
        )


def _dumps(value):
    return json.dumps(value)


def _loads(text):
    return json.loads(text)


def engine_config(**gateway):
    return EngineConfig(
        llm=LlmRoute(
            base_url="http://llm.test",
            endpoint="/v1/chat/completions",
            model="test-model",
            timeout_s=5.0,
        ),
        gateway=GatewayConfig(**{"cache_ttl_s": 0, "max_in_flight": 8, **gateway}),
        deadlines=DeadlineConfig(start_s=10.0, answer_s=10.0, end_s=10.0),
    )


@pytest.fixture
def llm():
    return ScriptedLlm()


@pytest.fixture
def engine(llm, tmp_db):
    from interview_session.engine import build_engine

    eng = build_engine(engine_config(), db_path=tmp_db, client=llm)
    try:
        yield eng
    finally:
        eng.close()


@pytest.fixture
def client(engine):
    from fastapi.testclient import TestClient

    from api_server import create_app

    return TestClient(create_app(engine))
