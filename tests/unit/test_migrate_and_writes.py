"""Tests for the SQLite migration and the interview store."""
from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone

import pytest

from agents.types import Question, SessionState
from interview_session.models import Session, Turn
from services.ledger_models import InterviewProgress, SkillGap
from storage.base import VersionConflict
from storage.interview_store import SqliteInterviewStore
from storage.migrate import migrate
from storage.profiles import ProfileStore

T0 = datetime(2026, 4, 1, 8, 0, tzinfo=timezone.utc)


def _session(session_id: str = "ses_1", user_id: str = "u1") -> Session:
    return Session(
        id=session_id,
        user_id=user_id,
        interview_type="mixed",
        target_role="Engineer",
        state=SessionState(),
        created_at=T0,
    )


def test_migrate_creates_tables(tmp_db: str):
    migrate(tmp_db)
    assert os.path.exists(tmp_db)
    conn = sqlite3.connect(tmp_db)
    try:
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert {"sessions", "skill_gaps", "interview_progress", "ledger_applications", "resumes", "job_descriptions"} <= names


def test_session_round_trip_and_version_check(tmp_db: str):
    store = SqliteInterviewStore(tmp_db)
    created = store.create_session(_session())
    assert created.version == 0

    turn = Turn(index=0, question=Question(text="Why SQL?", topic="sql", difficulty=2), asked_at=T0)
    saved = store.save_session(
        created.model_copy(update={"status": "inProgress", "turns": [turn]}),
        expected_version=0,
    )
    assert saved.version == 1
    loaded = store.load_session("ses_1")
    assert loaded.status == "inProgress"
    assert loaded.turns[0].question.text == "Why SQL?"
    assert loaded.created_at == T0

    with pytest.raises(VersionConflict):
        store.save_session(created, expected_version=0)
    with pytest.raises(KeyError):
        store.save_session(_session("ses_missing"), expected_version=0)
    assert store.load_session("ses_missing") is None


def test_sessions_listed_newest_first(tmp_db: str):
    store = SqliteInterviewStore(tmp_db)
    store.create_session(_session("ses_old"))
    store.create_session(_session("ses_new").model_copy(update={"created_at": T0.replace(hour=9)}))
    store.create_session(_session("ses_other", user_id="u2"))
    ids = [s.id for s in store.list_sessions_by_user("u1")]
    assert ids == ["ses_new", "ses_old"]
    assert [s.id for s in store.list_sessions_by_user("u1", limit=1)] == ["ses_new"]


def test_commit_ledger_writes_once(tmp_db: str):
    store = SqliteInterviewStore(tmp_db)
    gap = SkillGap(id="gap_1", user_id="u1", skill="sql", gap_kind="knowledge", opened_at=T0, updated_at=T0)
    progress = InterviewProgress(user_id="u1", target_role="Engineer", total_sessions=1, updated_at=T0)

    assert store.commit_ledger("ses_1", "u1", [gap], progress)
    assert store.is_ledger_applied("ses_1")

    changed = gap.model_copy(update={"severity": "high"})
    assert not store.commit_ledger("ses_1", "u1", [changed], progress.model_copy(update={"total_sessions": 2}))
    assert store.load_gap("gap_1").severity == "low"
    assert store.load_progress("u1", "Engineer").total_sessions == 1


def test_gap_filters(tmp_db: str):
    store = SqliteInterviewStore(tmp_db)
    store.upsert_gap(SkillGap(id="gap_a", user_id="u1", skill="sql", gap_kind="knowledge"))
    store.upsert_gap(SkillGap(id="gap_b", user_id="u1", skill="graphs", gap_kind="depth", status="closed"))
    assert [g.id for g in store.load_gaps_by_user("u1")] == ["gap_b", "gap_a"]
    assert [g.id for g in store.load_gaps_by_user("u1", status="open")] == ["gap_a"]
    assert [g.id for g in store.load_gaps_by_user("u1", skill="graphs")] == ["gap_b"]

    with pytest.raises(sqlite3.IntegrityError):
        store.upsert_gap(SkillGap(id="gap_c", user_id="u1", skill="sql", gap_kind="knowledge"))


def test_gap_with_other_kind_round_trips(tmp_db: str):
    store = SqliteInterviewStore(tmp_db)
    store.upsert_gap(SkillGap(id="gap_o", user_id="u1", skill="soft-skills", gap_kind="other"))
    loaded = store.load_gap("gap_o")
    assert loaded.gap_kind == "other"
    assert loaded.model_dump(by_alias=True)["gapKind"] == "other"


def test_profiles_are_scoped_to_owner(tmp_db: str):
    profiles = ProfileStore(tmp_db)
    resume = profiles.create_resume("u1", summary=" Backend dev ", skills=["Python", "Binary Search", "python"])
    assert resume.skills == ["python", "binary-search"]
    assert resume.summary == "Backend dev"
    snapshot = profiles.resume_snapshot("u1", resume.id)
    assert snapshot.ref == resume.id
    assert snapshot.skills == ["python", "binary-search"]
    assert profiles.resume_snapshot("u2", resume.id) is None

    jd = profiles.create_job_description(
        "u1",
        title="Backend Engineer",
        summary="APIs",
        required_skills=["Python", "SQL"],
        preferred_skills=["sql", "Kubernetes"],
    )
    assert jd.preferred_skills == ["kubernetes"]
    jd_snapshot = profiles.job_description_snapshot("u1", jd.id)
    assert jd_snapshot.all_skills == ["python", "sql", "kubernetes"]
    assert profiles.job_description_snapshot("u1", "jd_missing") is None
