from __future__ import annotations  # Resume and job-description storage helpers

import json
from typing import List, Optional
from uuid import uuid4

from agents.types import CamelModel, JobDescriptionSnapshot, ResumeSnapshot, normalize_skills, utcnow
from config.settings import settings

from .migrate import migrate
from .sqlite import get_conn


class ResumeRecord(CamelModel):  # Stored resume entry
    id: str
    user_id: str
    summary: str
    skills: List[str]
    created_at: str


class JobDescriptionRecord(CamelModel):  # Stored job description entry
    id: str
    user_id: str
    title: str
    summary: str
    required_skills: List[str]
    preferred_skills: List[str]
    created_at: str


class ProfileStore:  # SQLite-backed resume and JD storage
    def __init__(self, db_path: Optional[str] = None, *, auto_migrate: bool = True) -> None:
        self._db_path = db_path
        if auto_migrate:
            migrate(db_path or settings.DB_PATH)

    def create_resume(self, user_id: str, *, summary: str, skills: List[str]) -> ResumeRecord:
        record = ResumeRecord(
            id=f"res_{uuid4().hex[:12]}",
            user_id=user_id,
            summary=summary.strip(),
            skills=normalize_skills(skills),
            created_at=utcnow().isoformat(),
        )
        with get_conn(self._db_path) as conn:
            conn.execute(
                "INSERT INTO resumes (id, user_id, summary, skills_json, created_at) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.user_id, record.summary, json.dumps(record.skills), record.created_at),
            )
        return record

    def create_job_description(
        self,
        user_id: str,
        *,
        title: str,
        summary: str,
        required_skills: List[str],
        preferred_skills: List[str],
    ) -> JobDescriptionRecord:
        required = normalize_skills(required_skills)
        record = JobDescriptionRecord(
            id=f"jd_{uuid4().hex[:12]}",
            user_id=user_id,
            title=title.strip(),
            summary=summary.strip(),
            required_skills=required,
            preferred_skills=[s for s in normalize_skills(preferred_skills) if s not in required],
            created_at=utcnow().isoformat(),
        )
        with get_conn(self._db_path) as conn:
            conn.execute(
                """INSERT INTO job_descriptions
                   (id, user_id, title, summary, required_json, preferred_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.user_id,
                    record.title,
                    record.summary,
                    json.dumps(record.required_skills),
                    json.dumps(record.preferred_skills),
                    record.created_at,
                ),
            )
        return record

    def resume_snapshot(self, user_id: str, resume_id: str) -> Optional[ResumeSnapshot]:  # None when missing or foreign
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                "SELECT id, summary, skills_json FROM resumes WHERE id = ? AND user_id = ?",
                (resume_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return ResumeSnapshot(ref=row["id"], summary=row["summary"], skills=json.loads(row["skills_json"]))

    def job_description_snapshot(self, user_id: str, jd_id: str) -> Optional[JobDescriptionSnapshot]:
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                """SELECT id, title, summary, required_json, preferred_json
                   FROM job_descriptions WHERE id = ? AND user_id = ?""",
                (jd_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return JobDescriptionSnapshot(
            ref=row["id"],
            title=row["title"],
            summary=row["summary"],
            required_skills=json.loads(row["required_json"]),
            preferred_skills=json.loads(row["preferred_json"]),
        )


__all__ = ["JobDescriptionRecord", "ProfileStore", "ResumeRecord"]
