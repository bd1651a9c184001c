"""SQLite-backed store for sessions, skill gaps and progress."""
from __future__ import annotations

import sqlite3
from typing import List, Optional, Sequence

from agents.types import utcnow
from config.settings import settings
from interview_session.models import Session
from services.ledger_models import InterviewProgress, SkillGap

from .base import VersionConflict
from .migrate import migrate
from .sqlite import get_conn, transaction


def _now_iso() -> str:
    return utcnow().isoformat()


class SqliteInterviewStore:
    """Sessions are stored whole as JSON documents with a version counter.

    ``save_session`` is a compare-and-set on that counter; ledger writes for a
    finished session go through :meth:`commit_ledger` in one transaction.
    """

    def __init__(self, db_path: Optional[str] = None, *, auto_migrate: bool = True) -> None:
        self._db_path = db_path
        if auto_migrate:
            migrate(db_path or settings.DB_PATH)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def create_session(self, session: Session) -> Session:
        stamp = _now_iso()
        with get_conn(self._db_path) as conn:
            conn.execute(
                """INSERT INTO sessions (id, user_id, status, version, doc, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.id,
                    session.user_id,
                    session.status,
                    session.version,
                    session.model_dump_json(),
                    session.created_at.isoformat(),
                    stamp,
                ),
            )
        return session

    def load_session(self, session_id: str) -> Optional[Session]:
        with get_conn(self._db_path) as conn:
            row = conn.execute("SELECT doc FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return Session.model_validate_json(row["doc"]) if row else None

    def save_session(self, session: Session, *, expected_version: int) -> Session:
        updated = session.model_copy(update={"version": expected_version + 1})
        with get_conn(self._db_path) as conn:
            cur = conn.execute(
                """UPDATE sessions SET status = ?, version = ?, doc = ?, updated_at = ?
                   WHERE id = ? AND version = ?""",
                (
                    updated.status,
                    updated.version,
                    updated.model_dump_json(),
                    _now_iso(),
                    session.id,
                    expected_version,
                ),
            )
            if cur.rowcount == 1:
                return updated
            exists = conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session.id,)).fetchone()
        if exists is None:
            raise KeyError(session.id)
        raise VersionConflict(session.id, expected_version)

    def list_sessions_by_user(self, user_id: str, *, limit: int = 20) -> List[Session]:
        with get_conn(self._db_path) as conn:
            rows = conn.execute(
                "SELECT doc FROM sessions WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
                (user_id, int(limit)),
            ).fetchall()
        return [Session.model_validate_json(row["doc"]) for row in rows]

    # ------------------------------------------------------------------
    # Skill gaps
    # ------------------------------------------------------------------
    def upsert_gap(self, gap: SkillGap) -> None:
        with get_conn(self._db_path) as conn:
            self._write_gap(conn, gap)

    def load_gap(self, gap_id: str) -> Optional[SkillGap]:
        with get_conn(self._db_path) as conn:
            row = conn.execute("SELECT doc FROM skill_gaps WHERE id = ?", (gap_id,)).fetchone()
        return SkillGap.model_validate_json(row["doc"]) if row else None

    def load_gaps_by_user(
        self,
        user_id: str,
        *,
        status: Optional[str] = None,
        skill: Optional[str] = None,
    ) -> List[SkillGap]:
        query = "SELECT doc FROM skill_gaps WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        if skill is not None:
            query += " AND skill = ?"
            params.append(skill)
        query += " ORDER BY skill, gap_kind"
        with get_conn(self._db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [SkillGap.model_validate_json(row["doc"]) for row in rows]

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def upsert_progress(self, progress: InterviewProgress) -> None:
        with get_conn(self._db_path) as conn:
            self._write_progress(conn, progress)

    def load_progress(self, user_id: str, target_role: str) -> Optional[InterviewProgress]:
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                "SELECT doc FROM interview_progress WHERE user_id = ? AND target_role = ?",
                (user_id, target_role),
            ).fetchone()
        return InterviewProgress.model_validate_json(row["doc"]) if row else None

    # ------------------------------------------------------------------
    # Ledger application
    # ------------------------------------------------------------------
    def is_ledger_applied(self, session_id: str) -> bool:
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM ledger_applications WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return row is not None

    def commit_ledger(
        self,
        session_id: str,
        user_id: str,
        gaps: Sequence[SkillGap],
        progress: InterviewProgress,
    ) -> bool:
        """Write gap and progress updates for ``session_id`` exactly once.

        Returns False (and writes nothing) when the session was already applied.
        """

        with transaction(self._db_path) as conn:
            try:
                conn.execute(
                    "INSERT INTO ledger_applications (session_id, user_id, applied_at) VALUES (?, ?, ?)",
                    (session_id, user_id, _now_iso()),
                )
            except sqlite3.IntegrityError:
                return False
            for gap in gaps:
                self._write_gap(conn, gap)
            self._write_progress(conn, progress)
        return True

    @staticmethod
    def _write_gap(conn: sqlite3.Connection, gap: SkillGap) -> None:
        conn.execute(
            """INSERT INTO skill_gaps (id, user_id, skill, gap_kind, status, severity, doc, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 status = excluded.status,
                 severity = excluded.severity,
                 doc = excluded.doc,
                 updated_at = excluded.updated_at""",
            (
                gap.id,
                gap.user_id,
                gap.skill,
                gap.gap_kind,
                gap.status,
                gap.severity,
                gap.model_dump_json(),
                gap.updated_at.isoformat(),
            ),
        )

    @staticmethod
    def _write_progress(conn: sqlite3.Connection, progress: InterviewProgress) -> None:
        conn.execute(
            """INSERT INTO interview_progress (user_id, target_role, doc, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(user_id, target_role) DO UPDATE SET
                 doc = excluded.doc,
                 updated_at = excluded.updated_at""",
            (
                progress.user_id,
                progress.target_role,
                progress.model_dump_json(),
                progress.updated_at.isoformat(),
            ),
        )


__all__ = ["SqliteInterviewStore"]
