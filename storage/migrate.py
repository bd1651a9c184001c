"""SQLite schema migrations."""
from __future__ import annotations

import os
import sqlite3
from typing import Iterable

SCHEMA: Iterable[str] = [
    """
CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  status TEXT NOT NULL,
  version INTEGER NOT NULL,
  doc TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
""",
    """
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions (user_id, created_at);
""",
    """
CREATE TABLE IF NOT EXISTS skill_gaps (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  skill TEXT NOT NULL,
  gap_kind TEXT NOT NULL,
  status TEXT NOT NULL,
  severity TEXT NOT NULL,
  doc TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE (user_id, skill, gap_kind)
);
""",
    """
CREATE TABLE IF NOT EXISTS interview_progress (
  user_id TEXT NOT NULL,
  target_role TEXT NOT NULL,
  doc TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  PRIMARY KEY (user_id, target_role)
);
""",
    """
CREATE TABLE IF NOT EXISTS ledger_applications (
  session_id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  applied_at TEXT NOT NULL
);
""",
    """
CREATE TABLE IF NOT EXISTS resumes (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  summary TEXT NOT NULL,
  skills_json TEXT NOT NULL,
  created_at TEXT NOT NULL
);
""",
    """
CREATE TABLE IF NOT EXISTS job_descriptions (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  title TEXT NOT NULL,
  summary TEXT NOT NULL,
  required_json TEXT NOT NULL,
  preferred_json TEXT NOT NULL,
  created_at TEXT NOT NULL
);
""",
]


def migrate(db_path: str = "data/interview.db") -> None:
    """Apply schema migrations to the SQLite database."""

    directory = os.path.dirname(db_path) or "."
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for stmt in SCHEMA:
            cur.execute(stmt)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    migrate()
