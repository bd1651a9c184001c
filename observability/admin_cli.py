"""Lightweight CLI helpers for inspecting sessions and the skill-gap ledger."""
from __future__ import annotations

import argparse
import sqlite3

from config.settings import settings
from interview_session.models import Session
from services.ledger_models import SkillGap
from storage.migrate import migrate


def tail_sessions(limit: int = 20) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT updated_at, id, user_id, status, version
            FROM sessions
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            ts, session_id, user_id, status, version = row
            print(f"[{ts}] {session_id} user={user_id} status={status} v={version}")
    finally:
        conn.close()


def show_session(session_id: str) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        row = conn.execute("SELECT doc FROM sessions WHERE id = ?", (session_id,)).fetchone()
    finally:
        conn.close()
    if row is None:
        print(f"session {session_id} not found")
        return
    session = Session.model_validate_json(row[0])
    state = session.state
    print(
        f"{session.id} user={session.user_id} type={session.interview_type} role={session.target_role} "
        f"status={session.status} turn={state.current_turn}/{session.max_turns} difficulty={state.difficulty_level}"
    )
    for turn in session.turns:
        q = turn.question
        score = f"{turn.evaluation.overall_score:.1f}" if turn.evaluation else "-"
        gap = turn.evaluation.detected_gap_kind if turn.evaluation else "-"
        marker = " (follow-up)" if q.is_follow_up else ""
        print(f"  #{turn.index} [{q.topic} d{q.difficulty}]{marker} score={score} gap={gap}")
    if session.final_evaluation:
        final = session.final_evaluation
        print(f"  final={final.overall_score:.1f} degraded={final.degraded} weaknesses={final.weaknesses}")


def show_gaps(user_id: str) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        rows = conn.execute(
            "SELECT doc FROM skill_gaps WHERE user_id = ? ORDER BY skill, gap_kind",
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    for (doc,) in rows:
        gap = SkillGap.model_validate_json(doc)
        scores = ",".join(f"{c.score:.0f}" for c in gap.confirmations)
        print(f"{gap.id} {gap.skill}/{gap.gap_kind} {gap.status} severity={gap.severity} scores=[{scores}]")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--migrate", action="store_true", help="Create or upgrade the SQLite schema")
    parser.add_argument("--tail-sessions", type=int, help="Show the most recently updated sessions")
    parser.add_argument("--show-session", help="Print the turns of one session")
    parser.add_argument("--gaps", help="Print the skill gaps of a user")
    args = parser.parse_args()

    if args.migrate:
        migrate(settings.DB_PATH)
    if args.tail_sessions:
        tail_sessions(args.tail_sessions)
    if args.show_session:
        show_session(args.show_session)
    if args.gaps:
        show_gaps(args.gaps)


if __name__ == "__main__":
    main()
