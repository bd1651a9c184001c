from __future__ import annotations  # Persistence contract used by the engine

from typing import List, Optional, Protocol, Sequence

from interview_session.models import Session
from services.ledger_models import InterviewProgress, SkillGap


class VersionConflict(RuntimeError):  # Compare-and-set lost against a concurrent writer
    def __init__(self, session_id: str, expected: int) -> None:
        super().__init__(f"session {session_id} is no longer at version {expected}")
        self.session_id = session_id
        self.expected = expected


class InterviewStore(Protocol):
    def create_session(self, session: Session) -> Session: ...

    def load_session(self, session_id: str) -> Optional[Session]: ...

    def save_session(self, session: Session, *, expected_version: int) -> Session: ...

    def list_sessions_by_user(self, user_id: str, *, limit: int = 20) -> List[Session]: ...

    def upsert_gap(self, gap: SkillGap) -> None: ...

    def load_gap(self, gap_id: str) -> Optional[SkillGap]: ...

    def load_gaps_by_user(
        self,
        user_id: str,
        *,
        status: Optional[str] = None,
        skill: Optional[str] = None,
    ) -> List[SkillGap]: ...

    def upsert_progress(self, progress: InterviewProgress) -> None: ...

    def load_progress(self, user_id: str, target_role: str) -> Optional[InterviewProgress]: ...

    def is_ledger_applied(self, session_id: str) -> bool: ...

    def commit_ledger(
        self,
        session_id: str,
        user_id: str,
        gaps: Sequence[SkillGap],
        progress: InterviewProgress,
    ) -> bool: ...


__all__ = ["InterviewStore", "VersionConflict"]
