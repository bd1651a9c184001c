from __future__ import annotations  # Wiring of stores, gateway and agents into one engine

from datetime import datetime
from typing import Callable, Optional

from agents.finalizer import SessionFinalizer
from agents.question_bank import QuestionBank
from agents.question_selector import QuestionSelector
from agents.response_evaluator import ResponseEvaluator
from agents.types import utcnow
from config import EngineConfig, build_engine_config
from interview_session.orchestrator import SessionOrchestrator
from llm_gateway import HttpClient, LlmGateway
from services.skill_gaps import SkillGapLedger
from storage.interview_store import SqliteInterviewStore
from storage.profiles import ProfileStore


class Engine:  # Process-wide container handed to the API layer
    def __init__(
        self,
        *,
        config: EngineConfig,
        store: SqliteInterviewStore,
        profiles: ProfileStore,
        gateway: LlmGateway,
        bank: Optional[QuestionBank] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.profiles = profiles
        self.gateway = gateway
        self.ledger = SkillGapLedger(store, clock=clock)
        self.orchestrator = SessionOrchestrator(
            store=store,
            profiles=profiles,
            selector=QuestionSelector(gateway, bank),
            evaluator=ResponseEvaluator(gateway),
            finalizer=SessionFinalizer(gateway),
            ledger=self.ledger,
            session_config=config.session,
            deadlines=config.deadlines,
            clock=clock,
        )

    def close(self) -> None:
        self.gateway.close()


def build_engine(
    config: Optional[EngineConfig] = None,
    *,
    db_path: Optional[str] = None,
    client: Optional[HttpClient] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Engine:
    """Build an engine from settings; ``client`` replaces the HTTP transport (tests)."""

    cfg = config or build_engine_config()
    return Engine(
        config=cfg,
        store=SqliteInterviewStore(db_path),
        profiles=ProfileStore(db_path),
        gateway=LlmGateway(cfg.llm, cfg.gateway, client=client),
        clock=clock,
    )


__all__ = ["Engine", "build_engine"]
