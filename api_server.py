from __future__ import annotations  # FastAPI server exposing the interview engine

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import install_error_handlers
from api.routes import router
from interview_session.engine import Engine, build_engine


logger = logging.getLogger(__name__)


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """Build the ASGI app; without ``engine`` one is built from settings on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = False
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine()
            owned = True
            logger.info("Interview engine ready (model=%s)", app.state.engine.config.llm.model)
        try:
            yield
        finally:
            if owned:
                app.state.engine.close()
                app.state.engine = None

    app = FastAPI(title="Interview Engine API", lifespan=lifespan)
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
