"""FastAPI application entry point.

Run with ``uvicorn src.mediagen.main:create_app --factory``.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI

from .config import AppConfig, load_config
from .lifecycle import start_generation_dispatcher, stop_generation_dispatcher
from .logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build FastAPI instance hosting the generation dispatcher."""
    configure_logging()
    cfg = config or load_config()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "disable_dispatcher", False):
            logger.info("Dispatcher startup skipped: disabled via app state")
            yield
            return
        app.state.dispatcher = start_generation_dispatcher(cfg)
        try:
            yield
        finally:
            await stop_generation_dispatcher(app.state.dispatcher)
            app.state.dispatcher = None

    app = FastAPI(title="mediagen", lifespan=lifespan)
    app.state.config = cfg
    app.state.dispatcher = None

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        dispatcher = app.state.dispatcher
        return {
            "status": "ok",
            "in_flight": dispatcher.in_flight if dispatcher is not None else 0,
        }

    return app


__all__ = ["create_app"]
