"""FastAPI application exposing the repoaudit job subsystem."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from repoaudit import __version__
from repoaudit.api import jobs_router
from repoaudit.config import AppConfig, load_config
from repoaudit.db import init_db
from repoaudit.errors import AppError, app_error_handler
from repoaudit.logging import configure_logging, get_logger
from repoaudit.orchestrator.bootstrap import OrchestratorRuntime, bootstrap_orchestrator

logger = get_logger(__name__)


def create_app(
    *,
    config: AppConfig | None = None,
    runtime: OrchestratorRuntime | None = None,
) -> FastAPI:
    """Build the application; ``runtime`` overrides the default orchestrator."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = config or load_config()
        configure_logging(resolved.logging)
        init_db()
        orchestrator = runtime or bootstrap_orchestrator(config=resolved)
        app.state.orchestrator = orchestrator
        await orchestrator.coordinator.start()
        logger.info(
            "repoaudit started",
            extra={
                "event": "app.startup",
                "jobs_enabled": resolved.jobs.enabled,
                "max_concurrent": orchestrator.coordinator.max_concurrent,
            },
        )
        try:
            yield
        finally:
            await orchestrator.coordinator.shutdown()
            logger.info("repoaudit stopped", extra={"event": "app.shutdown"})

    app = FastAPI(title="repoaudit", version=__version__, lifespan=lifespan)
    app.add_exception_handler(AppError, app_error_handler)
    app.include_router(jobs_router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
