"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from .config import ServiceConfig
from .service import RecentMailService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    status = app.state.service.config_status()
    logger.info(
        "recent_mail_started",
        configured=status.configured,
        host=status.host,
        port=status.port,
    )
    yield
    logger.info("shutdown_complete")


def create_app(
    settings: ServiceConfig | None = None,
    service: RecentMailService | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = ServiceConfig()
    if service is None:
        service = RecentMailService(settings.mailbox)

    app = FastAPI(
        title="Recent Mail",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    from .routes import router as email_router

    app.include_router(email_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "recent-mail"}

    return app
