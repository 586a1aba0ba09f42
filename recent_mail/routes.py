"""Recent-mail endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from .config import ServiceConfig
from .schemas import MailConfigResponse, MailHealthResponse, RecentMailResponse
from .service import RecentMailService

router = APIRouter(prefix="/api/email", tags=["email"])

CONFIGURED_INSTRUCTIONS = "Mailbox is configured; recent messages can be fetched."
UNCONFIGURED_INSTRUCTIONS = (
    "Mailbox is not configured. Set MAILBOX_USERNAME and MAILBOX_PASSWORD "
    "and restart the service."
)


def get_service(request: Request) -> RecentMailService:
    return request.app.state.service


def get_settings(request: Request) -> ServiceConfig:
    return request.app.state.settings


@router.get("/recent", response_model=RecentMailResponse)
async def recent_messages(
    service: Annotated[RecentMailService, Depends(get_service)],
    settings: Annotated[ServiceConfig, Depends(get_settings)],
    limit: Annotated[int | None, Query(ge=1)] = None,
):
    effective = min(limit or settings.default_limit, settings.max_limit)
    outcome = await service.fetch_recent(effective)
    return RecentMailResponse(
        status=outcome.status,
        count=len(outcome.messages),
        data=outcome.messages,
        config=service.config_status(),
        timestamp=datetime.now(UTC),
    )


@router.get("/config", response_model=MailConfigResponse)
async def mail_config(service: Annotated[RecentMailService, Depends(get_service)]):
    status = service.config_status()
    return MailConfigResponse(
        config=status,
        instructions=CONFIGURED_INSTRUCTIONS if status.configured else UNCONFIGURED_INSTRUCTIONS,
        timestamp=datetime.now(UTC),
    )


@router.get("/health", response_model=MailHealthResponse)
async def mail_health(service: Annotated[RecentMailService, Depends(get_service)]):
    configured = service.config_status().configured
    return MailHealthResponse(
        status="configured" if configured else "unconfigured",
        configured=configured,
        message="Mail service is configured" if configured else "Mail service is not configured",
        timestamp=datetime.now(UTC),
    )
