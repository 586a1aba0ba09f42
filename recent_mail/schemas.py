"""Response schemas of the recent-mail HTTP endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from .models import FetchStatus, MailboxStatus, ParsedEmail


class RecentMailResponse(BaseModel):
    success: bool = True
    status: FetchStatus
    count: int
    data: list[ParsedEmail]
    config: MailboxStatus
    timestamp: datetime


class MailConfigResponse(BaseModel):
    success: bool = True
    config: MailboxStatus
    instructions: str
    timestamp: datetime


class MailHealthResponse(BaseModel):
    success: bool = True
    status: str
    configured: bool
    message: str
    timestamp: datetime
