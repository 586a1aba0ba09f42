"""Structured logging setup using structlog.

Mailbox credentials pass through several log call sites (connect, status,
retries), so every event goes through :func:`mask_credentials` before it is
rendered.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.typing import EventDict

_SECRET_KEYS = frozenset({"password", "secret", "authorization"})
_USER_KEYS = frozenset({"user", "username"})


def mask_user(user: str) -> str:
    """Mask a mailbox login: first three characters, ``***`` and the domain."""
    if not user:
        return ""
    local, at, domain = user.partition("@")
    return f"{local[:3]}***{at}{domain}"


def mask_credentials(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Redact secrets and mask login names in the event dict."""
    for key in _SECRET_KEYS & event_dict.keys():
        event_dict[key] = "***"
    for key in _USER_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = mask_user(value)
    return event_dict


def bind_fetch_context(limit: int) -> str:
    """Bind a fresh ``fetch_id`` (and the requested limit) to the log context.

    Returns the generated id so callers can echo it if they need to.
    """
    fetch_id = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(fetch_id=fetch_id, limit=limit)
    return fetch_id


def clear_fetch_context() -> None:
    structlog.contextvars.unbind_contextvars("fetch_id", "limit")


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Route structlog and stdlib logging (uvicorn, imaplib callers) through one handler.

    Called once from ``python -m recent_mail`` with ``RECENT_MAIL_LOG_JSON``
    and ``RECENT_MAIL_LOG_LEVEL``.  Every event carries the ``fetch_id`` bound
    by :func:`bind_fetch_context` and passes :func:`mask_credentials`, so the
    mailbox login and password never reach stdout in either renderer.
    *json* picks JSON lines over the development console renderer.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        mask_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
