"""RecentMailService — the single entry point of the recent-mail pipeline.

Wraps :class:`~recent_mail.lifecycle.ConnectionLifecycleManager` in a
timeout and a bounded retry loop.  Neither public coroutine raises: every
failure ends up as a :class:`~recent_mail.models.FetchOutcome` whose status
tells an empty mailbox apart from an unreachable one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from .config import MailboxConfig
from .decoder import MessageDecoder
from .errors import FetchTimeoutError, MailFetchError
from .lifecycle import ConnectionLifecycleManager
from .logging import bind_fetch_context, clear_fetch_context, mask_user
from .models import FetchOutcome, FetchStatus, MailboxStatus, ParsedEmail
from .retry import fetch_retrying

logger = structlog.get_logger()

NOT_CONFIGURED_USER = "not configured"


class RecentMailService:
    """Fetch the newest messages of one mailbox, on demand.

    Construct once at startup with the mailbox configuration and share the
    instance; it keeps no per-request state, every call opens its own
    session(s).
    """

    def __init__(
        self,
        config: MailboxConfig,
        *,
        decoder: MessageDecoder | None = None,
        manager_factory: Callable[[], ConnectionLifecycleManager] | None = None,
    ) -> None:
        self._config = config
        self._decoder = decoder or MessageDecoder()
        self._manager_factory = manager_factory or self._default_manager

        if config.configured:
            logger.info("mailbox_configured", user=config.username, host=config.host)
        else:
            logger.warning("mailbox_not_configured", host=config.host)

    @property
    def config(self) -> MailboxConfig:
        return self._config

    def config_status(self) -> MailboxStatus:
        configured = self._config.configured
        return MailboxStatus(
            configured=configured,
            masked_user=mask_user(self._config.username) if configured else NOT_CONFIGURED_USER,
            host=self._config.host,
            port=self._config.port,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_recent_messages(self, limit: int) -> list[ParsedEmail]:
        """Newest *limit* messages, newest first; ``[]`` on any failure."""
        outcome = await self.fetch_recent(limit)
        return outcome.messages

    async def fetch_recent(self, limit: int) -> FetchOutcome:
        """Like :meth:`get_recent_messages` but reports why the list is what it is."""
        if not self._config.configured:
            logger.warning("mail_fetch_skipped_not_configured")
            return FetchOutcome(status=FetchStatus.NOT_CONFIGURED)
        if limit < 1:
            logger.warning("mail_fetch_skipped_invalid_limit", requested=limit)
            return FetchOutcome(status=FetchStatus.EMPTY)

        bind_fetch_context(limit)
        try:
            return await self._fetch_with_retry(limit)
        finally:
            clear_fetch_context()

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _fetch_with_retry(self, limit: int) -> FetchOutcome:
        attempts = 0
        messages: list[ParsedEmail] = []
        try:
            async for attempt in fetch_retrying(self._config):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    messages = await self._attempt(limit, attempts)
        except MailFetchError as exc:
            logger.error("mail_fetch_unavailable", attempts=attempts, error=str(exc))
            return FetchOutcome(status=FetchStatus.UNAVAILABLE, attempts=attempts, error=str(exc))
        except Exception as exc:
            logger.exception("mail_fetch_crashed", attempts=attempts)
            return FetchOutcome(status=FetchStatus.UNAVAILABLE, attempts=attempts, error=str(exc))

        status = FetchStatus.MESSAGES if messages else FetchStatus.EMPTY
        logger.info("mail_fetch_succeeded", count=len(messages), attempts=attempts)
        return FetchOutcome(status=status, messages=messages, attempts=attempts)

    async def _attempt(self, limit: int, attempt_number: int) -> list[ParsedEmail]:
        manager = self._manager_factory()
        timeout = self._config.timeout_seconds
        logger.info(
            "mail_fetch_attempt",
            attempt=attempt_number,
            max_attempts=self._config.max_attempts,
        )
        try:
            async with asyncio.timeout(timeout):
                return await manager.fetch_window(limit)
        except TimeoutError as exc:
            # cancellation already aborted the session; make sure of it
            manager.abort()
            raise FetchTimeoutError(f"no response from mailbox within {timeout}s") from exc

    def _default_manager(self) -> ConnectionLifecycleManager:
        return ConnectionLifecycleManager(self._config, self._decoder)
