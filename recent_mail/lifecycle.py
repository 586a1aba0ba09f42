"""ConnectionLifecycleManager — one connect → select → fetch → teardown cycle."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from .collector import FetchError, StreamingMessageCollector
from .config import MailboxConfig
from .decoder import MessageDecoder
from .errors import ConfigurationMissing
from .imap_client import ImapSession
from .models import FetchRequest, FetchState, ParsedEmail, SequenceWindow

logger = structlog.get_logger()


class ConnectionLifecycleManager:
    """Owns the IMAP session of a single fetch attempt.

    :meth:`fetch_window` returns the newest messages or raises
    ``ConnectError``, ``MailboxError`` or ``TransportError``.  Whatever the
    exit path, the session is closed before the call returns; if the call
    is cancelled (the caller's timeout fired) the session is aborted
    instead, so a connection still being established cannot outlive it.
    No retries happen here.
    """

    def __init__(
        self,
        config: MailboxConfig,
        decoder: MessageDecoder | None = None,
        *,
        session_factory: Callable[[MailboxConfig], ImapSession] = ImapSession,
    ) -> None:
        self._config = config
        self._decoder = decoder or MessageDecoder()
        self._session_factory = session_factory
        self._session: ImapSession | None = None
        self._state: FetchState | None = None

    @property
    def state(self) -> FetchState | None:
        return self._state

    def abort(self) -> None:
        """Abort the session of the attempt in progress, if any."""
        if self._session is not None:
            self._session.abort()

    async def fetch_window(self, limit: int) -> list[ParsedEmail]:
        request = FetchRequest(limit=limit)
        if not self._config.configured:
            raise ConfigurationMissing("mailbox username/password are not set")
        session = self._session_factory(self._config)
        self._session = session

        try:
            self._transition(FetchState.CONNECTING)
            await session.open()

            self._transition(FetchState.MAILBOX_OPENING)
            total = await session.select_inbox()
            window = SequenceWindow.for_mailbox(total, request.limit)
            logger.info(
                "mailbox_opened",
                mailbox=self._config.mailbox,
                total=total,
                start=window.start,
                end=window.end,
            )
            if window.is_empty:
                return []

            self._transition(FetchState.FETCHING)
            return await self._collect(session, window)
        except asyncio.CancelledError:
            session.abort()
            raise
        finally:
            if not session.aborted:
                await session.close()
            self._transition(FetchState.SETTLED)

    async def _collect(self, session: ImapSession, window: SequenceWindow) -> list[ParsedEmail]:
        collector = StreamingMessageCollector(self._decoder)
        fetch_task = asyncio.create_task(session.fetch(window, collector.post_threadsafe))

        def _relay_crash(task: asyncio.Task[None]) -> None:
            # fetch() reports protocol failures as events; anything else
            # must still unblock the collector
            if not task.cancelled() and task.exception() is not None:
                collector.post(FetchError(error=task.exception()))

        fetch_task.add_done_callback(_relay_crash)
        try:
            return await collector.collect()
        finally:
            if not fetch_task.done():
                fetch_task.cancel()

    def _transition(self, state: FetchState) -> None:
        self._state = state
        logger.debug("fetch_state", state=state.value)
