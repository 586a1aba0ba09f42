"""Tests for recent_mail.lifecycle."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import (
    FIXED_NOW,
    FakeSession,
    _email_on_day,
    connect_refused,
    make_session_factory,
)

from recent_mail.config import MailboxConfig
from recent_mail.decoder import MessageDecoder
from recent_mail.errors import (
    ConfigurationMissing,
    ConnectError,
    MailboxError,
    TransportError,
)
from recent_mail.lifecycle import ConnectionLifecycleManager
from recent_mail.models import FetchState, SequenceWindow


def _manager(config: MailboxConfig, **session_kwargs) -> ConnectionLifecycleManager:
    return ConnectionLifecycleManager(
        config,
        MessageDecoder(clock=lambda: FIXED_NOW),
        session_factory=make_session_factory(**session_kwargs),
    )


def _mailbox(*days: int) -> dict[int, bytes]:
    """Sequence numbers 1..n holding messages dated on *days*, in order."""
    return {seq: _email_on_day(day) for seq, day in enumerate(days, start=1)}


class TestFetchWindow:
    @pytest.mark.asyncio
    async def test_newest_three_of_five(self, mailbox_config: MailboxConfig):
        manager = _manager(mailbox_config, messages=_mailbox(1, 2, 3, 4, 5))

        result = await manager.fetch_window(3)

        session = FakeSession.instances[0]
        assert session.fetched_windows == [SequenceWindow(3, 5)]
        assert [e.id for e in result] == [5, 4, 3]
        assert session.closed
        assert manager.state is FetchState.SETTLED

    @pytest.mark.asyncio
    async def test_sorted_by_date_not_sequence(self, mailbox_config: MailboxConfig):
        # arrival order and Date headers disagree
        manager = _manager(mailbox_config, messages=_mailbox(9, 20, 3, 15))

        result = await manager.fetch_window(4)

        assert [e.id for e in result] == [2, 4, 1, 3]

    @pytest.mark.asyncio
    async def test_limit_larger_than_mailbox(self, mailbox_config: MailboxConfig):
        manager = _manager(mailbox_config, messages=_mailbox(1, 2))

        result = await manager.fetch_window(10)

        assert FakeSession.instances[0].fetched_windows == [SequenceWindow(1, 2)]
        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_empty_mailbox_skips_fetch(self, mailbox_config: MailboxConfig):
        manager = _manager(mailbox_config, messages={})

        assert await manager.fetch_window(3) == []

        session = FakeSession.instances[0]
        assert session.fetched_windows == []
        assert session.closed

    @pytest.mark.asyncio
    async def test_unconfigured_mailbox(self, unconfigured_mailbox: MailboxConfig):
        manager = _manager(unconfigured_mailbox)
        with pytest.raises(ConfigurationMissing):
            await manager.fetch_window(3)
        assert FakeSession.instances == []


class TestFetchWindowFailures:
    @pytest.mark.asyncio
    async def test_connect_failure(self, mailbox_config: MailboxConfig):
        manager = _manager(mailbox_config, open_error=connect_refused())
        with pytest.raises(ConnectError):
            await manager.fetch_window(3)
        assert FakeSession.instances[0].closed
        assert manager.state is FetchState.SETTLED

    @pytest.mark.asyncio
    async def test_mailbox_failure(self, mailbox_config: MailboxConfig):
        manager = _manager(
            mailbox_config,
            messages=_mailbox(1),
            select_error=MailboxError("cannot open INBOX"),
        )
        with pytest.raises(MailboxError):
            await manager.fetch_window(3)
        assert FakeSession.instances[0].closed

    @pytest.mark.asyncio
    async def test_transport_failure_during_fetch(self, mailbox_config: MailboxConfig):
        manager = _manager(
            mailbox_config,
            messages=_mailbox(1, 2, 3),
            fetch_error=OSError("connection reset by peer"),
        )
        with pytest.raises(TransportError, match="connection reset"):
            await manager.fetch_window(3)
        assert FakeSession.instances[0].closed

    @pytest.mark.asyncio
    async def test_crash_inside_fetch_is_reported(self, mailbox_config: MailboxConfig):
        class CrashingSession(FakeSession):
            async def fetch(self, window, emit):
                raise RuntimeError("worker died")

        manager = ConnectionLifecycleManager(
            mailbox_config,
            MessageDecoder(clock=lambda: FIXED_NOW),
            session_factory=lambda cfg: CrashingSession(cfg, messages=_mailbox(1)),
        )
        with pytest.raises(TransportError, match="worker died"):
            await manager.fetch_window(1)

    @pytest.mark.asyncio
    async def test_cancellation_aborts_session(self, mailbox_config: MailboxConfig):
        manager = _manager(mailbox_config, messages=_mailbox(1), open_delay=5.0)

        task = asyncio.create_task(manager.fetch_window(3))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        session = FakeSession.instances[0]
        assert session.aborted
        assert not session.closed
        assert manager.state is FetchState.SETTLED

    @pytest.mark.asyncio
    async def test_abort_without_session_is_noop(self, mailbox_config: MailboxConfig):
        _manager(mailbox_config).abort()
