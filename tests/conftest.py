"""Shared test fixtures for the recent-mail test suite."""

from __future__ import annotations

import asyncio
import base64
from datetime import UTC, datetime
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from recent_mail.collector import (
    BodyChunk,
    CollectorEvent,
    FetchEnded,
    FetchError,
    MessageEnded,
    MessageStarted,
)
from recent_mail.config import MailboxConfig, ServiceConfig
from recent_mail.errors import ConnectError
from recent_mail.models import SequenceWindow

FIXED_NOW = datetime(2025, 6, 30, 8, 0, tzinfo=UTC)


@pytest.fixture
def mailbox_config() -> MailboxConfig:
    return MailboxConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser@test.com",
        password="testpass",
        mailbox="INBOX",
        timeout_seconds=5.0,
        max_attempts=2,
        backoff_seconds=0.01,
    )


@pytest.fixture
def unconfigured_mailbox() -> MailboxConfig:
    return MailboxConfig(host="imap.test.com", username="", password="")


@pytest.fixture
def service_config(mailbox_config: MailboxConfig) -> ServiceConfig:
    return ServiceConfig(log_json=False, mailbox=mailbox_config)


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "Alice Example <alice@example.com>",
    to_addr: str = "bob@example.com",
    body: str = "Hello, World!",
    date: str | None = "Mon, 02 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = "<test-001@example.com>"
    if date is not None:
        msg["Date"] = date
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello</p>") -> bytes:
    msg = MIMEText(body_html, "html", "utf-8")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = "Mon, 02 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = "Mon, 02 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def _build_unparsable_base64(text: str) -> bytes:
    """Bytes without a header block that still advertise a base64 body."""
    encoded = base64.encodebytes(text.encode("utf-8")).decode("ascii")
    return (
        "this first line is not a header\r\n"
        "Content-Transfer-Encoding: base64\r\n"
        "\r\n"
        f"{encoded}"
    ).encode("utf-8")


def _email_on_day(day: int, *, subject: str | None = None) -> bytes:
    return _build_plain_email(
        subject=subject or f"Message from June {day}",
        date=f"{day:02d} Jun 2025 09:00:00 +0000",
    )


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def html_eml_bytes() -> bytes:
    return _build_html_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


# ------------------------------------------------------------------
# Scripted IMAP session
# ------------------------------------------------------------------


class FakeSession:
    """Stands in for ImapSession: scripted mailbox, records teardown calls."""

    instances: list[FakeSession] = []

    def __init__(
        self,
        config: MailboxConfig,
        *,
        messages: dict[int, bytes] | None = None,
        open_error: Exception | None = None,
        select_error: Exception | None = None,
        fetch_error: Exception | None = None,
        open_delay: float = 0.0,
    ) -> None:
        self.config = config
        self.messages = messages or {}
        self.open_error = open_error
        self.select_error = select_error
        self.fetch_error = fetch_error
        self.open_delay = open_delay
        self.fetched_windows: list[SequenceWindow] = []
        self.closed = False
        self.aborted = False
        FakeSession.instances.append(self)

    async def open(self) -> None:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error

    async def select_inbox(self) -> int:
        if self.select_error is not None:
            raise self.select_error
        return len(self.messages)

    async def fetch(self, window: SequenceWindow, emit) -> None:
        self.fetched_windows.append(window)
        events: list[CollectorEvent] = []
        for seq in range(window.start, window.end + 1):
            raw = self.messages[seq]
            events += [MessageStarted(seq), BodyChunk(seq, raw), MessageEnded(seq)]
        if self.fetch_error is not None:
            events.append(FetchError(self.fetch_error))
        else:
            events.append(FetchEnded())
        for event in events:
            emit(event)

    async def close(self) -> None:
        self.closed = True

    def abort(self) -> None:
        self.aborted = True


def make_session_factory(**kwargs):
    """Factory for ``session_factory=``; every session shares *kwargs*."""
    FakeSession.instances = []

    def _factory(config: MailboxConfig) -> FakeSession:
        return FakeSession(config, **kwargs)

    return _factory


def connect_refused() -> ConnectError:
    return ConnectError("cannot connect to imap.test.com:993: connection refused")
