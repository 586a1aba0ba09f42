"""One-shot IMAP session wrapping stdlib imaplib with asyncio.to_thread.

A session is opened for a single fetch attempt and never reused.  Besides
the usual ``close()`` it exposes :meth:`ImapSession.abort`, which may be
called from the event loop while a worker thread is still blocked inside
imaplib: it shuts the socket down so the blocked call fails fast, and a
connect that completes after the abort closes itself instead of leaking.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
import threading
from collections.abc import Callable, Iterator

import structlog

from .collector import (
    BodyChunk,
    CollectorEvent,
    FetchEnded,
    FetchError,
    MessageEnded,
    MessageStarted,
)
from .config import MailboxConfig
from .errors import ConnectError, MailboxError, TransportError
from .models import SequenceWindow

logger = structlog.get_logger()

FETCH_ITEMS = "(BODY.PEEK[] BODYSTRUCTURE)"

_SEQUENCE_PREFIX = re.compile(rb"^(\d+) \(")

Emit = Callable[[CollectorEvent], None]


class ImapSession:
    """Read-only IMAP session for one fetch attempt."""

    def __init__(self, config: MailboxConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._lock = threading.Lock()
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def is_open(self) -> bool:
        return self._conn is not None and not self._aborted

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Connect and log in."""
        await asyncio.to_thread(self._open_sync)
        logger.info(
            "imap_connected",
            host=self._config.host,
            port=self._config.port,
            user=self._config.username,
        )

    async def select_inbox(self) -> int:
        """Select the configured mailbox read-only; return its message count."""
        return await asyncio.to_thread(self._select_sync)

    async def fetch(self, window: SequenceWindow, emit: Emit) -> None:
        """Fetch *window* and report it to *emit* as collector events.

        Failures are reported as a ``FetchError`` event, not raised.
        """
        await asyncio.to_thread(self._fetch_sync, window, emit)

    async def close(self) -> None:
        """Log out; errors while logging out are ignored."""
        if self._conn is not None:
            await asyncio.to_thread(self._close_sync)
            logger.info("imap_disconnected", host=self._config.host)

    def abort(self) -> None:
        """Tear the connection down immediately.  Safe from any thread."""
        with self._lock:
            if self._aborted:
                return
            self._aborted = True
            conn, self._conn = self._conn, None
        if conn is not None:
            _shutdown_quietly(conn)
        logger.info("imap_session_aborted", host=self._config.host)

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _open_sync(self) -> None:
        host, port = self._config.host, self._config.port
        try:
            if self._config.use_ssl:
                conn = imaplib.IMAP4_SSL(host, port, timeout=self._config.timeout_seconds)
            else:
                conn = imaplib.IMAP4(host, port, timeout=self._config.timeout_seconds)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ConnectError(f"cannot connect to {host}:{port}: {exc}") from exc

        with self._lock:
            late = self._aborted
            if not late:
                self._conn = conn
        if late:
            _shutdown_quietly(conn)
            raise ConnectError("session aborted while connecting")

        try:
            conn.login(self._config.username, self._config.password.get_secret_value())
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ConnectError(f"login failed: {exc}") from exc

    def _select_sync(self) -> int:
        conn = self._require_conn(MailboxError)
        mailbox = self._config.mailbox
        try:
            status, data = conn.select(mailbox, readonly=True)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise MailboxError(f"cannot open {mailbox}: {exc}") from exc
        if status != "OK":
            raise MailboxError(f"cannot open {mailbox}: {data!r}")
        try:
            return int(data[0])
        except (TypeError, ValueError, IndexError) as exc:
            raise MailboxError(f"unexpected SELECT response for {mailbox}: {data!r}") from exc

    def _fetch_sync(self, window: SequenceWindow, emit: Emit) -> None:
        try:
            conn = self._require_conn(TransportError)
            status, data = conn.fetch(window.imap_range, FETCH_ITEMS)
            if status != "OK":
                raise TransportError(f"FETCH {window.imap_range} failed: {data!r}")

            for seq, body in _literal_bodies(data):
                if self._aborted:
                    return
                emit(MessageStarted(seq=seq))
                for chunk in _chunked(body, self._config.fetch_chunk_size):
                    emit(BodyChunk(seq=seq, data=chunk))
                emit(MessageEnded(seq=seq))
        except (OSError, imaplib.IMAP4.error, TransportError) as exc:
            if not self._aborted:
                emit(FetchError(error=exc))
            return

        if not self._aborted:
            emit(FetchEnded())

    def _close_sync(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
        except (OSError, imaplib.IMAP4.error):
            pass
        try:
            conn.logout()
        except (OSError, imaplib.IMAP4.error):
            _shutdown_quietly(conn)

    def _require_conn(
        self, error: type[MailboxError] | type[TransportError]
    ) -> imaplib.IMAP4:
        conn = self._conn
        if conn is None or self._aborted:
            raise error("IMAP session is not open")
        return conn


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _literal_bodies(data: list) -> Iterator[tuple[int, bytes]]:
    """Yield ``(seq, body)`` for every ``BODY[]`` literal in a FETCH response.

    imaplib returns each literal as a ``(prefix, literal)`` tuple; the
    sequence number leads the first prefix of every message, later
    fragments of the same response do not repeat it.
    """
    current: int | None = None
    for item in data:
        if isinstance(item, tuple):
            prefix, literal = item[0], item[1]
        elif isinstance(item, bytes):
            prefix, literal = item, None
        else:
            continue

        match = _SEQUENCE_PREFIX.match(prefix)
        if match is not None:
            current = int(match.group(1))

        if literal is None or current is None or b"BODY[]" not in prefix.upper():
            continue
        yield current, literal


def _chunked(body: bytes, size: int) -> Iterator[bytes]:
    size = max(size, 1)
    for offset in range(0, len(body), size):
        yield body[offset : offset + size]


def _shutdown_quietly(conn: imaplib.IMAP4) -> None:
    try:
        conn.shutdown()
    except OSError:
        pass
