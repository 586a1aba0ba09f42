"""StreamingMessageCollector — turns the event stream of one FETCH into a
sorted list of ``ParsedEmail``.

All events (from the transport thread and from finished decodes) go through
one ``asyncio.Queue`` read by :meth:`StreamingMessageCollector.collect`.
That reader is the only code touching ``PendingState``, so the join of
"fetch ended" and "every decode finished" needs no locking and holds for any
interleaving of the two.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from .decoder import MessageDecoder
from .errors import TransportError
from .models import FetchState, MessageStream, ParsedEmail, PendingState

logger = structlog.get_logger()


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class MessageStarted:
    seq: int


@dataclass(frozen=True)
class BodyChunk:
    seq: int
    data: bytes


@dataclass(frozen=True)
class MessageEnded:
    seq: int


@dataclass(frozen=True)
class FetchEnded:
    pass


@dataclass(frozen=True)
class FetchError:
    error: BaseException


@dataclass(frozen=True)
class DecodeCompleted:
    seq: int
    email: ParsedEmail


CollectorEvent = MessageStarted | BodyChunk | MessageEnded | FetchEnded | FetchError | DecodeCompleted


def sort_newest_first(emails: list[ParsedEmail]) -> list[ParsedEmail]:
    """Date descending; equal dates keep sequence-number order."""
    return sorted(emails, key=lambda e: (-e.date.timestamp(), e.id))


class StreamingMessageCollector:
    """Accumulates message bodies, decodes them concurrently, joins the results.

    Create it inside the running event loop.  Feed events with :meth:`post`
    (event-loop side) or :meth:`post_threadsafe` (transport thread), and
    await :meth:`collect` for the result.  *on_complete* is called exactly
    once with the final list when the fetch succeeds.
    """

    def __init__(
        self,
        decoder: MessageDecoder,
        *,
        on_complete: Callable[[list[ParsedEmail]], None] | None = None,
    ) -> None:
        self._decoder = decoder
        self._on_complete = on_complete
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[CollectorEvent] = asyncio.Queue()
        self._streams: dict[int, MessageStream] = {}
        self._pending = PendingState()
        self._results: list[ParsedEmail] = []
        self._decode_tasks: set[asyncio.Task[None]] = set()
        self._error: BaseException | None = None
        self._state = FetchState.FETCHING

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def pending_decodes(self) -> int:
        return self._pending.pending_decodes

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def post(self, event: CollectorEvent) -> None:
        self._queue.put_nowait(event)

    def post_threadsafe(self, event: CollectorEvent) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def collect(self) -> list[ParsedEmail]:
        """Process events until the fetch settles.

        Raises :class:`TransportError` if a ``FetchError`` event arrives
        first; in-flight decodes are cancelled rather than awaited.
        """
        try:
            while self._state is not FetchState.SETTLED:
                event = await self._queue.get()
                self._handle(event)
        finally:
            self._cancel_decodes()

        if self._error is not None:
            raise TransportError(str(self._error) or type(self._error).__name__) from self._error
        return self._results

    def _handle(self, event: CollectorEvent) -> None:
        if isinstance(event, MessageStarted):
            self._on_message_started(event.seq)
        elif isinstance(event, BodyChunk):
            self._on_body_chunk(event.seq, event.data)
        elif isinstance(event, MessageEnded):
            self._on_message_ended(event.seq)
        elif isinstance(event, DecodeCompleted):
            self._on_decode_completed(event.seq, event.email)
        elif isinstance(event, FetchEnded):
            self._on_fetch_ended()
        elif isinstance(event, FetchError):
            self._on_fetch_error(event.error)

    def _on_message_started(self, seq: int) -> None:
        if seq in self._streams:
            logger.warning("message_started_twice", seq=seq)
            return
        self._streams[seq] = MessageStream(sequence_number=seq)

    def _on_body_chunk(self, seq: int, data: bytes) -> None:
        stream = self._streams.get(seq)
        if stream is None:
            # body before its start marker; start the stream implicitly
            stream = self._streams[seq] = MessageStream(sequence_number=seq)
        if stream.ended:
            logger.warning("body_chunk_after_message_end", seq=seq, size=len(data))
            return
        stream.append(data)

    def _on_message_ended(self, seq: int) -> None:
        stream = self._streams.get(seq)
        if stream is None:
            stream = self._streams[seq] = MessageStream(sequence_number=seq)
        if stream.ended:
            logger.warning("message_ended_twice", seq=seq)
            return
        stream.ended = True
        raw_bytes = stream.raw_bytes
        stream.chunks.clear()

        self._pending.pending_decodes += 1
        task = asyncio.create_task(self._decode(seq, raw_bytes))
        self._decode_tasks.add(task)
        task.add_done_callback(self._decode_tasks.discard)

    def _on_decode_completed(self, seq: int, email: ParsedEmail) -> None:
        stream = self._streams.get(seq)
        if stream is not None:
            stream.decode_complete = True
        self._results.append(email)
        self._pending.pending_decodes -= 1
        self._check_complete()

    def _on_fetch_ended(self) -> None:
        self._pending.fetch_ended = True
        self._state = FetchState.DRAINING
        logger.debug("fetch_ended", pending_decodes=self._pending.pending_decodes)
        self._check_complete()

    def _on_fetch_error(self, error: BaseException) -> None:
        logger.warning(
            "fetch_error",
            error=str(error),
            pending_decodes=self._pending.pending_decodes,
            received=len(self._results),
        )
        self._error = error
        self._streams.clear()
        self._results.clear()
        self._state = FetchState.SETTLED

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _check_complete(self) -> None:
        if self._state is FetchState.SETTLED or not self._pending.is_complete:
            return

        unfinished = [s.sequence_number for s in self._streams.values() if not s.ended]
        if unfinished:
            logger.warning("message_streams_never_ended", seqs=unfinished)

        self._results = sort_newest_first(self._results)
        self._state = FetchState.SETTLED
        logger.info("fetch_collected", count=len(self._results))
        if self._on_complete is not None:
            self._on_complete(self._results)

    async def _decode(self, seq: int, raw_bytes: bytes) -> None:
        try:
            parsed = await asyncio.to_thread(self._decoder.decode, seq, raw_bytes)
        except Exception:
            # a crashed decode still has to settle its pending count
            logger.exception("message_decode_crashed", seq=seq)
            parsed = self._decoder.placeholder(seq)
        self.post(DecodeCompleted(seq=seq, email=parsed))

    def _cancel_decodes(self) -> None:
        for task in list(self._decode_tasks):
            task.cancel()
