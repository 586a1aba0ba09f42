"""Data models for the recent-mail pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class FetchRequest:
    """One external request for the newest *limit* messages."""

    limit: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be a positive integer, got {self.limit}")


@dataclass(frozen=True)
class SequenceWindow:
    """Inclusive range of 1-based message sequence numbers to fetch."""

    start: int
    end: int

    @classmethod
    def for_mailbox(cls, total: int, limit: int) -> SequenceWindow:
        """Window covering the newest *limit* of *total* messages.

        An empty mailbox yields ``start > end``.
        """
        return cls(start=max(1, total - limit + 1), end=total)

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    @property
    def size(self) -> int:
        return 0 if self.is_empty else self.end - self.start + 1

    @property
    def imap_range(self) -> str:
        return f"{self.start}:{self.end}"


class FetchState(str, Enum):
    """Lifecycle of a single fetch attempt."""

    CONNECTING = "connecting"
    MAILBOX_OPENING = "mailbox_opening"
    FETCHING = "fetching"
    DRAINING = "draining"
    SETTLED = "settled"


@dataclass
class MessageStream:
    """Body bytes of one in-flight message, in arrival order."""

    sequence_number: int
    chunks: list[bytes] = field(default_factory=list)
    ended: bool = False
    decode_complete: bool = False

    def append(self, data: bytes) -> None:
        self.chunks.append(data)

    @property
    def raw_bytes(self) -> bytes:
        return b"".join(self.chunks)


@dataclass
class PendingState:
    """Join counter for one fetch: decodes in flight and the end-of-fetch flag."""

    pending_decodes: int = 0
    fetch_ended: bool = False

    @property
    def is_complete(self) -> bool:
        return self.fetch_ended and self.pending_decodes == 0


class ParsedEmail(BaseModel):
    """A decoded message as shown by the recent-mail widget.

    Serialise with ``model_dump(mode="json", by_alias=True)`` to get the
    wire keys (``from``, ``attachmentCount``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = Field(description="Mailbox sequence number")
    from_address: str = Field(alias="from", description="Sender, 'Name <addr>' or bare address")
    to: str = Field(description="First recipient, same format as the sender")
    subject: str
    date: datetime = Field(description="Message date (UTC); decode time when unknown")
    preview: str = Field(description="Single-line excerpt, at most 103 characters")
    body: str = Field(description="Readable body text, truncated")
    html: str = ""
    text: str = ""
    attachment_count: int = Field(default=0, alias="attachmentCount")
    degraded: bool = Field(
        default=False,
        description="True when the structured MIME parse failed and a fallback was used",
    )


class FetchStatus(str, Enum):
    """Why a fetch returned the list it did."""

    MESSAGES = "messages"
    EMPTY = "empty"
    UNAVAILABLE = "unavailable"
    NOT_CONFIGURED = "not_configured"


class FetchOutcome(BaseModel):
    """Result of one ``fetch_recent`` call; distinguishes empty from failed."""

    status: FetchStatus
    messages: list[ParsedEmail] = Field(default_factory=list)
    attempts: int = Field(default=0, description="Connection attempts made")
    error: str | None = Field(default=None, description="Last error when unavailable")


class MailboxStatus(BaseModel):
    """Diagnostic view of the mailbox configuration; never exposes secrets."""

    configured: bool
    masked_user: str
    host: str
    port: int
