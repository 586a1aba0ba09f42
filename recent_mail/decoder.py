"""Raw RFC 822 bytes → ``ParsedEmail`` with layered fallback.

``MessageDecoder.decode`` walks an ordered tuple of attempts; each returns a
record or ``None`` and the first record wins:

1. structured MIME parse (headers, text/HTML parts, attachment count)
2. raw text (lenient UTF-8), with an advertised base64 block decoded when present
3. a fixed placeholder record

The last attempt cannot fail, so ``decode`` never raises.
"""

from __future__ import annotations

import base64
import binascii
import email
import email.policy
import email.utils
import html
import re
from collections.abc import Callable
from datetime import UTC, datetime
from email.message import EmailMessage

import structlog

from .models import ParsedEmail

logger = structlog.get_logger()

PREVIEW_LIMIT = 100
BODY_LIMIT = 2000
RAW_BODY_LIMIT = 500
ELLIPSIS = "..."

NO_SUBJECT = "(no subject)"
NO_PREVIEW = "(no preview available)"
NO_CONTENT = "(no content)"
UNKNOWN_SENDER = "unknown sender"
UNKNOWN_RECIPIENT = "unknown recipient"
RAW_SUBJECT = "parse failed - showing raw content"
RAW_PREVIEW = "message could not be parsed, showing raw content"
FAILED_SUBJECT = "parse failed"
FAILED_PREVIEW = "message content could not be parsed"
FAILED_BODY = "unable to decode message content"

_BASE64_BLOCK = re.compile(r"base64\s*\r?\n\r?\n([A-Za-z0-9+/=\s]+)")
_WHITESPACE = re.compile(r"\s+")
_SCRIPT_OR_STYLE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_BLOCK_BOUNDARY = re.compile(r"<br\s*/?>|</?(?:p|div)(?:\s[^>]*)?>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]*>")
_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")
_BLANK_LINES = re.compile(r"\n\s*\n")

Attempt = Callable[[int, bytes], ParsedEmail | None]


def truncate(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, appending an ellipsis if anything was cut."""
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def html_to_text(markup: str) -> str:
    """Readable text from an HTML body, one line per block boundary."""
    text = _SCRIPT_OR_STYLE.sub("", markup)
    text = _BLOCK_BOUNDARY.sub("\n", text)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text)
    text = _HORIZONTAL_SPACE.sub(" ", text.replace("\r\n", "\n"))
    text = "\n".join(line.strip() for line in text.split("\n"))
    return _BLANK_LINES.sub("\n", text).strip()


def build_preview(text: str | None, markup: str | None) -> str:
    if text and text.strip():
        flat = text.replace("\r\n", " ").replace("\n", " ")
        return truncate(flat, PREVIEW_LIMIT)
    if markup and markup.strip():
        flat = _ANY_TAG.sub(" ", _SCRIPT_OR_STYLE.sub("", markup))
        flat = _WHITESPACE.sub(" ", html.unescape(flat)).strip()
        return truncate(flat, PREVIEW_LIMIT)
    return NO_PREVIEW


def build_body(text: str | None, markup: str | None) -> str:
    if text and text.strip():
        return truncate(text.replace("\r\n", "\n").strip(), BODY_LIMIT)
    if markup and markup.strip():
        return truncate(html_to_text(markup), BODY_LIMIT)
    return NO_CONTENT


def format_address(header: object | None) -> str:
    """First address of an address header as ``Name <addr>`` or ``addr``."""
    if header is None:
        return ""
    addresses = getattr(header, "addresses", None)
    if addresses:
        first = addresses[0]
        if first.display_name and first.addr_spec:
            return f"{first.display_name} <{first.addr_spec}>"
        if first.addr_spec:
            return first.addr_spec
    pairs = email.utils.getaddresses([str(header)])
    if pairs:
        name, addr = pairs[0]
        if name and addr:
            return f"{name} <{addr}>"
        if addr:
            return addr
    return str(header).strip()


def parse_date(header: object | None) -> datetime | None:
    if header is None:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(str(header))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def extract_bodies(msg: EmailMessage) -> tuple[str | None, str | None]:
    """Walk MIME parts and return the first (plain_text, html_text)."""
    body_text: str | None = None
    body_html: str | None = None

    for part in msg.walk():
        if part.get_content_maintype() == "multipart":
            continue
        if "attachment" in str(part.get("Content-Disposition", "")):
            continue

        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue

        payload = part.get_content()
        if not isinstance(payload, str):
            continue
        if content_type == "text/plain" and body_text is None:
            body_text = payload
        elif content_type == "text/html" and body_html is None:
            body_html = payload

    return body_text, body_html


def count_attachments(msg: EmailMessage) -> int:
    count = 0
    for part in msg.walk():
        if part.get_content_maintype() == "multipart":
            continue
        disposition = str(part.get("Content-Disposition", ""))
        if "attachment" in disposition or part.get_filename():
            count += 1
    return count


class MessageDecoder:
    """Stateless decoder; safe to share between concurrent decodes."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._attempts: tuple[Attempt, ...] = (
            self._decode_structured,
            self._decode_raw_text,
        )

    def decode(self, sequence_number: int, raw_bytes: bytes) -> ParsedEmail:
        for attempt in self._attempts:
            parsed = attempt(sequence_number, raw_bytes)
            if parsed is not None:
                return parsed
        return self.placeholder(sequence_number)

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _decode_structured(self, seq: int, raw_bytes: bytes) -> ParsedEmail | None:
        try:
            msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
            if not msg.keys():
                logger.warning("message_has_no_headers", seq=seq, size=len(raw_bytes))
                return None

            body_text, body_html = extract_bodies(msg)
            subject = str(msg.get("Subject", "")).strip()

            parsed = ParsedEmail(
                id=seq,
                from_address=format_address(msg.get("From")),
                to=format_address(msg.get("To")),
                subject=subject or NO_SUBJECT,
                date=parse_date(msg.get("Date")) or self._clock(),
                preview=build_preview(body_text, body_html),
                body=build_body(body_text, body_html),
                html=body_html or "",
                text=body_text or "",
                attachment_count=count_attachments(msg),
            )
        except Exception as exc:
            logger.warning(
                "message_structured_parse_failed",
                seq=seq,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        logger.debug(
            "message_decoded",
            seq=seq,
            text_length=len(parsed.text),
            html_length=len(parsed.html),
            body_length=len(parsed.body),
        )
        return parsed

    def _decode_raw_text(self, seq: int, raw_bytes: bytes) -> ParsedEmail | None:
        # undecodable bytes become U+FFFD so the readable parts survive
        raw_text = raw_bytes.decode("utf-8", errors="replace")
        try:
            content = self._decode_base64_block(seq, raw_text)
            parsed = ParsedEmail(
                id=seq,
                from_address=UNKNOWN_SENDER,
                to=UNKNOWN_RECIPIENT,
                subject=RAW_SUBJECT,
                date=self._clock(),
                preview=RAW_PREVIEW,
                body=truncate(content, RAW_BODY_LIMIT),
                degraded=True,
            )
        except Exception as exc:
            logger.warning(
                "message_raw_text_failed",
                seq=seq,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        logger.info("message_decode_fallback", seq=seq, stage="raw_text")
        return parsed

    def placeholder(self, seq: int) -> ParsedEmail:
        """Fixed record for a message nothing could be recovered from."""
        logger.warning("message_decode_fallback", seq=seq, stage="placeholder")
        return ParsedEmail(
            id=seq,
            from_address=UNKNOWN_SENDER,
            to=UNKNOWN_RECIPIENT,
            subject=FAILED_SUBJECT,
            date=self._clock(),
            preview=FAILED_PREVIEW,
            body=FAILED_BODY,
            degraded=True,
        )

    @staticmethod
    def _decode_base64_block(seq: int, raw_text: str) -> str:
        """Decoded base64 block advertised in *raw_text*, else *raw_text* itself."""
        match = _BASE64_BLOCK.search(raw_text)
        if match is None:
            return raw_text
        encoded = _WHITESPACE.sub("", match.group(1))
        try:
            decoded = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            logger.warning("message_base64_block_invalid", seq=seq, error=str(exc))
            return raw_text
        return decoded.decode("utf-8", errors="replace")
