"""Recent Mail — fetch, decode and join the newest messages of an IMAP inbox."""

from .collector import StreamingMessageCollector
from .config import MailboxConfig, ServiceConfig
from .decoder import MessageDecoder
from .errors import (
    ConfigurationMissing,
    ConnectError,
    FetchTimeoutError,
    MailboxError,
    MailFetchError,
    TransportError,
)
from .imap_client import ImapSession
from .lifecycle import ConnectionLifecycleManager
from .logging import setup_logging
from .models import (
    FetchOutcome,
    FetchRequest,
    FetchState,
    FetchStatus,
    MailboxStatus,
    ParsedEmail,
    SequenceWindow,
)
from .service import RecentMailService

__all__ = [
    "ConfigurationMissing",
    "ConnectError",
    "ConnectionLifecycleManager",
    "FetchOutcome",
    "FetchRequest",
    "FetchState",
    "FetchStatus",
    "FetchTimeoutError",
    "ImapSession",
    "MailFetchError",
    "MailboxConfig",
    "MailboxError",
    "MailboxStatus",
    "MessageDecoder",
    "ParsedEmail",
    "RecentMailService",
    "SequenceWindow",
    "ServiceConfig",
    "StreamingMessageCollector",
    "TransportError",
    "setup_logging",
]
