"""Recent-mail configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class MailboxConfig(BaseSettings):
    """IMAP mailbox settings plus the retry policy of one fetch request."""

    model_config = {"env_prefix": "MAILBOX_"}

    host: str = Field(default="imap.qq.com", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(default="", description="IMAP login username")
    password: SecretStr = Field(
        default=SecretStr(""),
        description="IMAP login password (or app authorization code)",
    )
    mailbox: str = Field(default="INBOX", description="IMAP mailbox to read from")
    timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for one connect-and-fetch attempt",
    )
    max_attempts: int = Field(default=2, description="Fetch attempts per request")
    backoff_seconds: float = Field(
        default=1.0,
        description="Fixed wait between failed attempts",
    )
    fetch_chunk_size: int = Field(
        default=64 * 1024,
        description="Bytes per body chunk handed to the collector",
    )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password.get_secret_value())


class ServiceConfig(BaseSettings):
    """Top-level settings for the recent-mail HTTP service.

    All env vars are prefixed with ``RECENT_MAIL_``; the nested mailbox
    settings keep their own ``MAILBOX_`` prefix.
    """

    model_config = {"env_prefix": "RECENT_MAIL_"}

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8081, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )
    default_limit: int = Field(default=3, description="Messages returned when no limit is given")
    max_limit: int = Field(default=50, description="Largest limit a caller may request")

    mailbox: MailboxConfig = Field(default_factory=MailboxConfig)
