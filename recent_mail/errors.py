"""Failure taxonomy of the mailbox fetch pipeline.

The IMAP session and the lifecycle manager raise these;
:class:`~recent_mail.service.RecentMailService` turns every one of them into
a :class:`~recent_mail.models.FetchOutcome`.
"""

from __future__ import annotations


class MailFetchError(Exception):
    """Base class for mailbox fetch failures."""


class ConfigurationMissing(MailFetchError):
    """No mailbox credentials are configured.  Never retried."""


class ConnectError(MailFetchError):
    """The IMAP session could not be opened or authenticated."""


class MailboxError(MailFetchError):
    """The mailbox could not be selected."""


class TransportError(MailFetchError):
    """The connection failed while the fetch was in progress."""


class FetchTimeoutError(MailFetchError):
    """An attempt did not settle within the configured timeout."""
