"""Tenacity retry policy for mailbox fetch attempts, driven by MailboxConfig."""

from __future__ import annotations

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .config import MailboxConfig
from .errors import ConnectError, FetchTimeoutError, MailboxError, TransportError

logger = structlog.get_logger()

RETRYABLE_ERRORS = (ConnectError, MailboxError, TransportError, FetchTimeoutError)


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(
        "mail_fetch_attempt_failed",
        attempt=retry_state.attempt_number,
        error=str(error),
        error_type=type(error).__name__,
        retry_in=retry_state.next_action.sleep if retry_state.next_action else None,
    )


def fetch_retrying(
    config: MailboxConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
) -> AsyncRetrying:
    """Return an ``AsyncRetrying`` controller configured from *config*.

    Fixed backoff between attempts; the last failure is re-raised as is.

    Usage::

        async for attempt in fetch_retrying(config):
            with attempt:
                messages = await manager.fetch_window(limit)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(config.max_attempts, 1)),
        wait=wait_fixed(config.backoff_seconds),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
