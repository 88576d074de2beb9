"""Retry policies built on tenacity.

Both scraping layers back off linearly: the n-th retry waits ``n × delay``.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from pricewatch.core.exceptions import PriceWatchException

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    """Our own exceptions declare ``retryable``; anything else (Playwright, network) is retried."""
    if isinstance(error, PriceWatchException):
        return error.retryable
    return isinstance(error, Exception)


def _log_before_sleep(event: str, **context) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.warning(
            event,
            attempt=retry_state.attempt_number,
            next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error) if error else None,
            **context,
        )

    return _before_sleep


def linear_backoff_retrying(
    attempts: int,
    delay: float,
    sleep: Optional[Sleep] = None,
    event: str = "retrying",
    **context,
) -> AsyncRetrying:
    """Build an AsyncRetrying that makes ``attempts`` tries in total.

    Errors for which ``is_retryable`` is False are re-raised at once.

    Args:
        attempts: Total attempts, including the first one
        delay: Base delay in seconds; attempt n waits n × delay before retrying
        sleep: Sleep coroutine (defaults to asyncio.sleep)
        event: Log event name emitted before each backoff
        **context: Extra key/values bound to the log event
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_incrementing(start=delay, increment=delay),
        retry=retry_if_exception(is_retryable),
        sleep=sleep or asyncio.sleep,
        before_sleep=_log_before_sleep(event, **context),
        reraise=True,
    )
