"""
Async retry wrapper for ledger and oracle calls.

Transient failures (timeouts, connection errors, 429/5xx surfaced as the
`retry_on` exception types) are retried with exponential backoff:
base_delay, 2*base_delay, 4*base_delay, ...

Anything not listed in `retry_on` propagates immediately, so an oracle
"unauthorized" answer is never retried.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from vaultview import config
from vaultview.api.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when a call still fails after all retries."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    description: str = "Call",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_attempt: Optional[Callable[[int, str], None]] = None,
) -> T:
    """
    Await `fn()` with retries.

    Args:
        fn: Zero-arg coroutine factory (a fresh coroutine per attempt)
        max_retries: Attempts in total (default: config.MAX_RETRIES)
        base_delay: First backoff in seconds (default: config.RETRY_BASE_DELAY_SEC)
        description: Human-readable label for logs
        retry_on: Exception types considered transient
        on_attempt: Optional callback (attempt_num, status_msg)

    Raises:
        RetryExhausted: every attempt failed with a transient error
    """
    attempts = max(1, int(config.MAX_RETRIES if max_retries is None else max_retries))
    delay0 = float(config.RETRY_BASE_DELAY_SEC if base_delay is None else base_delay)
    last_error: Optional[BaseException] = None

    for attempt in range(attempts):
        status_msg = f"{description} (attempt {attempt + 1}/{attempts})"
        logger.debug(status_msg)
        if on_attempt:
            on_attempt(attempt + 1, status_msg)
        try:
            return await fn()
        except retry_on as e:
            last_error = e
            if attempt == attempts - 1:
                break
            wait = delay0 * (2 ** attempt)
            logger.warning(f"{description} failed: {e}; retrying in {wait:.2f}s")
            await asyncio.sleep(wait)

    raise RetryExhausted(
        f"{description} failed after {attempts} attempts. Last error: {last_error}",
        last_error,
    )


__all__ = ["call_with_retry", "RetryExhausted"]
