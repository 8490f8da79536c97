"""
Retry policy wrapping a single fetch attempt.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import ConfigurationError, FetchError, RetryExhausted, ShutdownAborted
from ..utils.timing import sleep_unless_cancelled

T = TypeVar('T')


class RetryPolicy:
    """
    Runs an operation up to `max_retries` times.

    The wait before the next attempt grows linearly with the attempt
    number: attempt x backoff_base seconds.
    """

    def __init__(self, max_retries: int = 3, backoff_base: float = 1.0):
        if max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if backoff_base < 0:
            raise ConfigurationError("backoff_base must be non-negative")

        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.logger = logging.getLogger(__name__)

    def backoff_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return attempt * self.backoff_base

    async def execute(self, job, operation: Callable[..., Awaitable[T]],
                      cancel_event: Optional[asyncio.Event] = None) -> T:
        """
        Run `operation(job)` until it succeeds or attempts run out.

        Only FetchError is retried; `job.attempt` counts the failed attempts.

        Raises:
            RetryExhausted: after `max_retries` failed attempts.
            ShutdownAborted: if `cancel_event` is set before or during a backoff wait.
        """
        last_error: Optional[FetchError] = None

        while job.attempt < self.max_retries:
            if cancel_event is not None and cancel_event.is_set():
                raise ShutdownAborted(job.url, f"Shutdown before attempt {job.attempt + 1} for {job.url}")

            try:
                return await operation(job)
            except FetchError as e:
                last_error = e
                job.attempt += 1
                self.logger.warning(f"Retry {job.attempt}/{self.max_retries} failed for URL {job.url}: {e}")

            if job.attempt >= self.max_retries:
                break

            delay = self.backoff_for(job.attempt)
            if await sleep_unless_cancelled(delay, cancel_event):
                raise ShutdownAborted(job.url, f"Shutdown during retry backoff for {job.url}")

        raise RetryExhausted(job.url, self.max_retries, last_error)
