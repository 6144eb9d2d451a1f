"""
Retry Policy.

Reusable bounded exponential backoff: ``delay(n) = min(base * 2**n, max)``
for retry number ``n`` (0-based).  With the defaults (1 s base, 3 s cap,
3 retries) a persistently failing operation is attempted four times with
waits of 1 s, 2 s and 3 s in between.

Only exceptions listed in ``retry_on`` are retried; anything else, and
the last retryable error once retries are exhausted, propagates.  The
backoff sleep is an ordinary await and is therefore cancellable.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RetryCallback = Callable[[int, float, BaseException], None]


class RetryPolicy:
    """Bounded exponential backoff around an async operation.

    Parameters
    ----------
    max_retries:
        Retries after the first attempt.
    base_delay_s:
        Delay before the first retry.
    max_delay_s:
        Upper bound for any single delay.
    retry_on:
        Exception types that trigger a retry.
    sleep:
        Awaitable sleep; injectable for tests.
    """

    def __init__(
        self,
        max_retries: int,
        base_delay_s: float,
        max_delay_s: float,
        retry_on: tuple[type[BaseException], ...],
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, retry_number: int) -> float:
        """Backoff before retry *retry_number* (0-based)."""
        return min(self.base_delay_s * (2 ** retry_number), self.max_delay_s)

    async def attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        """Run *operation*, retrying on ``retry_on`` errors.

        ``on_retry(retry_number, delay_s, error)`` is called before each
        backoff wait, with ``retry_number`` counting from 1.
        """
        retries = 0
        while True:
            try:
                return await operation()
            except self.retry_on as exc:
                if retries >= self.max_retries:
                    raise
                delay = self.delay_for(retries)
                retries += 1
                if on_retry is not None:
                    on_retry(retries, delay, exc)
                await self._sleep(delay)
