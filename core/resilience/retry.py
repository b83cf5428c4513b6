"""
Bounded retry with exponential backoff.

Retries a coroutine only for the exception types it is told are transient.
Anything else propagates on the first raise; a transient error that is
still failing after the last attempt propagates too, never swallowed.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class RetryPolicy:
    """
    Retry budget for transient failures.

    Usage::

        policy = RetryPolicy(max_attempts=3, backoff_base=0.05,
                             retry_on=(StockUpdateConflict,))
        await policy.call(ledger.decrement, session, edition_id)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 0.05,
        backoff_max: float = 1.0,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        on_retry: Optional[Callable[[int, BaseException], Any]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.retry_on = retry_on
        self.on_retry = on_retry

    def backoff(self, attempt: int) -> float:
        """Delay after the given (0-based) failed attempt."""
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await func(*args, **kwargs), retrying transient errors."""
        for attempt in range(self.max_attempts):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt + 1 >= self.max_attempts:
                    raise
                delay = self.backoff(attempt)
                logger.debug(
                    "retry.scheduled",
                    attempt=attempt + 1,
                    delay=delay,
                    error=type(e).__name__,
                )
                if self.on_retry:
                    self.on_retry(attempt + 1, e)
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")
