from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..errors import RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(
    attempt: int,
    base: float = 0.1,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.1,
) -> float:
    """Compute exponential backoff with jitter.

    The un-jittered delay is ``base * multiplier ** attempt`` capped at
    ``max_delay``; ``jitter`` adds up to that fraction of the delay on top.
    """
    delay = min(base * multiplier ** attempt, max_delay)
    return delay + random.uniform(0, delay * jitter)


class RetryPolicy(BaseModel):
    """Exponential backoff settings. Delays are in seconds."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = 0.1
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def delay_for_attempt(self, attempt: int) -> float:
        return compute_backoff(attempt, self.initial_delay, self.multiplier, self.max_delay, self.jitter)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        should_retry: Optional[Callable[[Exception], bool]] = None,
    ) -> T:
        """Await ``operation`` until it succeeds or attempts run out.

        Errors rejected by ``should_retry`` are raised immediately.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if should_retry is not None and not should_retry(exc):
                    raise
                attempt += 1
                if attempt >= self.max_attempts:
                    raise RetryExhausted(attempt, exc) from exc
                delay = self.delay_for_attempt(attempt - 1)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {exc}. Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
