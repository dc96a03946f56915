from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..errors import OperationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(seconds: Optional[float], operation: str, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable``, raising OperationTimeout after ``seconds``.

    ``None`` waits indefinitely.
    """
    if seconds is None:
        return await awaitable
    start = time.perf_counter()
    try:
        return await asyncio.wait_for(awaitable, seconds)
    except asyncio.TimeoutError as exc:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.warning(f"{operation} timed out after {elapsed_ms}ms")
        raise OperationTimeout(operation, elapsed_ms) from exc


class TimeoutPolicy(BaseModel):
    """Time limits in seconds for one LLM or tool operation.

    ``total`` bounds the whole operation, ``first_response`` bounds the wait
    for the first streamed chunk. ``None`` disables a limit.
    """

    total: Optional[float] = Field(default=300.0, gt=0)
    first_response: Optional[float] = Field(default=30.0, gt=0)

    @classmethod
    def none(cls) -> "TimeoutPolicy":
        return cls(total=None, first_response=None)

    @classmethod
    def quick(cls) -> "TimeoutPolicy":
        return cls(total=30.0, first_response=5.0)

    @classmethod
    def long(cls) -> "TimeoutPolicy":
        return cls(total=600.0, first_response=60.0)

    async def run(self, operation: str, awaitable: Awaitable[T]) -> T:
        return await with_timeout(self.total, operation, awaitable)

    async def first_response_within(self, operation: str, awaitable: Awaitable[T]) -> T:
        return await with_timeout(self.first_response, f"{operation} (first response)", awaitable)
