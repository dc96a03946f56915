"""Chat client wrapper that retries transient failures."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import LlmError, RetryExhausted
from ..utils.retry import RetryPolicy
from .types import ChatClient, ChatMessage, ChatOptions, ChatResponse

logger = logging.getLogger(__name__)


def is_retryable(exc: Exception) -> bool:
    return isinstance(exc, LlmError) and exc.retryable


class RetryingChatClient:
    """Retries network, rate-limit and server errors of the wrapped client.

    When every attempt fails the last LlmError is raised again with the
    attempt count in its message, so callers keep seeing an LlmError.
    """

    def __init__(self, client: ChatClient, policy: Optional[RetryPolicy] = None) -> None:
        self.client = client
        self.policy = policy or RetryPolicy()

    async def complete(
        self, messages: List[ChatMessage], options: Optional[ChatOptions] = None
    ) -> ChatResponse:
        try:
            return await self.policy.run(
                lambda: self.client.complete(messages, options), should_retry=is_retryable
            )
        except RetryExhausted as exc:
            last = exc.last_error
            logger.error(f"LLM request failed after {exc.attempts} attempts: {last}")
            if isinstance(last, LlmError):
                raise LlmError(f"{last.message} (after {exc.attempts} attempts)", last.llm_code) from exc
            raise
