"""Scripted chat client for tests and examples."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, List, Optional, Union

from ..errors import LlmError, LlmErrorCode
from .types import ChatMessage, ChatOptions, ChatResponse, StreamChunk, ToolCall

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = "No more mock responses available"


class MockChatClient:
    """Returns queued responses in order and records every request.

    Once the queue is empty a fixed fallback text is returned, so agents
    always terminate.
    """

    def __init__(
        self,
        responses: Optional[List[Union[str, ChatResponse]]] = None,
        fallback: str = FALLBACK_RESPONSE,
    ) -> None:
        self._responses: Deque[ChatResponse] = deque()
        self._failures: Dict[int, LlmError] = {}
        self.fallback = fallback
        self.calls: List[List[ChatMessage]] = []
        self.options: List[Optional[ChatOptions]] = []
        for response in responses or []:
            self.add_response(response)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def remaining(self) -> int:
        return len(self._responses)

    def add_response(self, response: Union[str, ChatResponse]) -> "MockChatClient":
        if isinstance(response, str):
            response = ChatResponse(content=response, finish_reason="stop")
        self._responses.append(response)
        return self

    def add_tool_call(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        call_id: Optional[str] = None,
        content: str = "",
    ) -> "MockChatClient":
        """Queue a response that asks for a single tool call."""
        call = ToolCall(id=call_id or f"call_{uuid.uuid4().hex[:8]}", name=name, arguments=arguments or {})
        self._responses.append(
            ChatResponse(content=content, tool_calls=[call], finish_reason="tool_calls")
        )
        return self

    def fail_on_call(
        self,
        call_number: int,
        code: LlmErrorCode = LlmErrorCode.NETWORK,
        message: str = "Mock network failure",
    ) -> "MockChatClient":
        """Make the ``call_number``-th request (1-based) raise an LlmError."""
        self._failures[call_number] = LlmError(message, code)
        return self

    def _next_response(self, messages: List[ChatMessage], options: Optional[ChatOptions]) -> ChatResponse:
        self.calls.append(list(messages))
        self.options.append(options)
        failure = self._failures.get(self.call_count)
        if failure is not None:
            logger.debug(f"Mock client failing call {self.call_count}")
            raise failure
        if self._responses:
            return self._responses.popleft()
        return ChatResponse(content=self.fallback, finish_reason="stop")

    async def complete(
        self, messages: List[ChatMessage], options: Optional[ChatOptions] = None
    ) -> ChatResponse:
        return self._next_response(messages, options)

    async def complete_streaming(
        self, messages: List[ChatMessage], options: Optional[ChatOptions] = None
    ) -> AsyncIterator[StreamChunk]:
        response = self._next_response(messages, options)
        words = response.content.split(" ")
        for index, word in enumerate(words):
            if not word and index == len(words) - 1:
                continue
            yield StreamChunk(delta=word if index == 0 else f" {word}")
        yield StreamChunk(response=response)
