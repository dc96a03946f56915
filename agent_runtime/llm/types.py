"""Chat message and chat client contracts."""

from __future__ import annotations

from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """One entry of a conversation."""

    role: Role
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str, name: Optional[str] = None) -> "ChatMessage":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM


class Usage(BaseModel):
    """Token accounting reported by a chat client."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ChatOptions(BaseModel):
    """Per-request options passed to a chat client."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[List[Dict[str, Any]]] = None


class ChatResponse(BaseModel):
    """A completed model turn."""

    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    model: Optional[str] = None


class StreamChunk(BaseModel):
    """Incremental piece of a streamed response.

    Text arrives in ``delta``. The last chunk may carry the complete
    ``response`` with tool calls and usage.
    """

    delta: str = ""
    response: Optional[ChatResponse] = None


@runtime_checkable
class ChatClient(Protocol):
    """Anything that can complete a conversation."""

    async def complete(
        self, messages: List[ChatMessage], options: Optional[ChatOptions] = None
    ) -> ChatResponse:
        ...


@runtime_checkable
class StreamingChatClient(ChatClient, Protocol):
    def complete_streaming(
        self, messages: List[ChatMessage], options: Optional[ChatOptions] = None
    ) -> AsyncIterator[StreamChunk]:
        ...
