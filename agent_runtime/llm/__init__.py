from .mock import MockChatClient
from .retry import RetryingChatClient
from .types import (
    ChatClient,
    ChatMessage,
    ChatOptions,
    ChatResponse,
    Role,
    StreamChunk,
    StreamingChatClient,
    ToolCall,
    Usage,
)

__all__ = [
    "ChatClient",
    "ChatMessage",
    "ChatOptions",
    "ChatResponse",
    "MockChatClient",
    "RetryingChatClient",
    "Role",
    "StreamChunk",
    "StreamingChatClient",
    "ToolCall",
    "Usage",
]
