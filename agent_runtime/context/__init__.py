from .strategies import (
    ContextManager,
    MessageTypeManager,
    NoOpManager,
    SlidingWindowManager,
    SummarizationManager,
    TokenBudgetManager,
    estimate_message_tokens,
    estimate_tokens,
)
from .workflow_context import ContextMetadata, WorkflowContext

__all__ = [
    "ContextManager",
    "ContextMetadata",
    "MessageTypeManager",
    "NoOpManager",
    "SlidingWindowManager",
    "SummarizationManager",
    "TokenBudgetManager",
    "WorkflowContext",
    "estimate_message_tokens",
    "estimate_tokens",
]
