"""agent_runtime: event-driven workflow runtime for AI agents."""

from .agent import Agent, AgentConfig, AgentInput, AgentOutput
from .cancellation import CancellationToken
from .config import RuntimeConfig, configure_logging, load_config
from .context import (
    MessageTypeManager,
    NoOpManager,
    SlidingWindowManager,
    SummarizationManager,
    TokenBudgetManager,
    WorkflowContext,
)
from .events import Event, EventBus, EventScope, EventType, get_event_bus
from .llm import ChatMessage, MockChatClient, RetryingChatClient
from .runtime import Runtime
from .steps import AgentStep, ConditionalStep, SubWorkflowStep, TransformStep
from .tools import FunctionTool, ToolLoopDetectionConfig, ToolRegistry, ToolResult
from .workflow import Workflow, WorkflowBuilder, WorkflowRun, WorkflowState

__version__ = "0.1.0"
__all__ = [
    "Agent",
    "AgentConfig",
    "AgentInput",
    "AgentOutput",
    "AgentStep",
    "CancellationToken",
    "ChatMessage",
    "ConditionalStep",
    "Event",
    "EventBus",
    "EventScope",
    "EventType",
    "FunctionTool",
    "MessageTypeManager",
    "MockChatClient",
    "NoOpManager",
    "RetryingChatClient",
    "Runtime",
    "RuntimeConfig",
    "SlidingWindowManager",
    "SubWorkflowStep",
    "SummarizationManager",
    "TokenBudgetManager",
    "ToolLoopDetectionConfig",
    "ToolRegistry",
    "ToolResult",
    "TransformStep",
    "Workflow",
    "WorkflowBuilder",
    "WorkflowContext",
    "WorkflowRun",
    "WorkflowState",
    "configure_logging",
    "get_event_bus",
    "load_config",
]
