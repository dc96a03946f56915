from .base import FunctionTool, Tool, ToolResult, ToolStatus
from .loop_detection import (
    ToolCallRecord,
    ToolCallTracker,
    ToolLoopDetectionConfig,
    fingerprint_arguments,
)
from .registry import ToolRegistry

__all__ = [
    "FunctionTool",
    "Tool",
    "ToolCallRecord",
    "ToolCallTracker",
    "ToolLoopDetectionConfig",
    "ToolRegistry",
    "ToolResult",
    "ToolStatus",
    "fingerprint_arguments",
]
