"""Named collection of tools available to an agent."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..errors import ToolError, ToolErrorCode
from .base import FunctionTool, Tool, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool names to tools and runs them."""

    def __init__(self, tools: Optional[List[Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> Tool:
        """Add ``tool``. A tool with the same name is replaced."""
        if not tool.name:
            raise ValueError("Tool name must be a non-empty string")
        if tool.name in self._tools:
            logger.warning(f"Replacing tool {tool.name}")
        self._tools[tool.name] = tool
        return tool

    def register_function(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> FunctionTool:
        return self.register(FunctionTool.from_callable(func, name=name, description=description))

    def tool(self, name: Optional[str] = None, description: Optional[str] = None) -> Callable:
        """Decorator form of :meth:`register_function`."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register_function(func, name=name, description=description)
            return func

        return decorator

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def schemas(self) -> List[Dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Invoke ``name`` and wrap its return value in a :class:`ToolResult`.

        Raises:
            ToolError: the tool is unknown, rejected its arguments or raised.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolError(f"Tool not found: {name}", ToolErrorCode.NOT_FOUND, name)

        start = time.perf_counter()
        try:
            output = await tool.invoke(arguments or {})
        except ToolError:
            raise
        except Exception as exc:
            logger.warning(f"Tool {name} raised: {exc}")
            raise ToolError(
                f"Tool {name} failed: {exc}", ToolErrorCode.EXECUTION_FAILED, name
            ) from exc
        duration_ms = (time.perf_counter() - start) * 1000

        result = output if isinstance(output, ToolResult) else ToolResult.success(output)
        result.duration_ms = duration_ms
        logger.debug(f"Tool {name} finished in {duration_ms:.1f}ms")
        return result
