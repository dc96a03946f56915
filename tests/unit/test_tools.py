"""Tool and registry tests."""

import json

import pytest

from agent_runtime.errors import ToolError, ToolErrorCode
from agent_runtime.tools import FunctionTool, ToolRegistry, ToolResult, ToolStatus


def add(a: int, b: int = 2) -> int:
    """Add two numbers."""
    return a + b


async def shout(text: str) -> str:
    return text.upper()


def test_function_tool_schema_from_signature():
    """The schema is derived from the function signature."""
    tool = FunctionTool.from_callable(add)

    assert tool.name == "add"
    assert tool.description == "Add two numbers."
    params = tool.parameters
    assert params["properties"]["a"]["type"] == "integer"
    assert params["properties"]["b"]["default"] == 2
    assert params["required"] == ["a"]

    schema = tool.to_schema()
    assert schema["type"] == "function"
    assert schema["function"]["name"] == "add"


@pytest.mark.asyncio
async def test_function_tool_invokes_sync_and_async():
    """Sync and async functions are both awaited correctly."""
    assert await FunctionTool(add).invoke({"a": 1, "b": 4}) == 5
    assert await FunctionTool(shout, name="shout_tool").invoke({"text": "hi"}) == "HI"


@pytest.mark.asyncio
async def test_function_tool_rejects_bad_arguments():
    """Missing arguments raise INVALID_ARGUMENTS."""
    with pytest.raises(ToolError) as exc_info:
        await FunctionTool(add).invoke({"b": 1})
    assert exc_info.value.tool_code == ToolErrorCode.INVALID_ARGUMENTS


@pytest.mark.asyncio
async def test_registry_call_tool_wraps_result():
    """call_tool wraps plain return values in a ToolResult."""
    registry = ToolRegistry([FunctionTool(add)])

    result = await registry.call_tool("add", {"a": 3})

    assert isinstance(result, ToolResult)
    assert result.status == ToolStatus.SUCCESS
    assert result.output == 5
    assert result.to_content() == "5"
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_registry_unknown_tool():
    """Unknown tools raise NOT_FOUND."""
    registry = ToolRegistry()
    with pytest.raises(ToolError) as exc_info:
        await registry.call_tool("missing", {})
    assert exc_info.value.tool_code == ToolErrorCode.NOT_FOUND
    assert exc_info.value.to_data()["tool_name"] == "missing"


@pytest.mark.asyncio
async def test_registry_wraps_tool_exceptions():
    """Exceptions from a tool become EXECUTION_FAILED."""
    registry = ToolRegistry()

    @registry.tool(description="Always fails")
    def broken() -> str:
        raise RuntimeError("disk on fire")

    assert "broken" in registry
    with pytest.raises(ToolError) as exc_info:
        await registry.call_tool("broken")
    assert exc_info.value.tool_code == ToolErrorCode.EXECUTION_FAILED
    assert "disk on fire" in str(exc_info.value)


@pytest.mark.asyncio
async def test_no_data_result_is_reported_as_success():
    """A no-data result is a success with a message."""
    registry = ToolRegistry()
    registry.register_function(lambda query: ToolResult.no_data("No rows matched"), name="lookup")

    result = await registry.call_tool("lookup", {"query": "x"})

    assert result.status == ToolStatus.SUCCESS_NO_DATA
    assert json.loads(result.to_content()) == {
        "status": "success_no_data",
        "message": "No rows matched",
    }


def test_registry_lists_schemas():
    """The registry lists names and schemas in registration order."""
    registry = ToolRegistry([FunctionTool(add), FunctionTool(shout)])
    assert registry.names == ["add", "shout"]
    assert len(registry) == 2
    assert [s["function"]["name"] for s in registry.schemas()] == ["add", "shout"]
