"""Tool contracts."""

from __future__ import annotations

import abc
import inspect
import json
import typing
from enum import Enum
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel, ValidationError, create_model

from ..errors import ToolError, ToolErrorCode


class ToolStatus(str, Enum):
    SUCCESS = "success"
    SUCCESS_NO_DATA = "success_no_data"
    ERROR = "error"


class ToolResult(BaseModel):
    """Outcome of a single tool invocation."""

    output: Any = None
    status: ToolStatus = ToolStatus.SUCCESS
    message: Optional[str] = None
    duration_ms: float = 0.0

    @classmethod
    def success(cls, output: Any) -> "ToolResult":
        return cls(output=output)

    @classmethod
    def no_data(cls, message: str = "The tool ran successfully but found no data") -> "ToolResult":
        """Successful call with nothing to report, so the model does not retry."""
        return cls(status=ToolStatus.SUCCESS_NO_DATA, message=message)

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(status=ToolStatus.ERROR, message=message)

    def payload(self) -> Any:
        """The value shown to the model for this result."""
        if self.status == ToolStatus.SUCCESS:
            return self.output
        return {"status": self.status.value, "message": self.message}

    def to_content(self) -> str:
        payload = self.payload()
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, default=str)


class Tool(metaclass=abc.ABCMeta):
    """Something an agent can call by name with JSON arguments."""

    name: str
    description: str = ""

    @property
    def parameters(self) -> Dict[str, Any]:
        """JSON schema of the accepted arguments."""
        return {"type": "object", "properties": {}}

    @abc.abstractmethod
    async def invoke(self, arguments: Dict[str, Any]) -> Any:
        """Run the tool. May return a plain value or a :class:`ToolResult`."""
        raise NotImplementedError

    def to_schema(self) -> Dict[str, Any]:
        """Function-calling schema advertised to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def _arguments_model(func: Callable[..., Any], name: str) -> Type[BaseModel]:
    hints = typing.get_type_hints(func)
    fields: Dict[str, Any] = {}
    for param in inspect.signature(func).parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)
    model_name = "".join(part.capitalize() for part in name.split("_")) + "Arguments"
    return create_model(model_name, **fields)


class FunctionTool(Tool):
    """Wraps a plain or async function.

    Arguments are validated against a model derived from the function
    signature before the call.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.func = func
        self.name = name or func.__name__
        self.description = description if description is not None else inspect.getdoc(func) or ""
        self._arguments = _arguments_model(func, self.name)

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "FunctionTool":
        return cls(func, name=name, description=description)

    @property
    def parameters(self) -> Dict[str, Any]:
        schema = self._arguments.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    async def invoke(self, arguments: Dict[str, Any]) -> Any:
        try:
            validated = self._arguments.model_validate(arguments or {})
        except ValidationError as exc:
            raise ToolError(
                f"Invalid arguments for {self.name}: {exc}", ToolErrorCode.INVALID_ARGUMENTS, self.name
            ) from exc
        kwargs = {field: getattr(validated, field) for field in self._arguments.model_fields}
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
