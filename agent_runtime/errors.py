"""Error hierarchy for the agent runtime."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class AgentRuntimeError(Exception):
    """Base class for all runtime errors."""

    code: str = "runtime_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_data(self) -> Dict[str, Any]:
        """Structured payload attached to Failed events."""
        return {"code": self.code, "error_type": type(self).__name__}


class ComponentIdError(AgentRuntimeError, ValueError):
    """Raised when a component id does not match its scope's format."""

    code = "invalid_component_id"

    def __init__(self, message: str, scope: Optional[str] = None, component_id: str = "") -> None:
        super().__init__(message)
        self.scope = scope
        self.component_id = component_id

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data.update(scope=self.scope, component_id=self.component_id)
        return data


class ConfigError(AgentRuntimeError):
    """Raised when a configuration value cannot be used."""

    code = "invalid_config"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class LlmErrorCode(str, Enum):
    NETWORK = "network_error"
    RATE_LIMIT = "rate_limit_exceeded"
    INVALID_RESPONSE = "invalid_response"
    SERVER = "server_error"
    AUTHENTICATION = "authentication_failed"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_RETRYABLE_LLM_CODES = {
    LlmErrorCode.NETWORK,
    LlmErrorCode.RATE_LIMIT,
    LlmErrorCode.SERVER,
    LlmErrorCode.TIMEOUT,
}


class LlmError(AgentRuntimeError):
    """Failure reported by a chat client."""

    def __init__(self, message: str, code: LlmErrorCode = LlmErrorCode.UNKNOWN) -> None:
        super().__init__(message)
        self.llm_code = LlmErrorCode(code)
        self.code = self.llm_code.value

    @property
    def retryable(self) -> bool:
        return self.llm_code in _RETRYABLE_LLM_CODES


class ToolErrorCode(str, Enum):
    NOT_FOUND = "tool_not_found"
    EXECUTION_FAILED = "execution_failed"
    INVALID_ARGUMENTS = "invalid_arguments"
    TIMEOUT = "timeout"


class ToolError(AgentRuntimeError):
    """Failure raised while resolving or invoking a tool."""

    def __init__(self, message: str, code: ToolErrorCode, tool_name: str = "") -> None:
        super().__init__(message)
        self.tool_code = ToolErrorCode(code)
        self.code = self.tool_code.value
        self.tool_name = tool_name

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data["tool_name"] = self.tool_name
        return data


class AgentErrorCode(str, Enum):
    LLM_REQUEST_FAILED = "llm_request_failed"
    MISSING_LLM_CLIENT = "missing_llm_client"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    EXECUTION_FAILED = "execution_failed"


class AgentError(AgentRuntimeError):
    """Failure of a single agent execution."""

    def __init__(self, message: str, code: AgentErrorCode, agent_name: str = "") -> None:
        super().__init__(message)
        self.agent_code = AgentErrorCode(code)
        self.code = self.agent_code.value
        self.agent_name = agent_name

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data["agent_name"] = self.agent_name
        return data


class MaxIterationsExceeded(AgentError):
    """The agent loop did not converge within its iteration cap."""

    def __init__(self, agent_name: str, max_iterations: int) -> None:
        super().__init__(
            f"Agent {agent_name} exceeded maximum iterations ({max_iterations})",
            AgentErrorCode.MAX_ITERATIONS_EXCEEDED,
            agent_name,
        )
        self.max_iterations = max_iterations

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data["max_iterations"] = self.max_iterations
        return data


class ExecutionCanceled(AgentRuntimeError):
    """Raised when a cancellation token is observed."""

    code = "canceled"

    def __init__(self, message: str = "Execution canceled") -> None:
        super().__init__(message)


class StepError(AgentRuntimeError):
    """Failure of a workflow step that is not an agent or tool failure."""

    code = "step_failed"

    def __init__(self, message: str, step_name: str = "") -> None:
        super().__init__(message)
        self.step_name = step_name

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data["step_name"] = self.step_name
        return data


class SubWorkflowFailed(StepError):
    """A nested workflow finished in the failed state."""

    code = "sub_workflow_failed"

    def __init__(self, step_name: str, run: Any) -> None:
        super().__init__(
            f"Sub-workflow {run.workflow_id} failed at step {run.failed_step}: {run.error}",
            step_name,
        )
        self.run = run

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data.update(
            sub_workflow_id=self.run.workflow_id,
            sub_workflow_failed_step=self.run.failed_step,
        )
        return data


class RetryExhausted(AgentRuntimeError):
    """All retry attempts failed."""

    code = "retry_exhausted"

    def __init__(self, attempts: int, last_error: Exception) -> None:
        super().__init__(f"Giving up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data["attempts"] = self.attempts
        return data


class ContextError(AgentRuntimeError, ValueError):
    """Invalid context or pruning strategy settings."""

    code = "context_error"


class OperationTimeout(AgentRuntimeError):
    """An LLM or tool operation ran past its time limit."""

    code = "timeout"

    def __init__(self, operation: str, duration_ms: int) -> None:
        super().__init__(f"Operation {operation} timed out after {duration_ms}ms")
        self.operation = operation
        self.duration_ms = duration_ms

    def to_data(self) -> Dict[str, Any]:
        data = super().to_data()
        data.update({"operation": self.operation, "duration_ms": self.duration_ms})
        return data
