"""Workflow step kinds."""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

from .agent import Agent, AgentInput
from .cancellation import CancellationToken
from .context.strategies import ContextManager
from .context.workflow_context import WorkflowContext
from .errors import ExecutionCanceled, StepError, SubWorkflowFailed
from .events.bus import EventEmitter

if TYPE_CHECKING:
    from .runtime import Runtime
    from .workflow import Workflow

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    AGENT = "agent"
    TRANSFORM = "transform"
    CONDITIONAL = "conditional"
    SUB_WORKFLOW = "sub_workflow"


class StepInput(BaseModel):
    data: Any = None
    step_index: int = 0
    previous_step: Optional[str] = None
    workflow_id: Optional[str] = None


class StepOutput(BaseModel):
    step_name: str
    kind: StepKind
    data: Any = None
    execution_time_ms: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class ExecutionContext:
    """Collaborators handed to a step by the engine."""

    runtime: "Runtime"
    events: EventEmitter
    workflow_id: str
    context: Optional[WorkflowContext] = None
    context_manager: Optional[ContextManager] = None
    cancel: Optional[CancellationToken] = None


class Step(metaclass=abc.ABCMeta):
    """One unit of work in a workflow."""

    kind: StepKind

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("Step name must be a non-empty string")
        self.name = name

    @abc.abstractmethod
    async def execute(self, step_input: StepInput, ctx: ExecutionContext) -> StepOutput:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class AgentStep(Step):
    """Runs an agent on the incoming value.

    With a shared context the agent sees the accumulated history, and the
    messages it produces are appended back to that context.
    """

    kind = StepKind.AGENT

    def __init__(self, agent: Agent, name: Optional[str] = None) -> None:
        super().__init__(name or agent.name)
        self.agent = agent

    async def execute(self, step_input: StepInput, ctx: ExecutionContext) -> StepOutput:
        start = time.perf_counter()
        history = ctx.context.history() if ctx.context is not None else None
        agent_input = AgentInput(
            data=step_input.data,
            chat_history=history,
            step_index=step_input.step_index,
            previous_step=step_input.previous_step,
        )
        output = await self.agent.execute(agent_input, events=ctx.events, cancel=ctx.cancel)
        if ctx.context is not None:
            ctx.context.extend(output.new_messages)
        return StepOutput(
            step_name=self.name,
            kind=self.kind,
            data=output.response,
            execution_time_ms=int((time.perf_counter() - start) * 1000),
            details={
                "agent": self.agent.name,
                "llm_calls": output.llm_calls,
                "tool_calls": output.tool_calls,
                "token_count": output.data["token_count"],
            },
        )


class TransformStep(Step):
    """Applies a pure function to the incoming value."""

    kind = StepKind.TRANSFORM

    def __init__(self, name: str, func: Callable[[Any], Any]) -> None:
        super().__init__(name)
        self.func = func

    async def execute(self, step_input: StepInput, ctx: ExecutionContext) -> StepOutput:
        start = time.perf_counter()
        try:
            data = self.func(step_input.data)
        except Exception as exc:
            raise StepError(f"Transform {self.name} failed: {exc}", self.name) from exc
        return StepOutput(
            step_name=self.name,
            kind=self.kind,
            data=data,
            execution_time_ms=int((time.perf_counter() - start) * 1000),
        )


class ConditionalStep(Step):
    """Runs ``then_step`` when ``predicate`` holds, otherwise ``else_step``.

    Without ``else_step`` a false predicate passes the input through.
    """

    kind = StepKind.CONDITIONAL

    def __init__(
        self,
        name: str,
        predicate: Callable[[Any], bool],
        then_step: Step,
        else_step: Optional[Step] = None,
    ) -> None:
        super().__init__(name)
        self.predicate = predicate
        self.then_step = then_step
        self.else_step = else_step

    async def execute(self, step_input: StepInput, ctx: ExecutionContext) -> StepOutput:
        start = time.perf_counter()
        matched = bool(self.predicate(step_input.data))
        branch = self.then_step if matched else self.else_step
        logger.debug(f"Conditional {self.name} took the {'then' if matched else 'else'} branch")
        if branch is None:
            return StepOutput(
                step_name=self.name,
                kind=self.kind,
                data=step_input.data,
                details={"branch": "else", "branch_step": None},
            )
        inner = await branch.execute(step_input, ctx)
        return StepOutput(
            step_name=self.name,
            kind=self.kind,
            data=inner.data,
            execution_time_ms=int((time.perf_counter() - start) * 1000),
            details={"branch": "then" if matched else "else", "branch_step": branch.name, **inner.details},
        )


class SubWorkflowStep(Step):
    """Runs a nested workflow on the same runtime and event bus.

    The nested run starts from this step's input and shares the parent's
    context when there is one.
    """

    kind = StepKind.SUB_WORKFLOW

    def __init__(self, workflow: "Workflow", name: Optional[str] = None) -> None:
        super().__init__(name or workflow.id)
        self.workflow = workflow

    async def execute(self, step_input: StepInput, ctx: ExecutionContext) -> StepOutput:
        from .workflow import WorkflowState

        start = time.perf_counter()
        run = await ctx.runtime.execute_with_parent(
            self.workflow,
            parent_workflow_id=ctx.workflow_id,
            initial_input=step_input.data,
            context=ctx.context,
            context_manager=ctx.context_manager,
            cancel=ctx.cancel,
        )
        if run.state == WorkflowState.CANCELED:
            raise ExecutionCanceled(run.error or f"Sub-workflow {self.workflow.id} canceled")
        if run.state != WorkflowState.COMPLETED:
            raise SubWorkflowFailed(self.name, run)
        return StepOutput(
            step_name=self.name,
            kind=self.kind,
            data=run.final_output,
            execution_time_ms=int((time.perf_counter() - start) * 1000),
            details={"sub_workflow_id": self.workflow.id, "steps_completed": len(run.steps)},
        )


__all__ = [
    "AgentStep",
    "ConditionalStep",
    "ExecutionContext",
    "Step",
    "StepInput",
    "StepKind",
    "StepOutput",
    "SubWorkflowStep",
    "TransformStep",
]
