"""Workflow definitions, builder and run records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .constants import DEFAULT_INPUT_OUTPUT_RATIO, DEFAULT_MAX_CONTEXT_TOKENS
from .context.strategies import ContextManager
from .context.workflow_context import ContextMetadata, WorkflowContext
from .errors import ComponentIdError, ContextError
from .events.models import ComponentStatus, EventScope
from .steps import Step, StepKind


class WorkflowState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class StepRecord(BaseModel):
    """What happened to one step during a run."""

    step_index: int
    step_name: str
    kind: StepKind
    status: ComponentStatus = ComponentStatus.PENDING
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    execution_time_ms: Optional[int] = None


class WorkflowRun(BaseModel):
    """Result of executing a workflow once."""

    run_id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    workflow_id: str
    parent_workflow_id: Optional[str] = None
    state: WorkflowState = WorkflowState.PENDING
    steps: List[StepRecord] = Field(default_factory=list)
    final_output: Any = None
    error: Optional[str] = None
    failed_step: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state == WorkflowState.COMPLETED

    def finish(self, state: WorkflowState, error: Optional[str] = None) -> "WorkflowRun":
        self.state = state
        self.error = error
        self.completed_at = datetime.now(timezone.utc)
        return self


class Workflow:
    """Immutable, ordered list of steps.

    Build instances with :meth:`Workflow.builder`.
    """

    def __init__(
        self,
        workflow_id: str,
        steps: Sequence[Step],
        initial_input: Any = None,
        context: Optional[WorkflowContext] = None,
        context_manager: Optional[ContextManager] = None,
    ) -> None:
        self._id = workflow_id
        self._steps: Tuple[Step, ...] = tuple(steps)
        self._initial_input = initial_input
        self._context = context
        self._context_manager = context_manager

    @staticmethod
    def builder() -> "WorkflowBuilder":
        return WorkflowBuilder()

    @property
    def id(self) -> str:
        return self._id

    @property
    def steps(self) -> Tuple[Step, ...]:
        return self._steps

    @property
    def initial_input(self) -> Any:
        return self._initial_input

    @property
    def context(self) -> Optional[WorkflowContext]:
        return self._context

    @property
    def context_manager(self) -> Optional[ContextManager]:
        return self._context_manager

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"Workflow(id={self._id!r}, steps={[s.name for s in self._steps]})"


class WorkflowBuilder:
    """Fluent builder for :class:`Workflow`."""

    def __init__(self) -> None:
        self._name: Optional[str] = None
        self._steps: List[Step] = []
        self._initial_input: Any = None
        self._chat_history = False
        self._context_manager: Optional[ContextManager] = None
        self._max_context_tokens = DEFAULT_MAX_CONTEXT_TOKENS
        self._input_output_ratio = DEFAULT_INPUT_OUTPUT_RATIO
        self._context: Optional[WorkflowContext] = None

    def name(self, name: str) -> "WorkflowBuilder":
        if not name or ":" in name:
            raise ComponentIdError(
                f"Workflow name must be non-empty and must not contain ':', got {name!r}",
                EventScope.WORKFLOW.value,
                name,
            )
        self._name = name
        return self

    def add_step(self, step: Step) -> "WorkflowBuilder":
        self._steps.append(step)
        return self

    def initial_input(self, value: Any) -> "WorkflowBuilder":
        self._initial_input = value
        return self

    def with_chat_history(self, manager: Optional[ContextManager] = None) -> "WorkflowBuilder":
        """Give the workflow a shared context, optionally pruned by ``manager``."""
        self._chat_history = True
        if manager is not None:
            self._context_manager = manager
        return self

    def with_context_manager(self, manager: ContextManager) -> "WorkflowBuilder":
        self._context_manager = manager
        return self

    def with_max_context_tokens(self, tokens: int) -> "WorkflowBuilder":
        if tokens <= 0:
            raise ContextError("max context tokens must be positive")
        self._max_context_tokens = tokens
        return self

    def with_input_output_ratio(self, ratio: float) -> "WorkflowBuilder":
        if ratio <= 0:
            raise ContextError("input/output ratio must be positive")
        self._input_output_ratio = ratio
        return self

    def with_restored_context(self, context: WorkflowContext) -> "WorkflowBuilder":
        """Continue from a previously saved context. The context object is used as is."""
        self._context = context
        self._chat_history = True
        return self

    def build(self) -> Workflow:
        workflow_id = self._name or f"wf_{uuid.uuid4().hex[:12]}"
        context = self._context
        if context is None and self._chat_history:
            context = WorkflowContext(
                metadata=ContextMetadata(workflow_id=workflow_id),
                max_context_tokens=self._max_context_tokens,
                input_output_ratio=self._input_output_ratio,
            )
        return Workflow(
            workflow_id,
            self._steps,
            initial_input=self._initial_input,
            context=context,
            context_manager=self._context_manager,
        )
