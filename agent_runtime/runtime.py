"""Workflow execution engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from .cancellation import CancellationToken
from .config import RuntimeConfig, load_config
from .context.strategies import ContextManager
from .context.workflow_context import WorkflowContext
from .errors import AgentRuntimeError, ExecutionCanceled
from .events import EventBus, get_event_bus
from .events.bus import EventEmitter
from .events.models import ComponentStatus, Event
from .steps import ExecutionContext, StepInput
from .workflow import StepRecord, Workflow, WorkflowRun, WorkflowState

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _error_data(exc: Exception) -> dict:
    if isinstance(exc, AgentRuntimeError):
        return exc.to_data()
    return {"code": "unexpected_error", "error_type": type(exc).__name__}


class Runtime:
    """Executes workflows step by step and reports progress on an event bus.

    Step failures never escape :meth:`execute`; they end the run in the
    failed state and are reported as events.
    """

    def __init__(
        self, event_bus: Optional[EventBus] = None, config: Optional[RuntimeConfig] = None
    ) -> None:
        self.config = config or load_config()
        self._event_bus = event_bus if event_bus is not None else get_event_bus(self.config)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def events_from(self, offset: int = 0) -> List[Event]:
        return self._event_bus.events_from(offset)

    async def execute(
        self, workflow: Workflow, *, cancel: Optional[CancellationToken] = None
    ) -> WorkflowRun:
        """Run ``workflow`` from its initial input."""
        return await self._run(
            workflow,
            self._event_bus.emitter(workflow.id),
            initial_input=workflow.initial_input,
            context=workflow.context,
            context_manager=workflow.context_manager,
            cancel=cancel,
        )

    async def execute_with_parent(
        self,
        workflow: Workflow,
        parent_workflow_id: str,
        *,
        initial_input: Any = _UNSET,
        context: Optional[WorkflowContext] = None,
        context_manager: Optional[ContextManager] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> WorkflowRun:
        """Run ``workflow`` as a child of ``parent_workflow_id``.

        Every event of the child run carries the parent's id. A supplied
        ``initial_input`` replaces the workflow's own, and a supplied
        ``context`` is used instead of the workflow's own context.
        """
        if context is None:
            context, context_manager = workflow.context, workflow.context_manager
        return await self._run(
            workflow,
            self._event_bus.emitter(workflow.id, parent_workflow_id),
            initial_input=workflow.initial_input if initial_input is _UNSET else initial_input,
            context=context,
            context_manager=context_manager,
            cancel=cancel,
        )

    async def _run(
        self,
        workflow: Workflow,
        events: EventEmitter,
        initial_input: Any,
        context: Optional[WorkflowContext],
        context_manager: Optional[ContextManager],
        cancel: Optional[CancellationToken],
    ) -> WorkflowRun:
        run = WorkflowRun(
            workflow_id=workflow.id,
            parent_workflow_id=events.parent_workflow_id,
            state=WorkflowState.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        events.workflow_started(
            {"step_count": len(workflow.steps), "parent_workflow_id": events.parent_workflow_id}
        )
        logger.info(f"Workflow {workflow.id} started with {len(workflow.steps)} steps")

        current = initial_input
        previous_step: Optional[str] = None
        for index, step in enumerate(workflow.steps):
            if cancel is not None and cancel.is_canceled:
                reason = cancel.reason or "Execution canceled"
                events.workflow_canceled(reason, {"next_step": index})
                logger.info(f"Workflow {workflow.id} canceled before step {index}")
                return run.finish(WorkflowState.CANCELED, reason)

            record = StepRecord(
                step_index=index,
                step_name=step.name,
                kind=step.kind,
                status=ComponentStatus.RUNNING,
                input=current,
            )
            run.steps.append(record)
            events.step_started(index, {"step_name": step.name, "step_type": step.kind.value})

            step_input = StepInput(
                data=current,
                step_index=index,
                previous_step=previous_step,
                workflow_id=workflow.id,
            )
            ctx = ExecutionContext(
                runtime=self,
                events=events,
                workflow_id=workflow.id,
                context=context,
                context_manager=context_manager,
                cancel=cancel,
            )
            try:
                output = await step.execute(step_input, ctx)
            except ExecutionCanceled as exc:
                record.status = ComponentStatus.CANCELED
                record.error = str(exc)
                events.step_canceled(index, str(exc), {"step_name": step.name})
                events.workflow_canceled(str(exc), {"canceled_step": index, "canceled_step_name": step.name})
                logger.info(f"Workflow {workflow.id} canceled during step {index} ({step.name})")
                return run.finish(WorkflowState.CANCELED, str(exc))
            except Exception as exc:
                record.status = ComponentStatus.FAILED
                record.error = str(exc)
                events.step_failed(index, str(exc), {"step_name": step.name, **_error_data(exc)})
                events.workflow_failed(
                    f"Workflow {workflow.id} failed at step {index} ({step.name}): {exc}",
                    {"failed_step": index, "failed_step_name": step.name},
                )
                logger.error(f"Workflow {workflow.id} failed at step {index} ({step.name}): {exc}")
                run.failed_step = index
                return run.finish(WorkflowState.FAILED, str(exc))

            record.status = ComponentStatus.COMPLETED
            record.output = output.data
            record.execution_time_ms = output.execution_time_ms
            events.step_completed(
                index, {"step_name": step.name, "execution_time_ms": output.execution_time_ms}
            )
            logger.debug(f"Workflow {workflow.id} step {index} ({step.name}) completed")

            if context is not None:
                context.increment_step()
                self._manage_context(context, context_manager, events)

            current = output.data
            previous_step = step.name

        run.final_output = current
        events.workflow_completed({"steps_completed": len(run.steps)})
        logger.info(f"Workflow {workflow.id} completed")
        return run.finish(WorkflowState.COMPLETED)

    def _manage_context(
        self,
        context: WorkflowContext,
        manager: Optional[ContextManager],
        events: EventEmitter,
    ) -> None:
        if manager is None:
            return
        with context.lock:
            history = context.history()
            tokens = manager.estimate_tokens(history)
            if not manager.should_prune(history, tokens):
                return
            pruned, pruned_tokens = manager.prune(history)
            context.replace_history(pruned)
        logger.info(
            f"Context pruned by {manager.name}: {len(history)} -> {len(pruned)} messages, "
            f"{tokens} -> {pruned_tokens} tokens"
        )
        events.system_progress(
            "context_manager",
            f"Pruned context with {manager.name}",
            {
                "strategy": manager.name,
                "messages_before": len(history),
                "messages_after": len(pruned),
                "tokens_before": tokens,
                "tokens_after": pruned_tokens,
            },
        )
