"""Nested workflow tests."""

import pytest

from agent_runtime import (
    Agent,
    AgentConfig,
    AgentStep,
    CancellationToken,
    FunctionTool,
    MockChatClient,
    Runtime,
    RuntimeConfig,
    SubWorkflowStep,
    ToolRegistry,
    TransformStep,
    Workflow,
    WorkflowState,
)
from agent_runtime.events import EventScope, EventType


def _runtime():
    return Runtime(config=RuntimeConfig())


@pytest.mark.asyncio
async def test_nested_events_carry_parent_workflow_id():
    """Events of a nested run carry the parent's workflow id."""
    client = MockChatClient(["inner reply"])
    inner = (
        Workflow.builder()
        .name("inner")
        .add_step(TransformStep("prefix", lambda text: f"inner got {text}"))
        .add_step(AgentStep(Agent(AgentConfig(name="helper"), client)))
        .initial_input("ignored")
        .build()
    )
    outer = (
        Workflow.builder()
        .name("outer")
        .add_step(TransformStep("start", lambda text: text + "!"))
        .add_step(SubWorkflowStep(inner))
        .add_step(TransformStep("finish", lambda text: text.upper()))
        .initial_input("go")
        .build()
    )
    runtime = _runtime()

    run = await runtime.execute(outer)

    assert run.succeeded
    assert run.final_output == "INNER REPLY"
    # the nested run starts from the step input, not its own initial input
    assert client.calls[0][-1].content == "inner got go!"

    events = runtime.events_from(0)
    inner_events = [e for e in events if e.workflow_id == "inner"]
    outer_events = [e for e in events if e.workflow_id == "outer"]
    assert inner_events
    assert all(e.parent_workflow_id == "outer" for e in inner_events)
    assert all(e.parent_workflow_id is None for e in outer_events)
    assert len(inner_events) + len(outer_events) == len(events)

    inner_started = inner_events[0]
    assert inner_started.kind == (EventScope.WORKFLOW, EventType.STARTED)
    assert inner_started.data == {"step_count": 2, "parent_workflow_id": "outer"}
    helper_events = [e for e in events if e.scope == EventScope.AGENT]
    assert {e.workflow_id for e in helper_events} == {"inner"}


@pytest.mark.asyncio
async def test_grandchild_is_tagged_with_its_direct_parent():
    """Each nested run is tagged with its direct parent."""
    leaf = Workflow.builder().name("leaf").add_step(TransformStep("noop", lambda v: v)).build()
    middle = Workflow.builder().name("middle").add_step(SubWorkflowStep(leaf)).build()
    root = Workflow.builder().name("root").add_step(SubWorkflowStep(middle)).initial_input(7).build()
    runtime = _runtime()

    run = await runtime.execute(root)

    assert run.final_output == 7
    parents = {e.workflow_id: e.parent_workflow_id for e in runtime.events_from(0)}
    assert parents == {"root": None, "middle": "root", "leaf": "middle"}


@pytest.mark.asyncio
async def test_nested_failure_fails_the_parent():
    """A failed nested run fails the parent step."""
    inner = (
        Workflow.builder()
        .name("inner")
        .add_step(TransformStep("explode", lambda value: value["missing"]))
        .build()
    )
    outer = (
        Workflow.builder()
        .name("outer")
        .add_step(SubWorkflowStep(inner, name="delegate"))
        .add_step(TransformStep("never", lambda v: v))
        .initial_input({})
        .build()
    )
    runtime = _runtime()

    run = await runtime.execute(outer)

    assert run.state == WorkflowState.FAILED
    assert run.failed_step == 0
    events = runtime.events_from(0)
    inner_failed = [
        e for e in events
        if e.kind == (EventScope.WORKFLOW, EventType.FAILED) and e.workflow_id == "inner"
    ]
    assert len(inner_failed) == 1
    step_failed, outer_failed = events[-2], events[-1]
    assert step_failed.component_id == "outer:step:0"
    assert step_failed.data["code"] == "sub_workflow_failed"
    assert step_failed.data["sub_workflow_id"] == "inner"
    assert outer_failed.data == {"failed_step": 0, "failed_step_name": "delegate"}


@pytest.mark.asyncio
async def test_nested_workflow_shares_parent_context():
    """A nested run shares the parent's chat context."""
    first_client = MockChatClient(["The answer is 42."])
    nested_client = MockChatClient(["I remember 42."])
    inner = (
        Workflow.builder()
        .name("inner")
        .add_step(AgentStep(Agent(AgentConfig(name="recaller"), nested_client)))
        .build()
    )
    outer = (
        Workflow.builder()
        .name("outer")
        .with_chat_history()
        .add_step(AgentStep(Agent(AgentConfig(name="answerer"), first_client)))
        .add_step(SubWorkflowStep(inner))
        .initial_input("What is the answer?")
        .build()
    )

    run = await _runtime().execute(outer)

    assert run.succeeded
    seen = [m.content for m in nested_client.calls[0]]
    assert seen == ["What is the answer?", "The answer is 42.", "The answer is 42."]
    assert [m.content for m in outer.context.history()][-1] == "I remember 42."
    assert outer.context.metadata.step_count == 3


def _cancel_events(events, workflow_id):
    return [
        e for e in events
        if e.workflow_id == workflow_id and e.event_type == EventType.CANCELED
    ]


@pytest.mark.asyncio
async def test_cancel_between_nested_steps_cancels_both_levels():
    """Canceling inside a nested run ends inner and outer as canceled, not failed."""
    token = CancellationToken()

    def stop(value):
        token.cancel("user stopped")
        return value

    inner = (
        Workflow.builder()
        .name("inner")
        .add_step(TransformStep("stop", stop))
        .add_step(TransformStep("never_inner", lambda v: v))
        .build()
    )
    outer = (
        Workflow.builder()
        .name("outer")
        .add_step(SubWorkflowStep(inner, name="delegate"))
        .add_step(TransformStep("never_outer", lambda v: v))
        .initial_input("go")
        .build()
    )
    runtime = _runtime()

    run = await runtime.execute(outer, cancel=token)

    assert run.state == WorkflowState.CANCELED
    assert run.error == "user stopped"
    events = runtime.events_from(0)
    assert not [e for e in events if e.event_type == EventType.FAILED]

    inner_canceled = _cancel_events(events, "inner")
    assert [e.scope for e in inner_canceled] == [EventScope.WORKFLOW]
    assert inner_canceled[0].data == {"next_step": 1}

    outer_canceled = _cancel_events(events, "outer")
    assert [(e.scope, e.component_id) for e in outer_canceled] == [
        (EventScope.WORKFLOW_STEP, "outer:step:0"),
        (EventScope.WORKFLOW, "outer"),
    ]
    assert outer_canceled[1].data == {"canceled_step": 0, "canceled_step_name": "delegate"}
    step_names = [e.data.get("step_name") for e in events if e.kind == (EventScope.WORKFLOW_STEP, EventType.STARTED)]
    assert "never_inner" not in step_names
    assert "never_outer" not in step_names


@pytest.mark.asyncio
async def test_cancel_during_nested_agent_cancels_every_level():
    """An agent canceled inside a nested run cancels its step and both workflows."""
    token = CancellationToken()

    def stop(reason: str) -> str:
        token.cancel(reason)
        return "stopping"

    client = MockChatClient().add_tool_call("stop", {"reason": "enough"}).add_response("never")
    agent = Agent(AgentConfig(name="quitter", tools=ToolRegistry([FunctionTool(stop)])), client)
    inner = Workflow.builder().name("inner").add_step(AgentStep(agent)).build()
    outer = (
        Workflow.builder()
        .name("outer")
        .add_step(SubWorkflowStep(inner))
        .initial_input("go")
        .build()
    )
    runtime = _runtime()

    run = await runtime.execute(outer, cancel=token)

    assert run.state == WorkflowState.CANCELED
    assert client.call_count == 1
    events = runtime.events_from(0)
    assert not [e for e in events if e.event_type == EventType.FAILED]
    assert [(e.scope, e.component_id) for e in _cancel_events(events, "inner")] == [
        (EventScope.AGENT, "quitter"),
        (EventScope.WORKFLOW_STEP, "inner:step:0"),
        (EventScope.WORKFLOW, "inner"),
    ]
    assert [(e.scope, e.component_id) for e in _cancel_events(events, "outer")] == [
        (EventScope.WORKFLOW_STEP, "outer:step:0"),
        (EventScope.WORKFLOW, "outer"),
    ]
