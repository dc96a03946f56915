"""Shared conversation context across workflow steps."""

import pytest

from agent_runtime import (
    Agent,
    AgentConfig,
    AgentStep,
    MockChatClient,
    Runtime,
    RuntimeConfig,
    SlidingWindowManager,
    TokenBudgetManager,
    Workflow,
    WorkflowContext,
)
from agent_runtime.events import EventScope
from agent_runtime.llm import ChatMessage


def _runtime():
    return Runtime(config=RuntimeConfig())


@pytest.mark.asyncio
async def test_second_agent_sees_first_agents_conversation():
    """Later agents see earlier agents' messages in the shared context."""
    first = MockChatClient(["Hi"])
    second = MockChatClient(["Done"])
    workflow = (
        Workflow.builder()
        .name("chat")
        .with_chat_history()
        .add_step(AgentStep(Agent(AgentConfig(name="greeter", system_prompt="Greet."), first)))
        .add_step(AgentStep(Agent(AgentConfig(name="closer", system_prompt="Close."), second)))
        .initial_input("Hello")
        .build()
    )

    run = await _runtime().execute(workflow)

    assert run.succeeded
    assert [m.content for m in second.calls[0]] == ["Close.", "Hello", "Hi", "Hi"]
    context = workflow.context
    assert [m.content for m in context.history()] == ["Hello", "Hi", "Hi", "Done"]
    assert context.metadata.step_count == 2
    assert context.metadata.workflow_id == "chat"


def test_builder_applies_token_settings():
    """Builder token settings reach the workflow context."""
    workflow = (
        Workflow.builder()
        .name("sized")
        .with_chat_history()
        .with_max_context_tokens(2000)
        .with_input_output_ratio(3.0)
        .build()
    )
    assert workflow.context.max_context_tokens == 2000
    assert workflow.context.max_input_tokens == 1500
    assert workflow.context.max_output_tokens == 500


@pytest.mark.asyncio
async def test_pruning_emits_system_event():
    """Pruning after a step emits a System event."""
    clients = [MockChatClient([f"reply {n}"]) for n in range(2)]
    workflow = (
        Workflow.builder()
        .name("windowed")
        .with_chat_history(SlidingWindowManager(max_messages=2))
        .add_step(AgentStep(Agent(AgentConfig(name="first"), clients[0])))
        .add_step(AgentStep(Agent(AgentConfig(name="second"), clients[1])))
        .initial_input("start")
        .build()
    )
    runtime = _runtime()

    run = await runtime.execute(workflow)

    assert run.succeeded
    assert [m.content for m in workflow.context.history()] == ["reply 0", "reply 1"]
    system_events = [e for e in runtime.events_from(0) if e.scope == EventScope.SYSTEM]
    assert len(system_events) == 1
    event = system_events[0]
    assert event.component_id == "system:context_manager"
    assert event.data["strategy"] == "sliding_window"
    assert event.data["messages_before"] == 4
    assert event.data["messages_after"] == 2
    assert event.data["tokens_after"] <= event.data["tokens_before"]


@pytest.mark.asyncio
async def test_token_budget_keeps_context_under_input_budget():
    """The token budget manager keeps the context within budget."""
    long_reply = "x" * 400
    clients = [MockChatClient([long_reply]) for _ in range(3)]
    manager = TokenBudgetManager(total_context_tokens=250, input_output_ratio=4.0)
    builder = Workflow.builder().name("budgeted").with_chat_history(manager).initial_input("go")
    for index, client in enumerate(clients):
        builder.add_step(AgentStep(Agent(AgentConfig(name=f"writer{index}"), client)))
    workflow = builder.build()

    run = await _runtime().execute(workflow)

    assert run.succeeded
    assert manager.estimate_tokens(workflow.context.history()) <= manager.max_input_tokens


@pytest.mark.asyncio
async def test_restored_context_continues_the_conversation():
    """A restored context continues the earlier conversation."""
    saved = WorkflowContext()
    saved.extend([ChatMessage.user("My name is Ada."), ChatMessage.assistant("Nice to meet you, Ada.")])
    restored = WorkflowContext.from_json(saved.to_json())

    client = MockChatClient(["Your name is Ada."])
    workflow = (
        Workflow.builder()
        .name("resumed")
        .with_restored_context(restored)
        .add_step(AgentStep(Agent(AgentConfig(name="memory"), client)))
        .initial_input("What is my name?")
        .build()
    )

    run = await _runtime().execute(workflow)

    assert run.final_output == "Your name is Ada."
    assert [m.content for m in client.calls[0]] == [
        "My name is Ada.",
        "Nice to meet you, Ada.",
        "What is my name?",
    ]
    assert workflow.context is restored
    assert len(restored) == 4
