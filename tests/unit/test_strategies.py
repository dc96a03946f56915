"""Context pruning strategy tests."""

import pytest

from agent_runtime import Workflow
from agent_runtime.context import (
    MessageTypeManager,
    NoOpManager,
    SlidingWindowManager,
    SummarizationManager,
    TokenBudgetManager,
    estimate_message_tokens,
    estimate_tokens,
)
from agent_runtime.errors import ContextError
from agent_runtime.llm import ChatMessage, Role, ToolCall


def test_token_estimate():
    """Token estimates count characters, role overhead and tool calls."""
    assert estimate_message_tokens(ChatMessage.user("a" * 40)) == 11
    calls = [ToolCall(id="1", name="a"), ToolCall(id="2", name="b")]
    assert estimate_message_tokens(ChatMessage.assistant("", calls)) == 41
    assert estimate_tokens([ChatMessage.user("a" * 40), ChatMessage.system("b" * 8)]) == 14


def test_token_budget_under_budget_is_untouched():
    """History under budget is not pruned."""
    manager = TokenBudgetManager(total_context_tokens=50, input_output_ratio=4.0)
    history = [
        ChatMessage.system("s" * 40),
        ChatMessage.user("u" * 40),
        ChatMessage.assistant("a" * 40),
    ]
    tokens = estimate_tokens(history)

    assert manager.max_input_tokens == 40
    assert manager.max_output_tokens == 10
    assert tokens == 33
    assert manager.should_prune(history, tokens) is False
    assert manager.prune(history) == (history, 33)


def test_token_budget_exactly_at_budget_does_not_prune():
    """History exactly at budget is not pruned."""
    manager = TokenBudgetManager(total_context_tokens=50, input_output_ratio=4.0)
    history = [
        ChatMessage.system("s" * 40),
        ChatMessage.user("u" * 40),
        ChatMessage.assistant("a" * 40),
        ChatMessage.user("y" * 24),
    ]
    assert estimate_tokens(history) == 40
    assert manager.should_prune(history, 40) is False


def test_token_budget_drops_oldest_non_system_first():
    """Oldest non-system messages are dropped first."""
    manager = TokenBudgetManager(total_context_tokens=50, input_output_ratio=4.0)
    history = [
        ChatMessage.system("s" * 40),
        ChatMessage.user("u" * 40),
        ChatMessage.assistant("a" * 40),
        ChatMessage.user("x" * 40),
    ]
    tokens = estimate_tokens(history)
    assert tokens == 44
    assert manager.should_prune(history, tokens) is True

    pruned, new_tokens = manager.prune(history)

    assert [m.content[0] for m in pruned] == ["s", "a", "x"]
    assert new_tokens == 33
    assert new_tokens <= manager.max_input_tokens


def test_token_budget_never_drops_system_messages():
    """System messages survive even over budget."""
    manager = TokenBudgetManager(total_context_tokens=10, input_output_ratio=1.0)
    history = [ChatMessage.system("s" * 80), ChatMessage.system("t" * 80), ChatMessage.user("u")]

    pruned, _ = manager.prune(history)

    assert [m.role for m in pruned] == [Role.SYSTEM, Role.SYSTEM, Role.USER]


def test_token_budget_safety_buffer():
    """The safety buffer shrinks the input budget."""
    manager = TokenBudgetManager(total_context_tokens=50, input_output_ratio=4.0, safety_buffer=10)
    assert manager.budget == 30
    assert manager.should_prune([], 33) is True


def test_sliding_window_keeps_system_and_latest():
    """The window keeps system messages and the newest turns."""
    manager = SlidingWindowManager(max_messages=3)
    history = [
        ChatMessage.system("rules"),
        ChatMessage.user("u1"),
        ChatMessage.assistant("a1"),
        ChatMessage.user("u2"),
        ChatMessage.assistant("a2"),
    ]
    assert manager.should_prune(history, 0) is True

    pruned, tokens = manager.prune(history)

    assert [m.content for m in pruned] == ["rules", "u2", "a2"]
    assert tokens == estimate_tokens(pruned)


def _tool_conversation():
    return [
        ChatMessage.system("rules"),
        ChatMessage.user("u1"),
        ChatMessage.assistant("", [ToolCall(id="c1", name="search")]),
        ChatMessage.tool_result("c1", "result", name="search"),
        ChatMessage.user("u2"),
        ChatMessage.assistant("a2"),
    ]


def test_message_type_drops_tool_results_first():
    """Tool results are the first to go."""
    manager = MessageTypeManager(max_messages=5, keep_recent_pairs=1)
    pruned, _ = manager.prune(_tool_conversation())

    assert len(pruned) == 5
    assert all(m.role != Role.TOOL for m in pruned)
    assert pruned[0].content == "rules"


def test_message_type_then_drops_old_conversation():
    """Old conversation goes once tool results are gone."""
    manager = MessageTypeManager(max_messages=4, keep_recent_pairs=1)
    pruned, _ = manager.prune(_tool_conversation())

    assert len(pruned) == 4
    assert pruned[0].content == "rules"
    assert [m.content for m in pruned[-2:]] == ["u2", "a2"]
    assert all(m.role != Role.TOOL for m in pruned)


def test_message_type_keeps_protected_messages_over_limit():
    """Protected messages are kept even over the limit."""
    manager = MessageTypeManager(max_messages=2, keep_recent_pairs=2)
    history = [
        ChatMessage.system("rules"),
        ChatMessage.user("u1"),
        ChatMessage.assistant("a1"),
        ChatMessage.user("u2"),
        ChatMessage.assistant("a2"),
    ]
    pruned, _ = manager.prune(history)
    assert pruned == history


def test_summarization_folds_older_messages():
    """Older messages fold into a single summary message."""
    manager = SummarizationManager(max_input_tokens=1000, summarization_threshold=10, keep_recent=2)
    history = [
        ChatMessage.system("rules"),
        ChatMessage.user("Tell me about otters"),
        ChatMessage.assistant("Otters are aquatic mammals."),
        ChatMessage.user("And beavers?"),
        ChatMessage.assistant("Beavers build dams."),
        ChatMessage.user("Thanks"),
        ChatMessage.assistant("You're welcome"),
    ]
    assert manager.should_prune(history, estimate_tokens(history)) is True

    pruned, tokens = manager.prune(history)

    assert pruned[0].content == "rules"
    summary = pruned[1]
    assert summary.role == Role.SYSTEM
    assert summary.name == "conversation_summary"
    assert summary.content.startswith("Summary of previous conversation:\n\n")
    assert "- 2 user inputs and 2 assistant responses" in summary.content
    assert "- Initial topic: Tell me about otters" in summary.content
    assert "- Latest response: Beavers build dams." in summary.content
    assert [m.content for m in pruned[2:]] == ["Thanks", "You're welcome"]
    assert tokens == estimate_tokens(pruned)


def test_summarization_emergency_truncation_keeps_system():
    """Emergency truncation still keeps system messages."""
    manager = SummarizationManager(max_input_tokens=5, summarization_threshold=1, keep_recent=3)
    history = [
        ChatMessage.system("rules"),
        ChatMessage.user("x" * 100),
        ChatMessage.user("y" * 100),
        ChatMessage.assistant("z" * 100),
    ]

    pruned, _ = manager.prune(history)

    assert all(m.role == Role.SYSTEM for m in pruned)
    assert pruned[0].content == "rules"


def test_noop_never_prunes():
    """The no-op manager never prunes."""
    manager = NoOpManager()
    history = [ChatMessage.user("x" * 10_000)]
    assert manager.should_prune(history, 10_000) is False
    assert manager.prune(history)[0] == history


@pytest.mark.parametrize(
    "build",
    [
        lambda: TokenBudgetManager(total_context_tokens=0),
        lambda: TokenBudgetManager(total_context_tokens=100, safety_buffer=-1),
        lambda: TokenBudgetManager(total_context_tokens=100, input_output_ratio=0),
        lambda: SlidingWindowManager(max_messages=0),
        lambda: MessageTypeManager(max_messages=0),
        lambda: SummarizationManager(max_input_tokens=0),
        lambda: Workflow.builder().with_max_context_tokens(0),
        lambda: Workflow.builder().with_input_output_ratio(-1.0),
    ],
)
def test_invalid_context_settings_raise_context_error(build):
    """Unusable pruning or budget settings raise ContextError."""
    with pytest.raises(ContextError) as exc_info:
        build()
    assert exc_info.value.to_data()["code"] == "context_error"
