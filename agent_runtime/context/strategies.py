"""Pruning strategies that keep a conversation inside its budget.

Every strategy keeps system messages. Token counts come from
:func:`estimate_tokens`, a deterministic character based heuristic.
"""

from __future__ import annotations

import abc
import logging
from typing import List, Optional, Sequence, Set, Tuple

from ..constants import CHARS_PER_TOKEN, ROLE_TOKENS, SUMMARY_PREVIEW_CHARS, TOOL_CALL_TOKENS
from ..errors import ContextError
from ..llm.types import ChatMessage, Role

logger = logging.getLogger(__name__)


def estimate_message_tokens(message: ChatMessage) -> int:
    tokens = len(message.content) // CHARS_PER_TOKEN + ROLE_TOKENS
    if message.tool_calls:
        tokens += TOOL_CALL_TOKENS * len(message.tool_calls)
    return tokens


def estimate_tokens(messages: Sequence[ChatMessage]) -> int:
    return sum(estimate_message_tokens(message) for message in messages)


class ContextManager(metaclass=abc.ABCMeta):
    """Decides when and how to shrink a conversation."""

    name: str = "base"

    def estimate_tokens(self, messages: Sequence[ChatMessage]) -> int:
        return estimate_tokens(messages)

    @abc.abstractmethod
    def should_prune(self, history: Sequence[ChatMessage], current_tokens: int) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def prune(self, history: Sequence[ChatMessage]) -> Tuple[List[ChatMessage], int]:
        """Return the reduced history and its token estimate."""
        raise NotImplementedError


class NoOpManager(ContextManager):
    """Never prunes."""

    name = "noop"

    def should_prune(self, history: Sequence[ChatMessage], current_tokens: int) -> bool:
        return False

    def prune(self, history: Sequence[ChatMessage]) -> Tuple[List[ChatMessage], int]:
        messages = list(history)
        return messages, self.estimate_tokens(messages)


class TokenBudgetManager(ContextManager):
    """Drops the oldest non-system messages once the input budget is exceeded.

    The input budget is ``total * ratio / (ratio + 1)`` minus
    ``safety_buffer``. The newest ``min_recent`` non-system messages are
    never dropped.
    """

    name = "token_budget"

    def __init__(
        self,
        total_context_tokens: int,
        input_output_ratio: float = 4.0,
        safety_buffer: int = 0,
        min_recent: int = 1,
    ) -> None:
        if total_context_tokens <= 0:
            raise ContextError("total_context_tokens must be positive")
        if safety_buffer < 0:
            raise ContextError("safety_buffer must not be negative")
        if input_output_ratio <= 0:
            raise ContextError("input_output_ratio must be positive")
        self.total_context_tokens = total_context_tokens
        self.input_output_ratio = input_output_ratio
        self.safety_buffer = safety_buffer
        self.min_recent = min_recent

    @property
    def max_input_tokens(self) -> int:
        ratio = self.input_output_ratio
        return int(self.total_context_tokens * ratio / (ratio + 1))

    @property
    def max_output_tokens(self) -> int:
        return int(self.total_context_tokens / (self.input_output_ratio + 1))

    @property
    def budget(self) -> int:
        return max(self.max_input_tokens - self.safety_buffer, 0)

    def should_prune(self, history: Sequence[ChatMessage], current_tokens: int) -> bool:
        return current_tokens > self.budget

    def prune(self, history: Sequence[ChatMessage]) -> Tuple[List[ChatMessage], int]:
        messages = list(history)
        tokens = self.estimate_tokens(messages)
        while tokens > self.budget:
            removable = [i for i, m in enumerate(messages) if not m.is_system]
            if len(removable) <= self.min_recent:
                logger.warning(
                    f"Context still at {tokens} tokens after pruning; budget is {self.budget}"
                )
                break
            removed = messages.pop(removable[0])
            tokens -= estimate_message_tokens(removed)
        return messages, tokens


class SlidingWindowManager(ContextManager):
    """Keeps system messages plus the most recent messages up to ``max_messages``."""

    name = "sliding_window"

    def __init__(self, max_messages: int) -> None:
        if max_messages < 1:
            raise ContextError("max_messages must be at least 1")
        self.max_messages = max_messages

    def should_prune(self, history: Sequence[ChatMessage], current_tokens: int) -> bool:
        return len(history) > self.max_messages

    def prune(self, history: Sequence[ChatMessage]) -> Tuple[List[ChatMessage], int]:
        messages = list(history)
        excess = len(messages) - self.max_messages
        if excess > 0:
            drop: Set[int] = set()
            for index, message in enumerate(messages):
                if len(drop) >= excess:
                    break
                if not message.is_system:
                    drop.add(index)
            messages = [m for i, m in enumerate(messages) if i not in drop]
        return messages, self.estimate_tokens(messages)


class MessageTypeManager(ContextManager):
    """Prunes by message priority.

    System messages are never removed and the last ``keep_recent_pairs``
    user turns (with the assistant replies that follow them) are kept.
    Tool results go first, then older user and assistant messages.
    """

    name = "message_type"

    def __init__(self, max_messages: int, keep_recent_pairs: int = 5) -> None:
        if max_messages < 1:
            raise ContextError("max_messages must be at least 1")
        self.max_messages = max_messages
        self.keep_recent_pairs = keep_recent_pairs

    def should_prune(self, history: Sequence[ChatMessage], current_tokens: int) -> bool:
        return len(history) > self.max_messages

    def _protected(self, messages: List[ChatMessage]) -> Set[int]:
        protected = {i for i, m in enumerate(messages) if m.is_system}
        if self.keep_recent_pairs <= 0:
            return protected
        user_indices = [i for i, m in enumerate(messages) if m.role == Role.USER]
        if user_indices:
            start = user_indices[-self.keep_recent_pairs:][0]
        else:
            start = len(messages)
        protected.update(
            i for i in range(start, len(messages)) if messages[i].role in (Role.USER, Role.ASSISTANT)
        )
        return protected

    def prune(self, history: Sequence[ChatMessage]) -> Tuple[List[ChatMessage], int]:
        messages = list(history)
        excess = len(messages) - self.max_messages
        if excess > 0:
            protected = self._protected(messages)
            tool_first = [i for i, m in enumerate(messages) if m.role == Role.TOOL and i not in protected]
            conversational = [
                i for i, m in enumerate(messages)
                if m.role in (Role.USER, Role.ASSISTANT) and i not in protected
            ]
            drop = set((tool_first + conversational)[:excess])
            messages = [m for i, m in enumerate(messages) if i not in drop]
            if len(messages) > self.max_messages:
                logger.warning(
                    f"{len(messages)} messages remain after pruning; all are protected"
                )
        return messages, self.estimate_tokens(messages)


def _preview(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= SUMMARY_PREVIEW_CHARS:
        return text
    return text[:SUMMARY_PREVIEW_CHARS] + "..."


class SummarizationManager(ContextManager):
    """Folds older messages into one summary message.

    The newest ``keep_recent`` messages are kept verbatim, as are system
    messages from the older part. If the result is still over
    ``max_input_tokens`` the oldest non-system messages are dropped.
    """

    name = "summarization"

    def __init__(
        self,
        max_input_tokens: int,
        summarization_threshold: Optional[int] = None,
        keep_recent: int = 10,
    ) -> None:
        if max_input_tokens <= 0:
            raise ContextError("max_input_tokens must be positive")
        self.max_input_tokens = max_input_tokens
        self.summarization_threshold = (
            summarization_threshold
            if summarization_threshold is not None
            else int(max_input_tokens * 0.8)
        )
        self.keep_recent = keep_recent

    def should_prune(self, history: Sequence[ChatMessage], current_tokens: int) -> bool:
        return current_tokens > self.summarization_threshold

    def summarize(self, messages: Sequence[ChatMessage]) -> ChatMessage:
        users = [m for m in messages if m.role == Role.USER]
        assistants = [m for m in messages if m.role == Role.ASSISTANT and m.content]
        tools = [m for m in messages if m.role == Role.TOOL]

        lines = [f"- {len(users)} user inputs and {len(assistants)} assistant responses"]
        if tools:
            lines.append(f"- {len(tools)} tool results")
        if users:
            lines.append(f"- Initial topic: {_preview(users[0].content)}")
        if assistants:
            lines.append(f"- Latest response: {_preview(assistants[-1].content)}")
        content = (
            "Summary of previous conversation:\n\n"
            + "\n".join(lines)
            + "\n\n[This is a compressed summary. Earlier messages were removed to save context space.]"
        )
        return ChatMessage(role=Role.SYSTEM, content=content, name="conversation_summary")

    def prune(self, history: Sequence[ChatMessage]) -> Tuple[List[ChatMessage], int]:
        messages = list(history)
        if len(messages) > self.keep_recent:
            split = len(messages) - self.keep_recent
            older, recent = messages[:split], messages[split:]
            kept_system = [m for m in older if m.is_system]
            folded = [m for m in older if not m.is_system]
            if folded:
                messages = kept_system + [self.summarize(folded)] + recent

        tokens = self.estimate_tokens(messages)
        while tokens > self.max_input_tokens:
            removable = [i for i, m in enumerate(messages) if not m.is_system]
            if not removable:
                logger.warning(
                    f"Summarized context still at {tokens} tokens; limit is {self.max_input_tokens}"
                )
                break
            removed = messages.pop(removable[0])
            tokens -= estimate_message_tokens(removed)
        return messages, tokens
