"""Conversation history shared by the steps of a workflow."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from ..constants import DEFAULT_INPUT_OUTPUT_RATIO, DEFAULT_MAX_CONTEXT_TOKENS
from ..llm.types import ChatMessage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContextMetadata(BaseModel):
    workflow_id: str = Field(default_factory=lambda: f"wf_{uuid.uuid4().hex[:12]}")
    created_at: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)
    step_count: int = 0


class WorkflowContext(BaseModel):
    """Chat history plus token budget settings.

    Every mutation takes an internal re-entrant lock for the duration of
    that single call only. Use :attr:`lock` to group several calls.
    """

    chat_history: List[ChatMessage] = Field(default_factory=list)
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)
    max_context_tokens: int = Field(default=DEFAULT_MAX_CONTEXT_TOKENS, gt=0)
    input_output_ratio: float = DEFAULT_INPUT_OUTPUT_RATIO

    _lock: Any = PrivateAttr(default_factory=threading.RLock)

    @field_validator("input_output_ratio")
    @classmethod
    def _positive_ratio(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("input_output_ratio must be positive")
        return value

    @property
    def lock(self) -> Any:
        return self._lock

    @property
    def max_input_tokens(self) -> int:
        ratio = self.input_output_ratio
        return int(self.max_context_tokens * ratio / (ratio + 1))

    @property
    def max_output_tokens(self) -> int:
        return int(self.max_context_tokens / (self.input_output_ratio + 1))

    def _touch(self) -> None:
        self.metadata.last_updated = _utcnow()

    def history(self) -> List[ChatMessage]:
        """Copy of the current messages."""
        with self._lock:
            return list(self.chat_history)

    def append(self, message: ChatMessage) -> None:
        with self._lock:
            self.chat_history.append(message)
            self._touch()

    def extend(self, messages: Iterable[ChatMessage]) -> None:
        with self._lock:
            self.chat_history.extend(messages)
            self._touch()

    def replace_history(self, messages: Iterable[ChatMessage]) -> None:
        with self._lock:
            self.chat_history = list(messages)
            self._touch()

    def clear(self) -> None:
        self.replace_history([])

    def increment_step(self) -> int:
        with self._lock:
            self.metadata.step_count += 1
            self._touch()
            return self.metadata.step_count

    def __len__(self) -> int:
        with self._lock:
            return len(self.chat_history)

    def snapshot(self) -> "WorkflowContext":
        """Independent copy with the same id and history."""
        return WorkflowContext.from_dict(self.to_dict())

    def fork(self) -> "WorkflowContext":
        """Copy for a branch: same history, new id, step count reset."""
        with self._lock:
            history = list(self.chat_history)
        return WorkflowContext(
            chat_history=[message.model_copy(deep=True) for message in history],
            metadata=ContextMetadata(workflow_id=f"{self.metadata.workflow_id}-fork"),
            max_context_tokens=self.max_context_tokens,
            input_output_ratio=self.input_output_ratio,
        )

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowContext":
        return cls.model_validate(data)

    def to_json(self) -> str:
        with self._lock:
            return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowContext":
        """Restore a context saved with :meth:`to_json`."""
        context = cls.model_validate_json(data)
        logger.debug(
            f"Restored context {context.metadata.workflow_id} with {len(context.chat_history)} messages"
        )
        return context
