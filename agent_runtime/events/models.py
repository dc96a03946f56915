"""Event contracts emitted by the runtime."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import ComponentIdError


class EventScope(str, Enum):
    """Which kind of component an event describes."""

    WORKFLOW = "workflow"
    WORKFLOW_STEP = "workflow_step"
    AGENT = "agent"
    LLM_REQUEST = "llm_request"
    TOOL = "tool"
    SYSTEM = "system"


class EventType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class ComponentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


STATUS_FOR_TYPE = {
    EventType.STARTED: ComponentStatus.RUNNING,
    EventType.PROGRESS: ComponentStatus.RUNNING,
    EventType.COMPLETED: ComponentStatus.COMPLETED,
    EventType.FAILED: ComponentStatus.FAILED,
    EventType.CANCELED: ComponentStatus.CANCELED,
}


UNKNOWN_TOOL_ID = "unknown_tool"


def _numbered_id(component_id: str, marker: str) -> bool:
    parts = component_id.split(":")
    return len(parts) == 3 and bool(parts[0]) and parts[1] == marker and parts[2].isdigit()


def is_tool_id(component_id: str) -> bool:
    """``<tool>`` or ``<tool>:<N>``."""
    name, sep, index = component_id.partition(":")
    if not name:
        return False
    return not sep or index.isdigit()


def validate_component_id(scope: EventScope, component_id: str) -> None:
    """Check ``component_id`` against the format required by ``scope``.

    Workflows and agents use a bare name without ``:``, workflow steps use
    ``<workflow>:step:<index>``, LLM requests use ``<agent>:llm:<iteration>``,
    tools use ``<tool>`` or ``<tool>:<N>`` and system events use
    ``system:<subsystem>``.
    """
    scope = EventScope(scope)
    if not component_id:
        raise ComponentIdError(
            f"Empty component id for scope {scope.value}", scope.value, component_id
        )
    if scope in (EventScope.WORKFLOW, EventScope.AGENT) and ":" in component_id:
        raise ComponentIdError(
            f"{scope.value} id must not contain ':', got {component_id!r}",
            scope.value,
            component_id,
        )
    if scope == EventScope.WORKFLOW_STEP and not _numbered_id(component_id, "step"):
        raise ComponentIdError(
            f"Workflow step id must look like 'workflow:step:N', got {component_id!r}",
            scope.value,
            component_id,
        )
    if scope == EventScope.LLM_REQUEST and not _numbered_id(component_id, "llm"):
        raise ComponentIdError(
            f"LLM request id must look like 'agent:llm:N', got {component_id!r}",
            scope.value,
            component_id,
        )
    if scope == EventScope.TOOL and not is_tool_id(component_id):
        raise ComponentIdError(
            f"Tool id must look like 'tool' or 'tool:N', got {component_id!r}",
            scope.value,
            component_id,
        )
    if scope == EventScope.SYSTEM and (
        not component_id.startswith("system:") or component_id == "system:"
    ):
        raise ComponentIdError(
            f"System id must look like 'system:<subsystem>', got {component_id!r}",
            scope.value,
            component_id,
        )


class Event(BaseModel):
    """A single immutable entry in the event log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4()}")
    offset: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scope: EventScope
    event_type: EventType = Field(alias="type")
    component_id: str
    status: ComponentStatus
    workflow_id: Optional[str] = None
    parent_workflow_id: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_component_id(self) -> "Event":
        validate_component_id(self.scope, self.component_id)
        return self

    @property
    def kind(self) -> tuple[EventScope, EventType]:
        """``(scope, type)`` pair, handy for matching event sequences."""
        return self.scope, self.event_type

    def to_json(self) -> str:
        """Serialize the event using the wire field name ``type``."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str) -> "Event":
        return cls.model_validate_json(data)
