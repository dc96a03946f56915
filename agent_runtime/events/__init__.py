"""Event bus factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import RuntimeConfig, load_config
from .bus import EventBus, EventEmitter, Subscription
from .models import (
    UNKNOWN_TOOL_ID,
    ComponentStatus,
    Event,
    EventScope,
    EventType,
    is_tool_id,
    validate_component_id,
)


def get_event_bus(config: Optional[RuntimeConfig] = None) -> EventBus:
    """Factory function to get an event bus sized from the configuration."""

    config = config or load_config()
    return EventBus(subscriber_queue_size=config.events.subscriber_queue_size)


__all__ = [
    "ComponentStatus",
    "Event",
    "EventBus",
    "EventEmitter",
    "EventScope",
    "EventType",
    "Subscription",
    "UNKNOWN_TOOL_ID",
    "get_event_bus",
    "is_tool_id",
    "validate_component_id",
]
