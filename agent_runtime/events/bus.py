"""Append-only in-process event log with live fan-out."""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from ..constants import DEFAULT_SUBSCRIBER_QUEUE_SIZE
from .models import STATUS_FOR_TYPE, ComponentStatus, Event, EventScope, EventType, validate_component_id

logger = logging.getLogger(__name__)


def _wake(waiter: "asyncio.Future[None]") -> None:
    if not waiter.done():
        waiter.set_result(None)


class Subscription:
    """Live view on an :class:`EventBus`.

    Live events are buffered in append order, up to ``maxsize``. When the
    consumer falls behind and the buffer is full, newer events are dropped
    for this subscriber only and counted in ``dropped``; the full history
    remains available through :meth:`EventBus.events_from`. A subscription
    whose event loop has closed is detached from the bus.
    """

    def __init__(self, bus: "EventBus", maxsize: int, backlog: List[Event]) -> None:
        self._bus = bus
        self._maxsize = maxsize
        self._backlog: Deque[Event] = deque(backlog)
        self._live: Deque[Event] = deque()
        self._mutex = threading.Lock()
        self._waiter: Optional[asyncio.Future[None]] = None
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: Event) -> bool:
        """Buffer ``event``. Returns False once this subscriber is gone for good."""
        with self._mutex:
            if self._closed:
                return False
            if self._loop is not None and self._loop.is_closed():
                self._closed = True
                logger.warning(f"Subscriber event loop is closed, detaching at event {event.offset}")
                return False
            if len(self._live) >= self._maxsize:
                self.dropped += 1
                logger.warning(
                    f"Subscriber queue full, dropped event {event.offset} "
                    f"({event.scope.value}:{event.event_type.value})"
                )
                return True
            self._live.append(event)
            waiter = self._waiter
        if waiter is not None:
            self._notify(waiter)
        return not self._closed

    def _notify(self, waiter: "asyncio.Future[None]") -> None:
        try:
            waiter.get_loop().call_soon_threadsafe(_wake, waiter)
        except RuntimeError:
            # the consumer's loop closed while it was waiting
            with self._mutex:
                self._closed = True
            logger.warning("Subscriber event loop is closed, detaching")

    async def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Wait for the next event. Returns ``None`` once the subscription is closed."""
        while True:
            with self._mutex:
                if self._backlog:
                    return self._backlog.popleft().model_copy(deep=True)
                if self._live:
                    return self._live.popleft().model_copy(deep=True)
                if self._closed:
                    return None
                loop = asyncio.get_running_loop()
                self._loop = loop
                waiter = loop.create_future()
                self._waiter = waiter
            try:
                if timeout is None:
                    await waiter
                else:
                    await asyncio.wait_for(waiter, timeout)
            finally:
                with self._mutex:
                    if self._waiter is waiter:
                        self._waiter = None

    def drain(self) -> List[Event]:
        """Return every event that is ready without waiting."""
        with self._mutex:
            events = list(self._backlog) + list(self._live)
            self._backlog.clear()
            self._live.clear()
        return [event.model_copy(deep=True) for event in events]

    def close(self) -> None:
        """Stop receiving events and end any pending iteration."""
        with self._mutex:
            if self._closed:
                return
            self._closed = True
            waiter = self._waiter
        self._bus._remove(self)
        if waiter is not None:
            self._notify(waiter)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class EventBus:
    """Process-local, append-only event log.

    ``append`` assigns a strictly increasing offset, records the event and
    hands it to every live subscriber without awaiting any of them.
    """

    def __init__(self, subscriber_queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE) -> None:
        if subscriber_queue_size < 1:
            raise ValueError("subscriber_queue_size must be at least 1")
        self._events: List[Event] = []
        self._subscribers: List[Subscription] = []
        self._queue_size = subscriber_queue_size
        self._lock = threading.Lock()

    def append(
        self,
        scope: EventScope,
        event_type: EventType,
        component_id: str,
        *,
        status: Optional[ComponentStatus] = None,
        workflow_id: Optional[str] = None,
        parent_workflow_id: Optional[str] = None,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """Record a new event and fan it out to subscribers."""
        scope = EventScope(scope)
        event_type = EventType(event_type)
        validate_component_id(scope, component_id)
        with self._lock:
            event = Event(
                offset=len(self._events),
                scope=scope,
                event_type=event_type,
                component_id=component_id,
                status=status or STATUS_FOR_TYPE[event_type],
                workflow_id=workflow_id,
                parent_workflow_id=parent_workflow_id,
                message=message,
                data=copy.deepcopy(dict(data or {})),
            )
            self._events.append(event)
            self._subscribers = [s for s in self._subscribers if s._deliver(event)]
        logger.debug(f"Event {event.offset}: {scope.value}:{event_type.value} {component_id}")
        return event.model_copy(deep=True)

    def subscribe(self, from_offset: Optional[int] = None, maxsize: Optional[int] = None) -> Subscription:
        """Register a live listener.

        Without ``from_offset`` only events appended after this call are
        delivered. With ``from_offset`` the stored events from that offset
        are replayed first, followed by live events, with no gap and no
        duplicate between the two.
        """
        with self._lock:
            backlog = self._events[max(from_offset, 0):] if from_offset is not None else []
            subscription = Subscription(self, maxsize or self._queue_size, backlog)
            self._subscribers.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def events_from(self, offset: int = 0) -> List[Event]:
        """All stored events with offset >= ``offset``, in offset order."""
        with self._lock:
            stored = self._events[max(offset, 0):]
        return [event.model_copy(deep=True) for event in stored]

    @property
    def latest_offset(self) -> Optional[int]:
        with self._lock:
            return len(self._events) - 1 if self._events else None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def close(self) -> None:
        """Close every live subscription. The stored log is kept."""
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()

    def emitter(
        self, workflow_id: Optional[str] = None, parent_workflow_id: Optional[str] = None
    ) -> "EventEmitter":
        return EventEmitter(self, workflow_id, parent_workflow_id)


class EventEmitter:
    """Builds well-formed events for one workflow run and appends them to a bus."""

    def __init__(
        self,
        bus: EventBus,
        workflow_id: Optional[str] = None,
        parent_workflow_id: Optional[str] = None,
    ) -> None:
        self.bus = bus
        self.workflow_id = workflow_id
        self.parent_workflow_id = parent_workflow_id

    def emit(
        self,
        scope: EventScope,
        event_type: EventType,
        component_id: str,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Event:
        return self.bus.append(
            scope,
            event_type,
            component_id,
            workflow_id=self.workflow_id,
            parent_workflow_id=self.parent_workflow_id,
            message=message,
            data=data,
        )

    def _workflow_component(self) -> str:
        if not self.workflow_id:
            raise ValueError("Workflow events require a workflow id")
        return self.workflow_id

    def _step_component(self, step_index: int) -> str:
        return f"{self._workflow_component()}:step:{step_index}"

    # Workflow scope

    def workflow_started(self, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.WORKFLOW, EventType.STARTED, self._workflow_component(),
            f"Workflow {self.workflow_id} started", data,
        )

    def workflow_completed(self, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.WORKFLOW, EventType.COMPLETED, self._workflow_component(),
            f"Workflow {self.workflow_id} completed", data,
        )

    def workflow_failed(self, error: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.WORKFLOW, EventType.FAILED, self._workflow_component(), error, data)

    def workflow_canceled(self, reason: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.WORKFLOW, EventType.CANCELED, self._workflow_component(), reason, data)

    # Workflow step scope

    def step_started(self, step_index: int, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.WORKFLOW_STEP, EventType.STARTED, self._step_component(step_index),
            f"Step {step_index} started", data,
        )

    def step_completed(self, step_index: int, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.WORKFLOW_STEP, EventType.COMPLETED, self._step_component(step_index),
            f"Step {step_index} completed", data,
        )

    def step_failed(self, step_index: int, error: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.WORKFLOW_STEP, EventType.FAILED, self._step_component(step_index), error, data
        )

    def step_canceled(self, step_index: int, reason: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.WORKFLOW_STEP, EventType.CANCELED, self._step_component(step_index), reason, data
        )

    # Agent scope

    def agent_started(self, agent_name: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.AGENT, EventType.STARTED, agent_name, f"Agent {agent_name} started", data)

    def agent_completed(self, agent_name: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.AGENT, EventType.COMPLETED, agent_name, f"Agent {agent_name} completed", data
        )

    def agent_failed(self, agent_name: str, error: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.AGENT, EventType.FAILED, agent_name, error, data)

    def agent_canceled(self, agent_name: str, reason: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.AGENT, EventType.CANCELED, agent_name, reason, data)

    # LLM request scope

    def llm_started(self, agent_name: str, iteration: int, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.LLM_REQUEST, EventType.STARTED, f"{agent_name}:llm:{iteration}",
            "LLM request started", data,
        )

    def llm_progress(self, agent_name: str, iteration: int, chunk: str) -> Event:
        return self.emit(
            EventScope.LLM_REQUEST, EventType.PROGRESS, f"{agent_name}:llm:{iteration}",
            None, {"chunk": chunk},
        )

    def llm_completed(self, agent_name: str, iteration: int, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.LLM_REQUEST, EventType.COMPLETED, f"{agent_name}:llm:{iteration}",
            "LLM request completed", data,
        )

    def llm_failed(
        self, agent_name: str, iteration: int, error: str, data: Optional[Dict[str, Any]] = None
    ) -> Event:
        return self.emit(
            EventScope.LLM_REQUEST, EventType.FAILED, f"{agent_name}:llm:{iteration}", error, data
        )

    # Tool scope

    def tool_started(self, tool_name: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.TOOL, EventType.STARTED, tool_name, f"Tool {tool_name} started", data)

    def tool_completed(self, tool_name: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(
            EventScope.TOOL, EventType.COMPLETED, tool_name, f"Tool {tool_name} completed", data
        )

    def tool_failed(self, tool_name: str, error: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.TOOL, EventType.FAILED, tool_name, error, data)

    # System scope

    def system_progress(self, subsystem: str, message: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return self.emit(EventScope.SYSTEM, EventType.PROGRESS, f"system:{subsystem}", message, data)
