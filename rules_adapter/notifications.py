"""
One-way notification channel between the adapter and its consumer (a UI).

Two events exist:
- SITUATION_CHANGED: no payload, consumers re-evaluate what they display
- RULES_EVALUATED: payload is the EvaluationBatchResult

Delivery is fire-and-forget: handler errors are logged and never reach the
adapter, and publishing with nobody listening is a no-op. Events are neither
batched nor debounced; in async mode a single worker delivers them in the
order they were published.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from queue import Empty, Queue
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from rules_adapter.evaluation import EvaluationBatchResult

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of events published by the adapter."""
    SITUATION_CHANGED = auto()
    RULES_EVALUATED = auto()


@dataclass
class AdapterEvent:
    """
    Base class for adapter events.

    Attributes:
        event_type: Type of the event
        timestamp: When the event was created
        sequence: Position in the publishing order, set by the bus
        data: Event-specific data
    """
    event_type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    sequence: int = 0
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.name,
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
            "data": self.data,
        }


@dataclass
class SituationChangedEvent(AdapterEvent):
    """Emitted once per accepted situation update."""

    def __init__(self):
        super().__init__(event_type=EventType.SITUATION_CHANGED)


@dataclass
class RulesEvaluatedEvent(AdapterEvent):
    """Emitted once per batch evaluation."""

    batch: EvaluationBatchResult = field(default_factory=EvaluationBatchResult)

    def __init__(self, batch: EvaluationBatchResult):
        super().__init__(event_type=EventType.RULES_EVALUATED)
        self.batch = batch

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["data"] = {"rules": self.batch.to_list()}
        return result


EventHandler = Callable[[AdapterEvent], None]


@runtime_checkable
class NotificationChannel(Protocol):
    """Anything the adapter can publish events to."""

    def publish(self, event: AdapterEvent) -> None:
        ...


@runtime_checkable
class SituationConsumer(Protocol):
    """External consumer of adapter events."""

    def on_situation_changed(self, event: SituationChangedEvent) -> None:
        ...

    def on_rules_evaluated(self, event: RulesEvaluatedEvent) -> None:
        ...


class CallbackConsumer:
    """
    SituationConsumer built from plain callables.

    Example:
        consumer = CallbackConsumer(
            situation_changed=lambda: refresh(),
            rules_evaluated=lambda batch: render(batch.to_list()),
        )
    """

    def __init__(
        self,
        situation_changed: Optional[Callable[[], None]] = None,
        rules_evaluated: Optional[Callable[[EvaluationBatchResult], None]] = None,
    ):
        self._situation_changed = situation_changed
        self._rules_evaluated = rules_evaluated

    def on_situation_changed(self, event: SituationChangedEvent) -> None:
        if self._situation_changed is not None:
            self._situation_changed()

    def on_rules_evaluated(self, event: RulesEvaluatedEvent) -> None:
        if self._rules_evaluated is not None:
            self._rules_evaluated(event.batch)


class NullChannel:
    """Channel that drops every event (headless use)."""

    def publish(self, event: AdapterEvent) -> None:
        pass


class AdapterEventBus:
    """
    Event bus delivering adapter events to subscribers.

    Responsibilities:
        - Publish events from the adapter
        - Let subscribers listen to one event type or to all of them
        - Optionally deliver on a worker thread so the adapter never waits
        - Keep a short history for debugging
    """

    def __init__(
        self,
        async_mode: bool = False,
        history_size: int = 100
    ):
        """
        Args:
            async_mode: If True, deliver events on a worker thread
            history_size: Number of recent events kept in history
        """
        self._handlers: Dict[EventType, List[EventHandler]] = {
            event_type: [] for event_type in EventType
        }
        self._global_handlers: List[EventHandler] = []
        self._history: List[AdapterEvent] = []
        self._history_size = history_size
        self._async_mode = async_mode
        self._event_queue: Optional[Queue] = Queue() if async_mode else None
        self._worker_thread: Optional[threading.Thread] = None
        self._running = False
        self._state_lock = threading.Lock()
        self._sequence = itertools.count(1)

        if async_mode:
            self._start_worker()

    @property
    def async_mode(self) -> bool:
        return self._async_mode

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(f"Handler subscribed to {event_type.name}")

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)
        logger.debug("Global handler subscribed to all events")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)
            logger.debug(f"Handler unsubscribed from {event_type.name}")

    def unsubscribe_all(self, handler: EventHandler) -> None:
        if handler in self._global_handlers:
            self._global_handlers.remove(handler)

    def has_subscribers(self) -> bool:
        return bool(self._global_handlers) or any(self._handlers.values())

    def publish(self, event: AdapterEvent) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event: Event to publish
        """
        event.sequence = next(self._sequence)
        self._history.append(event)
        if len(self._history) > self._history_size:
            self._history.pop(0)

        with self._state_lock:
            queued = self._running and self._event_queue is not None
            if queued:
                self._event_queue.put(event)
        if not queued:
            # no worker (sync mode or stopped): deliver on the caller thread
            self._process_event(event)

    def _process_event(self, event: AdapterEvent) -> None:
        for handler in list(self._handlers[event.event_type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event.event_type.name}: {e}")

        for handler in list(self._global_handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in global event handler: {e}")

    def _start_worker(self) -> None:
        self._running = True
        self._worker_thread = threading.Thread(
            target=self._worker_loop,
            name="rules-adapter-events",
            daemon=True
        )
        self._worker_thread.start()
        logger.debug("Event bus async worker started")

    def _worker_loop(self) -> None:
        while self._running or not self._event_queue.empty():
            try:
                event = self._event_queue.get(timeout=0.1)
            except Empty:
                continue
            self._process_event(event)
            self._event_queue.task_done()

    def flush(self) -> None:
        """Block until every queued event was delivered (async mode)."""
        if self._event_queue is not None and self._worker_thread is not None:
            self._event_queue.join()

    def stop(self) -> None:
        """Deliver pending events and stop the worker. Later events are delivered synchronously."""
        with self._state_lock:
            self._running = False
        if self._worker_thread:
            self._worker_thread.join(timeout=2.0)
            self._worker_thread = None
            logger.debug("Event bus async worker stopped")

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        limit: int = 10
    ) -> List[AdapterEvent]:
        """
        Recent events, most recent last.

        Args:
            event_type: Filter by event type (None for all)
            limit: Maximum number of events to return
        """
        events = self._history
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]

    def clear_history(self) -> None:
        self._history.clear()


class EventRecorder:
    """
    Subscriber that records every event it receives, in order.

    Handy for headless runs and tests:
        recorder = EventRecorder()
        bus.subscribe_all(recorder.handle_event)
    """

    def __init__(self):
        self.events: List[AdapterEvent] = []

    def handle_event(self, event: AdapterEvent) -> None:
        self.events.append(event)

    @property
    def event_types(self) -> List[EventType]:
        return [event.event_type for event in self.events]

    def count(self, event_type: EventType) -> int:
        return sum(1 for event in self.events if event.event_type == event_type)

    def reset(self) -> None:
        self.events.clear()
