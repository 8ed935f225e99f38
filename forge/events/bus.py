"""Async event bus for orchestrator run events.

Subscribers receive events for one run through an asyncio.Queue. Events
published before anyone subscribes are buffered and delivered to the first
subscriber, and every run keeps a bounded history for late readers.
"""

import asyncio
import threading
from collections import defaultdict

import structlog

from forge.events.types import EventType, ForgeEvent

logger = structlog.get_logger(__name__)


class EventBus:
    """Async pub/sub event bus keyed by run id.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("run_123")
        >>> await bus.publish(ForgeEvent(
        ...     type=EventType.PHASE_STARTED, run_id="run_123", phase="01"
        ... ))
        >>> event = await queue.get()
        >>> await bus.close_run("run_123")

    Attributes:
        _subscribers: Dict mapping run_id to list of subscriber queues
        _event_buffer: Dict mapping run_id to events published before any subscriber
        _event_history: Dict mapping run_id to its most recent events
        _lock: Threading lock guarding the registries
    """

    # Maximum number of events retained per run.
    MAX_HISTORY_PER_RUN = 5000

    # Seconds to wait on a stalled subscriber before dropping the event for it.
    DELIVERY_TIMEOUT_SECONDS = 5.0

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[ForgeEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[ForgeEvent]] = defaultdict(list)
        self._event_history: dict[str, list[ForgeEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.debug("event_bus_initialized")

    def subscribe(self, run_id: str) -> asyncio.Queue[ForgeEvent]:
        """Subscribe to events for a run.

        Buffered events for the run are delivered to the new queue at once.

        Args:
            run_id: The run to subscribe to

        Returns:
            An asyncio.Queue that receives ForgeEvent objects for the run
        """
        queue: asyncio.Queue[ForgeEvent] = asyncio.Queue()
        buffered_events: list[ForgeEvent] = []

        with self._lock:
            self._subscribers[run_id].append(queue)
            subscriber_count = len(self._subscribers[run_id])
            if run_id in self._event_buffer:
                buffered_events = self._event_buffer.pop(run_id)

        for event in buffered_events:
            queue.put_nowait(event)

        logger.info(
            "subscriber_added",
            run_id=run_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[ForgeEvent]) -> None:
        """Remove a queue from a run's subscribers. Unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(run_id)
            if not queues or queue not in queues:
                logger.warning("unsubscribe_queue_not_found", run_id=run_id)
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[run_id]
            logger.info("subscriber_removed", run_id=run_id, subscriber_count=len(queues))

    async def publish(self, event: ForgeEvent) -> None:
        """Publish an event to every subscriber of its run.

        With no subscribers the event is buffered until one connects. Every
        event except the close sentinel is also kept in the run's history.

        Args:
            event: The ForgeEvent to publish
        """
        with self._lock:
            if event.type != EventType.RUN_CLOSED:
                history = self._event_history[event.run_id]
                history.append(event)
                if len(history) > self.MAX_HISTORY_PER_RUN:
                    self._event_history[event.run_id] = history[-self.MAX_HISTORY_PER_RUN:]

            subscribers = list(self._subscribers.get(event.run_id, []))
            if not subscribers:
                self._event_buffer[event.run_id].append(event)
                logger.debug(
                    "event_buffered",
                    run_id=event.run_id,
                    event_type=event.type.value,
                    buffer_size=len(self._event_buffer[event.run_id]),
                )
                return

        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=self.DELIVERY_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )

        logger.debug(
            "event_published",
            run_id=event.run_id,
            event_type=event.type.value,
            phase=event.phase,
            subscriber_count=len(subscribers),
        )

    def get_event_history(self, run_id: str) -> list[ForgeEvent]:
        """Return the stored events for a run in chronological order."""
        with self._lock:
            return list(self._event_history.get(run_id, []))

    async def close_run(self, run_id: str) -> None:
        """Close a run and notify its subscribers.

        Each subscriber receives a RUN_CLOSED sentinel so its read loop can
        stop. Subscribers and buffered events are dropped; history is kept.

        Args:
            run_id: The run to close
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(run_id, [])
            buffer_count = len(self._event_buffer.pop(run_id, []))

        for queue in queues_to_signal:
            await queue.put(
                ForgeEvent(type=EventType.RUN_CLOSED, run_id=run_id, data={"reason": "run_closed"})
            )

        logger.info(
            "run_closed",
            run_id=run_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=buffer_count,
        )

    def get_subscriber_count(self, run_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(run_id, []))

    def clear_event_history(self, run_id: str) -> None:
        with self._lock:
            self._event_history.pop(run_id, None)


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance, creating it on first use."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global EventBus instance. Mainly useful in tests."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.debug("event_bus_reset")
