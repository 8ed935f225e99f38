"""Tests for events/bus.py -- async pub/sub keyed by run id.

Covers publish/subscribe, buffering before the first subscriber, the
close_run sentinel, bounded history and the global singleton accessor.
"""

import asyncio

from forge.events.bus import EventBus, get_event_bus, reset_event_bus
from forge.events.types import EventType, ForgeEvent

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_event(
    run_id: str = "run_test",
    event_type: EventType = EventType.PHASE_STARTED,
    phase: str | None = "01",
) -> ForgeEvent:
    return ForgeEvent(type=event_type, run_id=run_id, phase=phase, data={"test": True})


# =========================================================================
# Subscribe / Publish basics
# =========================================================================


class TestSubscribePublish:
    """Basic subscribe and async publish."""

    async def test_publish_delivers_to_subscriber(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1"))
        received = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert received.type == EventType.PHASE_STARTED
        assert received.phase == "01"

    async def test_publish_multiple_subscribers(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("run_1")
        q2 = event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1"))
        r1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        r2 = await asyncio.wait_for(q2.get(), timeout=1.0)
        assert r1.type == r2.type == EventType.PHASE_STARTED
        assert event_bus.get_subscriber_count("run_1") == 2

    async def test_publish_does_not_cross_runs(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe("run_1")
        q2 = event_bus.subscribe("run_2")
        await event_bus.publish(_make_event("run_1"))
        assert (await asyncio.wait_for(q1.get(), timeout=1.0)).run_id == "run_1"
        assert q2.empty()

    async def test_unsubscribe_stops_delivery(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        event_bus.unsubscribe("run_1", queue)
        assert event_bus.get_subscriber_count("run_1") == 0
        await event_bus.publish(_make_event("run_1"))
        assert queue.empty()

    def test_unsubscribe_unknown_queue_is_ignored(self, event_bus: EventBus) -> None:
        event_bus.unsubscribe("run_1", asyncio.Queue())
        assert event_bus.get_subscriber_count("run_1") == 0


# =========================================================================
# Event Buffering
# =========================================================================


class TestEventBuffering:
    """Events published before a subscriber connects are buffered."""

    async def test_buffered_events_delivered_on_subscribe(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1", EventType.RUN_STARTED, None))
        await event_bus.publish(_make_event("run_1", EventType.WAVE_STARTED, None))

        queue = event_bus.subscribe("run_1")

        assert queue.qsize() == 2
        assert (await queue.get()).type == EventType.RUN_STARTED
        assert (await queue.get()).type == EventType.WAVE_STARTED

    async def test_buffer_goes_to_first_subscriber_only(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1"))
        first = event_bus.subscribe("run_1")
        second = event_bus.subscribe("run_1")
        assert first.qsize() == 1
        assert second.empty()


# =========================================================================
# Close and history
# =========================================================================


class TestCloseRun:
    """close_run sends a sentinel and keeps history."""

    async def test_close_sends_sentinel(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe("run_1")
        await event_bus.close_run("run_1")
        event = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert event.type == EventType.RUN_CLOSED
        assert event.data["reason"] == "run_closed"
        assert event_bus.get_subscriber_count("run_1") == 0

    async def test_history_survives_close(self, event_bus: EventBus) -> None:
        event_bus.subscribe("run_1")
        await event_bus.publish(_make_event("run_1"))
        await event_bus.close_run("run_1")
        history = event_bus.get_event_history("run_1")
        assert [event.type for event in history] == [EventType.PHASE_STARTED]

    async def test_history_is_bounded(self, event_bus: EventBus) -> None:
        event_bus.MAX_HISTORY_PER_RUN = 3
        for phase in ("01", "02", "03", "04", "05"):
            await event_bus.publish(_make_event("run_1", phase=phase))
        assert [event.phase for event in event_bus.get_event_history("run_1")] == [
            "03",
            "04",
            "05",
        ]

    async def test_clear_history(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event("run_1"))
        event_bus.clear_event_history("run_1")
        assert event_bus.get_event_history("run_1") == []


# =========================================================================
# Global singleton
# =========================================================================


class TestGlobalBus:
    def test_get_event_bus_returns_singleton(self) -> None:
        reset_event_bus()
        assert get_event_bus() is get_event_bus()

    def test_reset_creates_new_instance(self) -> None:
        first = get_event_bus()
        reset_event_bus()
        assert get_event_bus() is not first
