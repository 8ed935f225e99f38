"""Event system for orchestrator runs.

Key Components:
    - EventType: Enum of all event types
    - ForgeEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub keyed by run id
"""

from forge.events.bus import EventBus, get_event_bus, reset_event_bus
from forge.events.types import EventType, ForgeEvent

__all__ = [
    "EventBus",
    "EventType",
    "ForgeEvent",
    "get_event_bus",
    "reset_event_bus",
]
