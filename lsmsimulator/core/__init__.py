"""Virtual clock and event queue."""

from lsmsimulator.core.event import CompactionEvent, Event, EventType, FlushEvent, WriteEvent
from lsmsimulator.core.event_heap import EventQueue
from lsmsimulator.core.temporal import Instant

__all__ = [
    "CompactionEvent",
    "Event",
    "EventQueue",
    "EventType",
    "FlushEvent",
    "Instant",
    "WriteEvent",
]
