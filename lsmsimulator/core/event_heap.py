import heapq
from collections.abc import Iterator
from itertools import count
from typing import Optional, Union

from lsmsimulator.core.event import Event, EventType, FlushEvent


class EventQueue:
    def __init__(self, events: list[Event] | None = None):
        """Pending events ordered by (time, sequence).

        Entries are stored as ``(time_ns, sequence, event)`` tuples. The
        sequence is assigned here on push from a per-queue counter, so two
        events at the same instant always pop in the order they were pushed
        and two runs with the same inputs replay identically.
        """
        self._heap: list[tuple[int, int, Event]] = []
        self._counter = count()
        if events:
            self.push(events)

    def push(self, events: Union[Event, list[Event]]):
        """Push an Event or a list of Events."""
        if isinstance(events, list):
            for event in events:
                self._push_one(event)
        else:
            self._push_one(events)

    def _push_one(self, event: Event) -> None:
        if event.time.nanoseconds < 0:
            raise ValueError(f"cannot schedule {event!r} at negative time")
        event.sequence = next(self._counter)
        heapq.heappush(self._heap, (event.time.nanoseconds, event.sequence, event))

    def pop(self) -> Optional[Event]:
        """Remove and return the earliest event, or None when empty."""
        if not self._heap:
            return None
        return heapq.heappop(self._heap)[2]

    def peek(self) -> Optional[Event]:
        if not self._heap:
            return None
        return self._heap[0][2]

    def is_empty(self) -> bool:
        return not self._heap

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def clear(self) -> None:
        """Drop every pending event. The sequence counter keeps counting."""
        self._heap.clear()

    def events(self) -> Iterator[Event]:
        """Pending events in pop order, without removing them."""
        for _, _, event in sorted(self._heap, key=lambda entry: entry[:2]):
            yield event

    def count_events(self, event_type: EventType) -> int:
        return sum(1 for _, _, event in self._heap if event.event_type is event_type)

    def count_write_events(self) -> int:
        return self.count_events(EventType.WRITE)

    def find_next_flush_event(self) -> Optional[FlushEvent]:
        """Earliest pending flush, used to avoid scheduling a duplicate flush."""
        best = None
        for time_ns, sequence, event in self._heap:
            if event.event_type is EventType.FLUSH and (best is None or (time_ns, sequence) < best[:2]):
                best = (time_ns, sequence, event)
        return best[2] if best else None
