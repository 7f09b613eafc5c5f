"""Event types processed by the simulator.

There are three kinds of event: a client write arriving, a memtable flush
completing, and a compaction completing. Flush and compaction events are
pushed when the work is *scheduled*; their timestamp is the completion time
computed by the resource model, and their payload carries everything needed
to apply the result.

Events are plain data. The simulator, not the event, owns the logic for
applying them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from lsmsimulator.core.temporal import Instant


class EventType(enum.Enum):
    WRITE = "write"
    FLUSH = "flush"
    COMPACTION = "compaction"


@dataclass(eq=False)
class Event:
    """Base event.

    Attributes:
        time: When the event fires.
        sequence: Tie-breaker assigned by the EventQueue on push. -1 until queued.
    """

    time: Instant
    sequence: int = field(default=-1, init=False)

    event_type = None  # overridden per subclass

    def sort_key(self) -> tuple[int, int]:
        return (self.time.nanoseconds, self.sequence)


@dataclass(eq=False)
class WriteEvent(Event):
    """A client write of ``size_mb`` arriving at ``time``."""

    size_mb: float = 1.0

    event_type = EventType.WRITE


@dataclass(eq=False)
class FlushEvent(Event):
    """Completion of a memtable flush into a new L0 file.

    Attributes:
        start_time: When the flush began using the disk.
        input_mb: Frozen memtable size.
        output_mb: L0 file size after compression.
        io_seconds: Disk time consumed.
        cpu_seconds: CPU time consumed (compression).
    """

    start_time: Instant = field(default_factory=Instant.epoch)
    input_mb: float = 0.0
    output_mb: float = 0.0
    io_seconds: float = 0.0
    cpu_seconds: float = 0.0

    event_type = EventType.FLUSH


@dataclass(eq=False)
class CompactionEvent(Event):
    """Completion of a compaction job moving files from one level to the next.

    Attributes:
        job_id: Identifier of the running compaction job in the LSM tree.
        from_level: Source level.
        to_level: Target level (``from_level + 1``).
        input_mb: Bytes read from both levels.
        output_mb: Bytes written to the target level.
        start_time: When the job started.
        io_seconds: Disk time consumed.
        cpu_seconds: CPU time consumed.
    """

    job_id: int = 0
    from_level: int = 0
    to_level: int = 1
    input_mb: float = 0.0
    output_mb: float = 0.0
    start_time: Instant = field(default_factory=Instant.epoch)
    io_seconds: float = 0.0
    cpu_seconds: float = 0.0

    event_type = EventType.COMPACTION
