"""Bounded notification channel from the simulator to its host.

The simulator publishes a Notification for every noteworthy transition
(flush, compaction, stall, OOM, fault, reset, config change). Publishing
never blocks: when the channel is full the new notification is dropped and
counted, so a slow consumer cannot hold up the simulation.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


@dataclass(frozen=True)
class Notification:
    """One event-log entry.

    Attributes:
        time_s: Virtual time the notification refers to, None for log records
            emitted outside event processing.
        kind: Short category, e.g. "flush", "compaction", "stall", "oom", "log".
        level: Log-level name.
        message: Human-readable text.
    """

    time_s: float | None
    kind: str
    message: str
    level: str = "INFO"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationChannel:
    """Fixed-capacity, drop-when-full queue of notifications.

    Thread-safe: the simulator publishes from whichever thread steps it and
    a boundary task drains from another.

    Args:
        capacity: Maximum queued notifications.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._queue: queue.Queue[Notification] = queue.Queue(maxsize=capacity)
        self._dropped = 0
        self._lock = threading.Lock()

    def publish(self, notification: Notification) -> bool:
        """Enqueue without blocking. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            with self._lock:
                self._dropped += 1
                dropped = self._dropped
            # power-of-two throttling keeps a flood of drops from flooding the log too
            if dropped & (dropped - 1) == 0:
                logger.warning("notification channel full (capacity %d), %d dropped so far", self.capacity, dropped)
            return False
        return True

    def drain(self, max_items: int | None = None) -> list[Notification]:
        """Remove and return up to ``max_items`` queued notifications, oldest first."""
        items: list[Notification] = []
        while max_items is None or len(items) < max_items:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return items

    def clear(self) -> None:
        self.drain()

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        return self._queue.qsize()

    def __repr__(self) -> str:
        return f"NotificationChannel({len(self)}/{self.capacity}, dropped={self.dropped})"


class NotificationLogHandler(logging.Handler):
    """Forwards records from the ``lsmsimulator`` logger hierarchy into a channel."""

    def __init__(
        self,
        channel: NotificationChannel,
        clock: Callable[[], float] | None = None,
        level: int = logging.INFO,
    ) -> None:
        super().__init__(level=level)
        self._channel = channel
        self._clock = clock

    def emit(self, record: logging.LogRecord) -> None:
        # never let the forwarding handler log about itself
        if record.name == __name__:
            return
        try:
            time_s: float | None = None
            if self._clock is not None:
                with contextlib.suppress(Exception):
                    time_s = self._clock()

            logger_name = record.name
            if logger_name.startswith("lsmsimulator."):
                logger_name = logger_name[len("lsmsimulator.") :]

            self._channel.publish(
                Notification(
                    time_s=time_s,
                    kind="log",
                    level=record.levelname,
                    message=f"{datetime.now(UTC):%H:%M:%S} {logger_name}: {record.getMessage()}",
                )
            )
        except Exception:
            self.handleError(record)
