"""In-memory write buffers.

The memtable set has three parts:

* the *active* memtable, which accepts client writes;
* *immutable* memtables, frozen when the active one filled up (or aged
  out) and waiting for their flush to finish;
* a *backlog* of writes that arrived while ingestion was stalled.

Writes stall when the number of immutable memtables reaches
``max_write_buffer_number``. Stalled writes are still held in memory, which
is what eventually OOM-kills the engine when flushes cannot keep up.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import InvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemtableStats:
    """Frozen snapshot of the write buffers.

    Attributes:
        active_mb: Bytes in the active memtable.
        immutable_count: Frozen memtables awaiting flush.
        immutable_mb: Bytes in frozen memtables.
        backlog_mb: Stalled writes held in memory.
        memory_mb: active + immutable + backlog.
        is_stalled: Whether ingestion is currently blocked.
    """

    active_mb: float = 0.0
    immutable_count: int = 0
    immutable_mb: float = 0.0
    backlog_mb: float = 0.0
    memory_mb: float = 0.0
    is_stalled: bool = False


class Memtable:
    """Active + immutable write buffers with stall tracking.

    The memtable decides *when* a buffer is frozen and when writes stall;
    it returns the sizes of newly frozen buffers and leaves scheduling the
    flushes to the caller.

    Args:
        flush_size_mb: Active memtable size that triggers a freeze.
        max_write_buffer_number: Immutable memtables allowed before stalling.
        flush_timeout_sec: Active memtable age that triggers a freeze. 0 disables.

    Example::

        mem = Memtable(flush_size_mb=64, max_write_buffer_number=2)
        frozen = mem.write(1.0, now)
        for size in frozen:
            schedule_flush(size)
    """

    def __init__(
        self,
        *,
        flush_size_mb: float,
        max_write_buffer_number: int,
        flush_timeout_sec: float = 0.0,
    ) -> None:
        self.flush_size_mb = flush_size_mb
        self.max_write_buffer_number = max_write_buffer_number
        self.flush_timeout_sec = flush_timeout_sec

        self.active_mb = 0.0
        self.opened_at = Instant.epoch()
        self._immutable: deque[float] = deque()
        self.backlog_mb = 0.0

        self.is_stalled = False
        self.stalled_since: Optional[Instant] = None

    # ----- queries -----

    @property
    def immutable_count(self) -> int:
        return len(self._immutable)

    @property
    def immutable_mb(self) -> float:
        return sum(self._immutable)

    @property
    def memory_mb(self) -> float:
        return self.active_mb + self.immutable_mb + self.backlog_mb

    def stats(self) -> MemtableStats:
        return MemtableStats(
            active_mb=self.active_mb,
            immutable_count=self.immutable_count,
            immutable_mb=self.immutable_mb,
            backlog_mb=self.backlog_mb,
            memory_mb=self.memory_mb,
            is_stalled=self.is_stalled,
        )

    def is_expired(self, now: Instant) -> bool:
        if self.flush_timeout_sec <= 0 or self.active_mb <= 0:
            return False
        return (now - self.opened_at).to_seconds() >= self.flush_timeout_sec

    # ----- mutations -----

    def write(self, size_mb: float, now: Instant) -> list[float]:
        """Accept a client write.

        Returns:
            Sizes of memtables frozen by this write (empty or one entry).
        """
        if size_mb < 0:
            raise InvariantViolation(f"negative write size {size_mb}")
        if self.is_stalled:
            self.backlog_mb += size_mb
            return []

        if self.active_mb == 0:
            self.opened_at = now
        self.active_mb += size_mb
        if self.active_mb >= self.flush_size_mb or self.is_expired(now):
            return [self._freeze(now)]
        return []

    def freeze_if_expired(self, now: Instant) -> list[float]:
        """Freeze the active memtable when it has been open past the timeout."""
        if self.is_stalled or not self.is_expired(now):
            return []
        return [self._freeze(now)]

    def _freeze(self, now: Instant) -> float:
        size = self.active_mb
        self._immutable.append(size)
        self.active_mb = 0.0
        self.opened_at = now
        if self.immutable_count >= self.max_write_buffer_number and not self.is_stalled:
            self.is_stalled = True
            self.stalled_since = now
            logger.info(
                "[%.3fs] write stall: %d immutable memtables (max %d)",
                now.to_seconds(),
                self.immutable_count,
                self.max_write_buffer_number,
            )
        return size

    def complete_flush(self, now: Instant) -> tuple[float, Optional[float], list[float]]:
        """Release the oldest immutable memtable after its flush finished.

        Clears a stall if a slot opened, then drains stalled writes into the
        active memtable.

        Returns:
            (flushed_mb, ended_stall_seconds, newly_frozen_sizes). ended_stall_seconds
            is None unless this flush cleared a stall.
        """
        if not self._immutable:
            raise InvariantViolation("flush completed with no immutable memtable")
        flushed = self._immutable.popleft()

        stall_seconds = None
        if self.is_stalled and self.immutable_count < self.max_write_buffer_number:
            stall_seconds = (now - self.stalled_since).to_seconds()
            self.is_stalled = False
            self.stalled_since = None
            logger.info("[%.3fs] write stall cleared after %.3fs", now.to_seconds(), stall_seconds)

        frozen = self._drain_backlog(now)
        return flushed, stall_seconds, frozen

    def _drain_backlog(self, now: Instant) -> list[float]:
        frozen: list[float] = []
        while self.backlog_mb > 0 and not self.is_stalled:
            if self.active_mb == 0:
                self.opened_at = now
            room = self.flush_size_mb - self.active_mb
            take = min(room, self.backlog_mb)
            self.active_mb += take
            self.backlog_mb -= take
            if self.backlog_mb < 1e-12:
                self.backlog_mb = 0.0
            if self.active_mb >= self.flush_size_mb:
                frozen.append(self._freeze(now))
        return frozen

    def stall_seconds_so_far(self, now: Instant) -> float:
        """Length of the current stall, 0 when not stalled."""
        if not self.is_stalled or self.stalled_since is None:
            return 0.0
        return (now - self.stalled_since).to_seconds()

    def clear(self) -> None:
        self.active_mb = 0.0
        self.opened_at = Instant.epoch()
        self._immutable.clear()
        self.backlog_mb = 0.0
        self.is_stalled = False
        self.stalled_since = None

    def check_invariants(self) -> None:
        if self.active_mb < 0 or self.backlog_mb < 0 or any(size < 0 for size in self._immutable):
            raise InvariantViolation(
                f"negative memtable size: active={self.active_mb} backlog={self.backlog_mb}"
            )
        if self.backlog_mb > 0 and not self.is_stalled:
            raise InvariantViolation("stalled writes remain after the stall cleared")

    def __repr__(self) -> str:
        return (
            f"Memtable(active={self.active_mb:.1f}MB, immutable={self.immutable_count}, "
            f"backlog={self.backlog_mb:.1f}MB, stalled={self.is_stalled})"
        )
