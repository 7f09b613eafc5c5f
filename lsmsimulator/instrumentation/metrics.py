"""Counters and derived statistics for the simulated engine.

Two Counters accumulators are updated in lockstep by every recorded event:
``lifetime`` (since reset) and ``window`` (since the last ``reset_window``).
Derived values such as amplification and utilization are computed from the
counters when a snapshot is taken, never stored.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from lsmsimulator.config import SimConfig
from lsmsimulator.core.temporal import Instant
from lsmsimulator.storage.lsm_tree import LSMTree
from lsmsimulator.storage.memtable import Memtable

logger = logging.getLogger(__name__)


@dataclass
class Counters:
    """Raw accumulated totals. All sizes in MB, durations in seconds."""

    user_write_mb: float = 0.0
    stalled_write_mb: float = 0.0
    flush_count: int = 0
    flush_input_mb: float = 0.0
    flush_write_mb: float = 0.0
    compaction_count: int = 0
    compaction_read_mb: float = 0.0
    compaction_write_mb: float = 0.0
    level_read_mb: dict[int, float] = field(default_factory=lambda: defaultdict(float))
    level_write_mb: dict[int, float] = field(default_factory=lambda: defaultdict(float))
    compactions_by_level: dict[int, int] = field(default_factory=lambda: defaultdict(int))
    stall_seconds: float = 0.0
    stall_count: int = 0
    disk_busy_seconds: float = 0.0
    cpu_busy_seconds: float = 0.0

    @property
    def disk_write_mb(self) -> float:
        return self.flush_write_mb + self.compaction_write_mb

    def write_amplification(self) -> float:
        if self.flush_write_mb <= 0:
            return 1.0
        return self.disk_write_mb / self.flush_write_mb


class MetricsAggregator:
    """Records simulator activity and produces MetricsSnapshot objects.

    Args:
        config: Used for hardware numbers in derived values.
        now: Start of the first window.
    """

    def __init__(self, config: SimConfig, now: Instant | None = None) -> None:
        self.config = config
        self.lifetime = Counters()
        self.window = Counters()
        self.window_start = now or Instant.epoch()

    def _both(self) -> tuple[Counters, Counters]:
        return self.lifetime, self.window

    # ----- recording -----

    def record_write(self, size_mb: float, stalled: bool) -> None:
        for c in self._both():
            c.user_write_mb += size_mb
            if stalled:
                c.stalled_write_mb += size_mb

    def record_busy(self, io_seconds: float, cpu_seconds: float) -> None:
        for c in self._both():
            c.disk_busy_seconds += io_seconds
            c.cpu_busy_seconds += cpu_seconds

    def record_flush(self, input_mb: float, output_mb: float) -> None:
        for c in self._both():
            c.flush_count += 1
            c.flush_input_mb += input_mb
            c.flush_write_mb += output_mb
            c.level_write_mb[0] += output_mb

    def record_compaction(self, from_level: int, to_level: int, input_mb: float, output_mb: float) -> None:
        for c in self._both():
            c.compaction_count += 1
            c.compaction_read_mb += input_mb
            c.compaction_write_mb += output_mb
            c.level_read_mb[from_level] += input_mb
            c.level_write_mb[to_level] += output_mb
            c.compactions_by_level[from_level] += 1

    def record_stall(self, seconds: float) -> None:
        for c in self._both():
            c.stall_seconds += seconds
            c.stall_count += 1

    def reset_window(self, now: Instant) -> None:
        self.window = Counters()
        self.window_start = now

    # ----- derived -----

    def snapshot(
        self,
        now: Instant,
        tree: LSMTree,
        memtable: Memtable,
        *,
        is_oom_killed: bool = False,
        in_progress_flushes: int = 0,
    ) -> MetricsSnapshot:
        life = self.lifetime
        win = self.window
        window_seconds = (now - self.window_start).to_seconds()

        def rate(mb: float) -> float:
            return mb / window_seconds if window_seconds > 0 else 0.0

        def utilization(busy: float) -> float:
            if window_seconds <= 0:
                return 0.0
            return min(100.0, 100.0 * busy / window_seconds)

        deepest = tree.deepest_non_empty_level()
        total_mb = tree.total_size_mb
        space_amp = total_mb / deepest.total_size_mb if deepest and deepest.total_size_mb > 0 else 1.0

        # every sorted run a point lookup may have to consult
        read_amp = 1 + memtable.immutable_count + tree.levels[0].file_count
        read_amp += sum(1 for level in tree.levels[1:] if level.files)

        sustainable = None
        disk_mb = life.flush_write_mb + life.compaction_read_mb + life.compaction_write_mb
        if life.flush_input_mb > 0 and disk_mb > 0:
            sustainable = self.config.io_throughput_mbps * life.flush_input_mb / disk_mb

        current_stall = memtable.stall_seconds_so_far(now)

        return MetricsSnapshot(
            timestamp=now.to_seconds(),
            window_seconds=window_seconds,
            write_amplification=life.write_amplification(),
            window_write_amplification=win.write_amplification(),
            read_amplification=float(read_amp),
            space_amplification=space_amp,
            user_write_mb=life.user_write_mb,
            flush_write_mb=life.flush_write_mb,
            compaction_read_mb=life.compaction_read_mb,
            compaction_write_mb=life.compaction_write_mb,
            flush_count=life.flush_count,
            compaction_count=life.compaction_count,
            compactions_by_level=dict(sorted(life.compactions_by_level.items())),
            level_write_mb=dict(sorted(life.level_write_mb.items())),
            user_write_throughput_mbps=rate(win.user_write_mb),
            flush_throughput_mbps=rate(win.flush_write_mb),
            compaction_throughput_mbps=rate(win.compaction_write_mb),
            disk_write_throughput_mbps=rate(win.disk_write_mb),
            disk_utilization_pct=utilization(win.disk_busy_seconds),
            cpu_utilization_pct=utilization(win.cpu_busy_seconds),
            is_stalled=memtable.is_stalled,
            is_oom_killed=is_oom_killed,
            stall_count=life.stall_count,
            stall_duration_seconds=life.stall_seconds + current_stall,
            current_stall_seconds=current_stall,
            stalled_write_mb=life.stalled_write_mb,
            in_progress_flushes=in_progress_flushes,
            in_progress_compactions=len(tree.jobs),
            memtable_size_mb=memtable.active_mb,
            immutable_memtables=memtable.immutable_count,
            memory_mb=memtable.memory_mb,
            total_data_mb=total_mb,
            l0_file_count=tree.levels[0].file_count,
            sustainable_write_rate_mbps=sustainable,
        )


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time statistics.

    Lifetime totals cover everything since the last simulator reset;
    throughputs and utilizations cover the current window.

    Attributes:
        timestamp: Virtual time of the snapshot, seconds.
        window_seconds: Length of the window the rates cover.
        write_amplification: (flush + compaction bytes written) / flush bytes.
        window_write_amplification: Same, for the current window only.
        read_amplification: Sorted runs a point lookup may consult.
        space_amplification: Bytes on disk / bytes in the deepest non-empty level.
        user_write_mb: Client bytes ingested.
        flush_write_mb: Bytes written by flushes.
        compaction_read_mb: Bytes read by compactions.
        compaction_write_mb: Bytes written by compactions.
        flush_count: Completed flushes.
        compaction_count: Completed compactions.
        compactions_by_level: Completed compactions keyed by source level.
        level_write_mb: Bytes written into each level.
        user_write_throughput_mbps: Ingest rate over the window.
        flush_throughput_mbps: Flush write rate over the window.
        compaction_throughput_mbps: Compaction write rate over the window.
        disk_write_throughput_mbps: Total disk write rate over the window.
        disk_utilization_pct: Disk busy time / window, capped at 100.
        cpu_utilization_pct: CPU busy time / window, capped at 100.
        is_stalled: Whether writes are currently stalled.
        is_oom_killed: Whether the engine ran out of memory.
        stall_count: Stalls that have ended.
        stall_duration_seconds: Total stalled time including the current stall.
        current_stall_seconds: Length of the ongoing stall, 0 when not stalled.
        stalled_write_mb: Client bytes that arrived during a stall.
        in_progress_flushes: Flushes scheduled but not completed.
        in_progress_compactions: Compactions scheduled but not completed.
        memtable_size_mb: Active memtable size.
        immutable_memtables: Frozen memtables awaiting flush.
        memory_mb: Buffers plus stalled writes held in memory.
        total_data_mb: Bytes across all levels.
        l0_file_count: Files in L0.
        sustainable_write_rate_mbps: Ingest rate the disk could sustain at the
            observed disk-bytes-per-flushed-byte. None before the first flush.
    """

    timestamp: float = 0.0
    window_seconds: float = 0.0
    write_amplification: float = 1.0
    window_write_amplification: float = 1.0
    read_amplification: float = 1.0
    space_amplification: float = 1.0
    user_write_mb: float = 0.0
    flush_write_mb: float = 0.0
    compaction_read_mb: float = 0.0
    compaction_write_mb: float = 0.0
    flush_count: int = 0
    compaction_count: int = 0
    compactions_by_level: dict[int, int] = field(default_factory=dict)
    level_write_mb: dict[int, float] = field(default_factory=dict)
    user_write_throughput_mbps: float = 0.0
    flush_throughput_mbps: float = 0.0
    compaction_throughput_mbps: float = 0.0
    disk_write_throughput_mbps: float = 0.0
    disk_utilization_pct: float = 0.0
    cpu_utilization_pct: float = 0.0
    is_stalled: bool = False
    is_oom_killed: bool = False
    stall_count: int = 0
    stall_duration_seconds: float = 0.0
    current_stall_seconds: float = 0.0
    stalled_write_mb: float = 0.0
    in_progress_flushes: int = 0
    in_progress_compactions: int = 0
    memtable_size_mb: float = 0.0
    immutable_memtables: int = 0
    memory_mb: float = 0.0
    total_data_mb: float = 0.0
    l0_file_count: int = 0
    sustainable_write_rate_mbps: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
