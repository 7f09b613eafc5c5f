"""Shared disk/CPU budget and the cost model for background work.

Every flush or compaction runs as up to three sequential phases:

1. read input from disk (compactions only),
2. CPU work: decompress the input and compress the output,
3. write output to disk, plus one fixed seek/latency charge.

The engine has one logical disk track and one logical CPU track. A phase
starts at ``max(ready, track.busy_until)`` and pushes that track's
``busy_until`` forward by its duration, so concurrent jobs queue behind
each other on the track they need. With an idle machine a job therefore
takes exactly ``read + decompress + compress + write + seek``.

Background slots gate how many compactions may be *in progress*; they do
not speed anything up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lsmsimulator.config import SimConfig
from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import InvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationCost:
    """Timing of one scheduled flush or compaction.

    Attributes:
        start: When the first phase began.
        end: When the last phase finished (event time).
        read_io_seconds: Disk time spent reading input.
        cpu_seconds: CPU time spent on (de)compression.
        write_io_seconds: Disk time spent writing output, including the seek.
        output_mb: Bytes written.
    """

    start: Instant
    end: Instant
    read_io_seconds: float = 0.0
    cpu_seconds: float = 0.0
    write_io_seconds: float = 0.0
    output_mb: float = 0.0

    @property
    def io_seconds(self) -> float:
        return self.read_io_seconds + self.write_io_seconds

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).to_seconds()


class ResourceBudget:
    """Busy-until timestamps for disk and CPU plus background slot occupancy."""

    def __init__(self, max_background_jobs: int) -> None:
        self.max_background_jobs = max_background_jobs
        self.disk_busy_until = Instant.epoch()
        self.cpu_busy_until = Instant.epoch()
        self.occupied_slots = 0

    @property
    def free_slots(self) -> int:
        return self.max_background_jobs - self.occupied_slots

    def acquire_slot(self) -> None:
        if self.occupied_slots >= self.max_background_jobs:
            raise InvariantViolation(
                f"background slots over-subscribed ({self.occupied_slots + 1} > {self.max_background_jobs})"
            )
        self.occupied_slots += 1

    def release_slot(self) -> None:
        if self.occupied_slots <= 0:
            raise InvariantViolation("released a background slot that was not held")
        self.occupied_slots -= 1

    def occupy_disk(self, ready: Instant, seconds: float) -> Instant:
        start = max(ready, self.disk_busy_until)
        self.disk_busy_until = start + seconds
        return self.disk_busy_until

    def occupy_cpu(self, ready: Instant, seconds: float) -> Instant:
        start = max(ready, self.cpu_busy_until)
        self.cpu_busy_until = start + seconds
        return self.cpu_busy_until

    def reset(self) -> None:
        self.disk_busy_until = Instant.epoch()
        self.cpu_busy_until = Instant.epoch()
        self.occupied_slots = 0

    def check_invariants(self) -> None:
        if not 0 <= self.occupied_slots <= self.max_background_jobs:
            raise InvariantViolation(
                f"background slots out of range: {self.occupied_slots}/{self.max_background_jobs}"
            )

    def __repr__(self) -> str:
        return (
            f"ResourceBudget(disk_busy_until={self.disk_busy_until!r}, cpu_busy_until={self.cpu_busy_until!r}, "
            f"slots={self.occupied_slots}/{self.max_background_jobs})"
        )


class ResourceModel:
    """Computes flush/compaction timing against a shared ResourceBudget.

    The compression profile and hardware numbers are read from the config
    each time a cost is computed, so a profile switch only affects work
    scheduled afterwards.

    Args:
        config: Engine configuration.
        budget: Shared busy-until state. Created when not given.
    """

    def __init__(self, config: SimConfig, budget: ResourceBudget | None = None) -> None:
        self.config = config
        self.budget = budget or ResourceBudget(config.max_background_jobs)

    def _io_seconds(self, size_mb: float) -> float:
        return size_mb / self.config.io_throughput_mbps

    def _run(self, now: Instant, read_s: float, cpu_s: float, write_s: float, output_mb: float) -> OperationCost:
        ready = now
        start = None
        if read_s > 0:
            start = max(ready, self.budget.disk_busy_until)
            ready = self.budget.occupy_disk(ready, read_s)
        if cpu_s > 0:
            if start is None:
                start = max(ready, self.budget.cpu_busy_until)
            ready = self.budget.occupy_cpu(ready, cpu_s)
        if start is None:
            start = max(ready, self.budget.disk_busy_until)
        end = self.budget.occupy_disk(ready, write_s)
        return OperationCost(
            start=start,
            end=end,
            read_io_seconds=read_s,
            cpu_seconds=cpu_s,
            write_io_seconds=write_s,
            output_mb=output_mb,
        )

    def flush_cost(self, now: Instant, input_mb: float) -> OperationCost:
        """Cost of writing a frozen memtable of ``input_mb`` to a new L0 file."""
        compression = self.config.compression
        output_mb = input_mb * compression.ratio
        cpu_s = compression.compress_seconds(input_mb)
        write_s = self._io_seconds(output_mb) + self.config.io_latency_seconds
        cost = self._run(now, 0.0, cpu_s, write_s, output_mb)
        logger.debug(
            "flush cost: %.2fMB -> %.2fMB, cpu=%.4fs write=%.4fs, %.3fs..%.3fs",
            input_mb,
            output_mb,
            cpu_s,
            write_s,
            cost.start.to_seconds(),
            cost.end.to_seconds(),
        )
        return cost

    def compaction_cost(self, now: Instant, input_mb: float, output_mb: float, input_files: int) -> OperationCost:
        """Cost of a compaction reading ``input_mb`` and writing ``output_mb``.

        Sizes are on-disk (compressed) sizes. CPU work is done on the
        uncompressed bytes and is split across ``min(max_subcompactions,
        input_files)`` subcompactions.
        """
        compression = self.config.compression
        subcompactions = max(1, min(self.config.max_subcompactions, input_files))
        read_s = self._io_seconds(input_mb)
        cpu_s = (
            compression.decompress_seconds(input_mb / compression.ratio)
            + compression.compress_seconds(output_mb / compression.ratio)
        ) / subcompactions
        write_s = self._io_seconds(output_mb) + self.config.io_latency_seconds
        cost = self._run(now, read_s, cpu_s, write_s, output_mb)
        logger.debug(
            "compaction cost: %.2fMB -> %.2fMB over %d subcompaction(s), read=%.4fs cpu=%.4fs write=%.4fs",
            input_mb,
            output_mb,
            subcompactions,
            read_s,
            cpu_s,
            write_s,
        )
        return cost

    def __repr__(self) -> str:
        return f"ResourceModel({self.config.io_throughput_mbps}MB/s, {self.config.compression.name}, {self.budget!r})"
