"""Discrete-event simulator of an LSM engine's write path.

The Simulator is the aggregate root: it owns the event queue, the virtual
clock, the write buffers, the level hierarchy, the disk/CPU budget and the
metrics. Nothing advances on its own; a driver calls ``step``, ``advance``
or ``run_until`` and reads ``metrics()``/``state()`` back.

Event flow:

* WriteEvent: the write is added to the active memtable (or the stalled
  backlog); a full memtable is frozen and a flush scheduled; the next write
  is scheduled ``1 MB / write_rate`` later.
* FlushEvent: the frozen memtable becomes an L0 file, a stall may clear,
  stalled writes drain, and compaction triggers are re-evaluated.
* CompactionEvent: inputs are replaced by outputs in the target level, the
  background slot is released, and triggers are re-evaluated.

Flush and compaction events are timestamped with their *completion* time as
computed by the ResourceModel when they are scheduled.

Every public method runs under one re-entrant lock, so a driver thread and
a reader thread never see half-applied state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional, Union

from lsmsimulator.config import SimConfig
from lsmsimulator.control.notifications import Notification, NotificationChannel
from lsmsimulator.core.event import CompactionEvent, Event, EventType, FlushEvent, WriteEvent
from lsmsimulator.core.event_heap import EventQueue
from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import ConfigValidationError, InvariantViolation
from lsmsimulator.instrumentation.metrics import MetricsAggregator, MetricsSnapshot
from lsmsimulator.storage.lsm_tree import LSMTree
from lsmsimulator.storage.memtable import Memtable
from lsmsimulator.storage.resources import ResourceBudget, ResourceModel

logger = logging.getLogger(__name__)

WRITE_SIZE_MB = 1.0

StepStatus = Literal["ok", "fault", "oom_killed"]


# ---------------------------------------------------------------------------
# Results and snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepResult:
    """Outcome of a step/advance call.

    Attributes:
        status: "ok", "fault" (invariant violated, simulation stopped) or
            "oom_killed" (terminal model state).
        virtual_time: Clock after the call, seconds.
        events_processed: Events handled by this call.
        fault: Description of the fault when status is "fault".
    """

    status: StepStatus
    virtual_time: float
    events_processed: int = 0
    fault: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True)
class FileState:
    file_id: int
    size_mb: float
    age_seconds: float


@dataclass(frozen=True)
class LevelSnapshot:
    """One level as seen by a dashboard.

    Attributes:
        index: Level number, 0 first.
        total_size_mb: Bytes in the level.
        target_size_mb: Byte budget (0 for L0, which is governed by file count).
        score: Compaction pressure; eligible at >= 1 (L0) or > 1 (L1+).
        file_count: Files in the level.
        compacting: Whether a compaction is reading from this level.
        compacting_size_mb: Bytes owned by running compactions.
        files: Files oldest first.
    """

    index: int
    total_size_mb: float
    target_size_mb: float
    score: float
    file_count: int
    compacting: bool
    compacting_size_mb: float
    files: tuple[FileState, ...] = ()


@dataclass(frozen=True)
class SimulationState:
    """Point-in-time view of the engine's structure."""

    virtual_time: float
    levels: tuple[LevelSnapshot, ...]
    memtable_size_mb: float
    immutable_memtables: int
    immutable_size_mb: float
    stalled_backlog_mb: float
    active_compactions: int
    pending_flushes: int
    is_stalled: bool
    is_oom_killed: bool
    is_running: bool
    next_flush_time: Optional[float] = None
    fault: Optional[str] = None
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------


class Simulator:
    """LSM write-path simulator.

    Args:
        config: Engine configuration. Defaults to ``SimConfig()``.
        notifications: Optional channel receiving event-log notifications.

    Raises:
        ConfigValidationError: If ``config`` violates a bound.

    Example::

        sim = Simulator(SimConfig(write_rate_mbps=50))
        sim.advance(60.0)
        print(sim.metrics().write_amplification)
    """

    def __init__(
        self,
        config: SimConfig | None = None,
        notifications: NotificationChannel | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._config = (config or SimConfig()).validate()
        self._notifications = notifications
        self._queue = EventQueue()
        self._running = False
        self._now = Instant.epoch()
        self._oom_killed = False
        self._fault: Optional[str] = None
        self._build_components()
        self.reset()

    def _build_components(self) -> None:
        config = self._config
        self._memtable = Memtable(
            flush_size_mb=config.memtable_flush_size_mb,
            max_write_buffer_number=config.max_write_buffer_number,
            flush_timeout_sec=config.memtable_flush_timeout_sec,
        )
        self._tree = LSMTree(config)
        self._budget = ResourceBudget(config.max_background_jobs)
        self._resources = ResourceModel(config, self._budget)
        self._metrics = MetricsAggregator(config)

    # ----- read-only properties -----

    @property
    def config(self) -> SimConfig:
        with self._lock:
            return self._config

    @property
    def now(self) -> Instant:
        with self._lock:
            return self._now

    @property
    def virtual_time(self) -> float:
        return self.now.to_seconds()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def is_stalled(self) -> bool:
        with self._lock:
            return self._memtable.is_stalled

    @property
    def is_oom_killed(self) -> bool:
        with self._lock:
            return self._oom_killed

    @property
    def fault(self) -> Optional[str]:
        with self._lock:
            return self._fault

    # Live internals for diagnostics and tests. They are not copies: mutating
    # them, or reading them while another thread steps, bypasses the lock.
    # Drivers should use metrics() and state().

    @property
    def tree(self) -> LSMTree:
        with self._lock:
            return self._tree

    @property
    def memtable(self) -> Memtable:
        with self._lock:
            return self._memtable

    @property
    def budget(self) -> ResourceBudget:
        with self._lock:
            return self._budget

    def is_queue_empty(self) -> bool:
        with self._lock:
            return self._queue.is_empty()

    def pending_events(self) -> int:
        with self._lock:
            return len(self._queue)

    # ----- lifecycle -----

    def reset(self) -> None:
        """Discard all state and reschedule the first write.

        The queue, busy-until timestamps, levels, buffers and metrics are
        replaced together, so no stale event survives.

        Raises:
            ConfigValidationError: If the current config is invalid.
        """
        with self._lock:
            self._config.validate()
            self._queue.clear()
            self._build_components()
            self._now = Instant.epoch()
            self._running = False
            self._oom_killed = False
            self._fault = None
            self._tree.populate(self._config.initial_lsm_size_mb, self._now)
            self._schedule_next_write(self._now)
            logger.info("Simulator reset: %d levels, write rate %.1fMB/s", self._config.num_levels, self._config.write_rate_mbps)
            self._notify("reset", "simulation reset")

    def start(self) -> None:
        with self._lock:
            self._running = True
            logger.info("Simulator started at %.3fs", self._now.to_seconds())

    def pause(self) -> None:
        with self._lock:
            self._running = False
            logger.info("Simulator paused at %.3fs", self._now.to_seconds())

    def update_config(self, config: Union[SimConfig, dict[str, Any]]) -> SimConfig:
        """Apply a new configuration.

        Hot fields (write rate, speed multiplier) change in place. Any other
        change is structural: it is refused while running and otherwise
        replaces the config and resets the simulation.

        Args:
            config: A full SimConfig, or a dict of (camelCase or snake_case)
                fields to change relative to the current config.

        Returns:
            The config now in effect.

        Raises:
            ConfigValidationError: On a violated bound, or a structural change
                while running. State is unchanged.
        """
        with self._lock:
            if isinstance(config, dict):
                new = SimConfig.from_dict(config, base=self._config)
            elif isinstance(config, SimConfig):
                new = config.validate()
            else:
                raise ConfigValidationError(f"config must be a SimConfig or a dict, got {type(config).__name__}")

            structural = self._config.structural_changes(new)
            if structural and self._running:
                raise ConfigValidationError(
                    [f"{name} cannot change while the simulation is running" for name in structural]
                )

            old = self._config
            self._config = new
            if structural:
                logger.info("Structural config change (%s); resetting", ", ".join(structural))
                self.reset()
                return new

            self._resources.config = new
            self._metrics.config = new
            self._tree.config = new
            if (
                old.write_rate_mbps <= 0 < new.write_rate_mbps
                and self._queue.count_write_events() == 0
                and not self._oom_killed
            ):
                self._schedule_next_write(self._now)
            logger.info("Config updated: write rate %.1f -> %.1fMB/s", old.write_rate_mbps, new.write_rate_mbps)
            self._notify("config", f"write rate {new.write_rate_mbps:g}MB/s")
            return new

    # ----- stepping -----

    def step(self) -> StepResult:
        """Process every event due at the next pending timestamp."""
        with self._lock:
            blocked = self._blocked_result()
            if blocked is not None:
                return blocked
            head = self._queue.peek()
            if head is None:
                return StepResult("ok", self._now.to_seconds())
            return self._run_guarded(head.time, advance_clock=False)

    def advance(self, seconds: float) -> StepResult:
        """Process all events up to ``now + seconds`` and move the clock there."""
        if seconds < 0:
            raise ValueError(f"cannot advance by a negative duration ({seconds})")
        with self._lock:
            return self.run_until(self._now.to_seconds() + seconds)

    def run_until(self, time_s: float) -> StepResult:
        """Process all events with time <= ``time_s`` and move the clock there."""
        with self._lock:
            blocked = self._blocked_result()
            if blocked is not None:
                return blocked
            target = Instant.from_seconds(time_s)
            if target < self._now:
                return StepResult("ok", self._now.to_seconds())
            return self._run_guarded(target, advance_clock=True)

    def _blocked_result(self) -> StepResult | None:
        if self._fault is not None:
            return StepResult("fault", self._now.to_seconds(), fault=self._fault)
        if self._oom_killed:
            return StepResult("oom_killed", self._now.to_seconds())
        return None

    def _run_guarded(self, limit: Instant, advance_clock: bool) -> StepResult:
        processed = 0
        try:
            while not self._oom_killed:
                head = self._queue.peek()
                if head is None or head.time > limit:
                    break
                self._process(self._queue.pop())
                processed += 1
            if advance_clock and not self._oom_killed:
                self._now = limit
            self._check_invariants()
        except InvariantViolation as exc:
            logger.error("Simulation fault at %.3fs: %s", self._now.to_seconds(), exc)
            return self._record_fault(str(exc), processed)
        except Exception as exc:
            # the event being processed may be half-applied; only reset recovers
            logger.exception("Unexpected error while processing events at %.3fs", self._now.to_seconds())
            return self._record_fault(f"{type(exc).__name__}: {exc}", processed)

        status: StepStatus = "oom_killed" if self._oom_killed else "ok"
        return StepResult(status, self._now.to_seconds(), processed)

    def _record_fault(self, description: str, processed: int) -> StepResult:
        self._fault = description
        self._running = False
        self._notify("fault", self._fault, level="ERROR")
        return StepResult("fault", self._now.to_seconds(), processed, fault=self._fault)

    # ----- event handlers -----

    def _process(self, event: Event) -> None:
        if event.time < self._now:
            raise InvariantViolation(f"virtual time went backwards: {event.time!r} < {self._now!r}")
        self._now = event.time

        if event.event_type is EventType.WRITE:
            self._on_write(event)
        elif event.event_type is EventType.FLUSH:
            self._on_flush(event)
        elif event.event_type is EventType.COMPACTION:
            self._on_compaction(event)
        else:
            raise InvariantViolation(f"unknown event {event!r}")

    def _schedule_next_write(self, after: Instant) -> None:
        rate = self._config.write_rate_mbps
        if rate <= 0:
            return
        self._queue.push(WriteEvent(time=after + WRITE_SIZE_MB / rate, size_mb=WRITE_SIZE_MB))

    def _on_write(self, event: WriteEvent) -> None:
        was_stalled = self._memtable.is_stalled
        self._metrics.record_write(event.size_mb, stalled=was_stalled)
        for size in self._memtable.write(event.size_mb, self._now):
            self._schedule_flush(size)
        if self._memtable.is_stalled and not was_stalled:
            self._notify("stall", f"write stall: {self._memtable.immutable_count} immutable memtables", level="WARNING")

        if self._check_oom():
            return
        self._schedule_next_write(self._now)

    def _check_oom(self) -> bool:
        ceiling = self._config.memory_ceiling_mb
        if ceiling is None or self._memtable.memory_mb <= ceiling:
            return False
        self._oom_killed = True
        self._running = False
        self._queue.clear()
        logger.warning(
            "[%.3fs] OOM killed: %.1fMB in memory exceeds %.1fMB",
            self._now.to_seconds(),
            self._memtable.memory_mb,
            ceiling,
        )
        self._notify("oom", f"OOM killed at {self._memtable.memory_mb:.0f}MB (limit {ceiling:.0f}MB)", level="WARNING")
        return True

    def _schedule_flush(self, size_mb: float) -> None:
        cost = self._resources.flush_cost(self._now, size_mb)
        self._metrics.record_busy(cost.io_seconds, cost.cpu_seconds)
        self._queue.push(
            FlushEvent(
                time=cost.end,
                start_time=cost.start,
                input_mb=size_mb,
                output_mb=cost.output_mb,
                io_seconds=cost.io_seconds,
                cpu_seconds=cost.cpu_seconds,
            )
        )
        logger.debug("[%.3fs] flush of %.2fMB scheduled, completes at %.3fs", self._now.to_seconds(), size_mb, cost.end.to_seconds())

    def _on_flush(self, event: FlushEvent) -> None:
        was_stalled = self._memtable.is_stalled
        flushed_mb, ended_stall, frozen = self._memtable.complete_flush(self._now)
        if abs(flushed_mb - event.input_mb) > 1e-9:
            raise InvariantViolation(f"flush of {event.input_mb}MB released a {flushed_mb}MB memtable")
        file = self._tree.add_flushed_file(event.output_mb, self._now)
        self._metrics.record_flush(event.input_mb, event.output_mb)
        self._notify("flush", f"flushed {event.input_mb:.1f}MB to L0 file {file.file_id}")

        if ended_stall is not None:
            self._metrics.record_stall(ended_stall)
            self._notify("stall", f"write stall cleared after {ended_stall:.2f}s")

        for size in frozen + self._memtable.freeze_if_expired(self._now):
            self._schedule_flush(size)
        # backlog drain or an expired memtable can stall writes again
        if self._memtable.is_stalled and (ended_stall is not None or not was_stalled):
            self._notify("stall", f"write stall: {self._memtable.immutable_count} immutable memtables", level="WARNING")
        self._schedule_compactions()

    def _schedule_compactions(self) -> None:
        while self._budget.free_slots > 0:
            job = self._tree.pick_compaction()
            if job is None:
                return
            self._tree.start_compaction(job)
            self._budget.acquire_slot()
            cost = self._resources.compaction_cost(self._now, job.input_mb, job.output_mb, job.input_file_count)
            self._metrics.record_busy(cost.io_seconds, cost.cpu_seconds)
            self._queue.push(
                CompactionEvent(
                    time=cost.end,
                    job_id=job.job_id,
                    from_level=job.from_level,
                    to_level=job.to_level,
                    input_mb=job.input_mb,
                    output_mb=job.output_mb,
                    start_time=cost.start,
                    io_seconds=cost.io_seconds,
                    cpu_seconds=cost.cpu_seconds,
                )
            )
            logger.debug(
                "[%.3fs] compaction %d L%d->L%d scheduled, completes at %.3fs",
                self._now.to_seconds(),
                job.job_id,
                job.from_level,
                job.to_level,
                cost.end.to_seconds(),
            )

    def _on_compaction(self, event: CompactionEvent) -> None:
        job, outputs = self._tree.complete_compaction(event.job_id, self._now)
        self._budget.release_slot()
        self._metrics.record_compaction(job.from_level, job.to_level, job.input_mb, job.output_mb)
        self._notify(
            "compaction",
            f"L{job.from_level}->L{job.to_level}: {job.input_mb:.1f}MB in, {job.output_mb:.1f}MB out ({len(outputs)} files)",
        )
        self._schedule_compactions()

    # ----- invariants -----

    def _check_invariants(self) -> None:
        self._memtable.check_invariants()
        self._tree.check_invariants()
        self._budget.check_invariants()
        if self._budget.occupied_slots != len(self._tree.jobs):
            raise InvariantViolation(
                f"{self._budget.occupied_slots} background slots held by {len(self._tree.jobs)} compactions"
            )
        if not self._oom_killed:
            pending = self._queue.count_events(EventType.FLUSH)
            if pending != self._memtable.immutable_count:
                raise InvariantViolation(
                    f"{pending} pending flushes for {self._memtable.immutable_count} immutable memtables"
                )

    # ----- queries -----

    def metrics(self, reset_window: bool = False) -> MetricsSnapshot:
        """Current statistics. ``reset_window`` starts a new rate window afterwards."""
        with self._lock:
            snapshot = self._metrics.snapshot(
                self._now,
                self._tree,
                self._memtable,
                is_oom_killed=self._oom_killed,
                in_progress_flushes=self._queue.count_events(EventType.FLUSH),
            )
            if reset_window:
                self._metrics.reset_window(self._now)
            return snapshot

    def state(self) -> SimulationState:
        with self._lock:
            now = self._now
            targets = self._tree.level_targets()
            levels = tuple(
                LevelSnapshot(
                    index=level.index,
                    total_size_mb=level.total_size_mb,
                    target_size_mb=targets[level.index],
                    score=self._tree.score(level.index),
                    file_count=level.file_count,
                    compacting=level.compactions_as_source > 0,
                    compacting_size_mb=level.compacting_size_mb,
                    files=tuple(FileState(f.file_id, f.size_mb, f.age_seconds(now)) for f in level.files),
                )
                for level in self._tree.levels
            )
            next_flush = self._queue.find_next_flush_event()
            return SimulationState(
                virtual_time=now.to_seconds(),
                levels=levels,
                memtable_size_mb=self._memtable.active_mb,
                immutable_memtables=self._memtable.immutable_count,
                immutable_size_mb=self._memtable.immutable_mb,
                stalled_backlog_mb=self._memtable.backlog_mb,
                active_compactions=len(self._tree.jobs),
                pending_flushes=self._queue.count_events(EventType.FLUSH),
                is_stalled=self._memtable.is_stalled,
                is_oom_killed=self._oom_killed,
                is_running=self._running,
                next_flush_time=next_flush.time.to_seconds() if next_flush else None,
                fault=self._fault,
                config=self._config.to_dict(),
            )

    # ----- notifications -----

    def _notify(self, kind: str, message: str, level: str = "INFO") -> None:
        if self._notifications is None:
            return
        self._notifications.publish(
            Notification(time_s=self._now.to_seconds(), kind=kind, message=message, level=level)
        )

    def __repr__(self) -> str:
        return (
            f"Simulator(t={self._now.to_seconds():.3f}s, running={self._running}, "
            f"oom={self._oom_killed}, {self._tree!r})"
        )
