"""Level hierarchy and leveled compaction bookkeeping.

The tree owns the levels and the set of running compaction jobs. It answers
two questions for the simulator:

* which compaction should run next (``pick_compaction``), and
* what the levels look like once a job finishes (``complete_compaction``).

Timing is not its concern; the simulator asks the ResourceModel how long a
picked job takes and schedules a CompactionEvent for its completion.

Trigger rules:

* L0 files overlap each other, so L0 is scored by *file count*:
  ``idle_files / l0_compaction_trigger``; it is eligible at score >= 1.
* L1+ are scored by bytes: ``idle_bytes / level_target``; eligible above 1.
  Levels with no target (below the base level in dynamic mode) score 0.
* The deepest level never compacts. The highest score wins; ties go to the
  shallower level.

Every pick is limited to ``effective_max_compaction_bytes_mb`` of input: L0
always takes all of its idle files but only as many base-level files as fit,
and deeper picks stop adding source and overlap files at the limit.

Level targets are static (``max_bytes_for_level_base_mb * multiplier**(i-1)``)
unless ``level_compaction_dynamic_level_bytes`` is set, in which case they are
derived backwards from the largest level and L0 compacts into the first level
that has a target (the *base level*).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from itertools import count

from lsmsimulator.config import SimConfig
from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import InvariantViolation
from lsmsimulator.storage.sstable import Level, SSTFile

logger = logging.getLogger(__name__)


@dataclass
class CompactionJob:
    """A compaction that has been picked and is running.

    Attributes:
        job_id: Unique within a simulator run.
        from_level: Source level.
        to_level: Target level.
        source_file_ids: Files consumed from the source level.
        target_file_ids: Overlapping files consumed from the target level.
        input_mb: Total bytes read.
        output_mb: Bytes that will be written to the target level.
    """

    job_id: int
    from_level: int
    to_level: int
    source_file_ids: set[int] = field(default_factory=set)
    target_file_ids: set[int] = field(default_factory=set)
    input_mb: float = 0.0
    output_mb: float = 0.0

    @property
    def input_file_count(self) -> int:
        return len(self.source_file_ids) + len(self.target_file_ids)


@dataclass(frozen=True)
class LSMTreeStats:
    """Frozen snapshot of the level hierarchy.

    Attributes:
        total_size_mb: Bytes on disk across all levels.
        total_files: File count across all levels.
        level_sizes_mb: Bytes per level, L0 first.
        level_file_counts: Files per level, L0 first.
        running_compactions: Jobs in progress.
    """

    total_size_mb: float = 0.0
    total_files: int = 0
    level_sizes_mb: tuple[float, ...] = ()
    level_file_counts: tuple[int, ...] = ()
    running_compactions: int = 0


class LSMTree:
    """Levels L0..L(num_levels-1) plus running compaction jobs.

    Args:
        config: Engine configuration (level count, targets, trigger, reduction factors).

    Example::

        tree = LSMTree(config)
        tree.add_flushed_file(64.0, now)
        job = tree.pick_compaction()
        if job is not None:
            tree.start_compaction(job)
            ...
            tree.complete_compaction(job.job_id, later)
    """

    def __init__(self, config: SimConfig) -> None:
        self.config = config
        self.levels: list[Level] = [Level(index=i) for i in range(config.num_levels)]
        self._file_ids = count(1)
        self._job_ids = count(1)
        self.jobs: dict[int, CompactionJob] = {}

    # ----- queries -----

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def total_size_mb(self) -> float:
        return sum(level.total_size_mb for level in self.levels)

    def level_targets(self) -> list[float]:
        """Byte target of every level, L0 first. L0 and levels below the base level get 0."""
        if not self.config.level_compaction_dynamic_level_bytes:
            return [self.config.level_target_mb(i) for i in range(self.num_levels)]
        return self._dynamic_level_targets()

    def _dynamic_level_targets(self) -> list[float]:
        n = self.num_levels
        targets = [0.0] * n
        sizes = [level.total_size_mb for level in self.levels]
        first = next((i for i in range(1, n) if sizes[i] > 0), None)
        if first is None:
            return targets

        multiplier = self.config.level_multiplier
        base_max = self.config.max_bytes_for_level_base_mb
        base_min = base_max / multiplier
        largest = max(sizes[1:])

        base = first
        current = largest / multiplier ** (n - 1 - first)
        if current <= base_min:
            # data is small enough that the first non-empty level can be the base
            base_size = base_min
        else:
            while base > 1 and current > base_max:
                base -= 1
                current /= multiplier
            current = largest / multiplier ** (n - 1 - base)
            base_size = base_max if current > base_max else max(1e-6, current)

        size = base_size
        for i in range(base, n):
            if i > base:
                size *= multiplier
            targets[i] = max(size, base_max)
        return targets

    def level_target_mb(self, level: int) -> float:
        return self.level_targets()[level]

    def base_level(self) -> int:
        """Level that L0 compacts into."""
        if not self.config.level_compaction_dynamic_level_bytes:
            return 1
        targets = self.level_targets()
        return next((i for i in range(1, self.num_levels) if targets[i] > 0), self.num_levels - 1)

    def score(self, level: int) -> float:
        """Compaction pressure of ``level``; 0 for the deepest level."""
        if level >= self.num_levels - 1:
            return 0.0
        lvl = self.levels[level]
        if level == 0:
            return len(lvl.idle_files()) / self.config.l0_compaction_trigger
        target = self.level_target_mb(level)
        if target <= 0:
            return 0.0
        return lvl.idle_size_mb / target

    def deepest_non_empty_level(self) -> Level | None:
        for level in reversed(self.levels):
            if level.files:
                return level
        return None

    def stats(self) -> LSMTreeStats:
        return LSMTreeStats(
            total_size_mb=self.total_size_mb,
            total_files=sum(level.file_count for level in self.levels),
            level_sizes_mb=tuple(level.total_size_mb for level in self.levels),
            level_file_counts=tuple(level.file_count for level in self.levels),
            running_compactions=len(self.jobs),
        )

    # ----- flush -----

    def _new_file(self, size_mb: float, now: Instant) -> SSTFile:
        return SSTFile(file_id=next(self._file_ids), size_mb=size_mb, created_at=now)

    def add_flushed_file(self, size_mb: float, now: Instant) -> SSTFile:
        file = self._new_file(size_mb, now)
        self.levels[0].add(file)
        logger.debug("[%.3fs] L0 += file %d (%.2fMB), L0 files=%d", now.to_seconds(), file.file_id, size_mb, self.levels[0].file_count)
        return file

    # ----- compaction -----

    def _is_eligible(self, level: int, score: float) -> bool:
        return score >= 1.0 if level == 0 else score > 1.0

    def pick_compaction(self) -> CompactionJob | None:
        """Pick the most urgent compaction that has idle input, or None."""
        candidates = []
        for level in range(self.num_levels - 1):
            score = self.score(level)
            if self._is_eligible(level, score):
                candidates.append((score, level))
        # highest score first, shallower level on ties
        candidates.sort(key=lambda c: (-c[0], c[1]))

        for score, level in candidates:
            job = self._pick_l0() if level == 0 else self._pick_level(level)
            if job is not None:
                logger.debug(
                    "picked compaction %d: L%d->L%d score=%.2f files=%d input=%.2fMB",
                    job.job_id,
                    job.from_level,
                    job.to_level,
                    score,
                    job.input_file_count,
                    job.input_mb,
                )
                return job
        return None

    def _pick_l0(self) -> CompactionJob | None:
        sources = self.levels[0].idle_files()
        if not sources:
            return None
        to_level = self.base_level()
        limit_mb = self.config.effective_max_compaction_bytes_mb
        # L0 spans the whole key range, so every idle base-level file overlaps it
        input_mb = sum(f.size_mb for f in sources)
        targets: list[SSTFile] = []
        for file in self.levels[to_level].idle_files():
            if input_mb + file.size_mb > limit_mb:
                break
            targets.append(file)
            input_mb += file.size_mb
        return self._make_job(0, sources, targets, to_level=to_level)

    def _pick_level(self, level: int) -> CompactionJob | None:
        src = self.levels[level]
        excess_mb = src.idle_size_mb - self.level_target_mb(level)
        limit_mb = self.config.effective_max_compaction_bytes_mb
        sources: list[SSTFile] = []
        picked_mb = 0.0
        for file in src.idle_files():
            if sources and (picked_mb >= excess_mb or picked_mb + file.size_mb > limit_mb):
                break
            sources.append(file)
            picked_mb += file.size_mb
        if not sources:
            return None

        overlap_limit = min(picked_mb * self.config.level_multiplier, limit_mb - picked_mb)
        targets: list[SSTFile] = []
        overlap_mb = 0.0
        for file in self.levels[level + 1].idle_files():
            if overlap_mb + file.size_mb > overlap_limit:
                break
            targets.append(file)
            overlap_mb += file.size_mb
        return self._make_job(level, sources, targets)

    def _make_job(
        self, level: int, sources: list[SSTFile], targets: list[SSTFile], to_level: int | None = None
    ) -> CompactionJob:
        input_mb = math.fsum(f.size_mb for f in sources) + math.fsum(f.size_mb for f in targets)
        return CompactionJob(
            job_id=next(self._job_ids),
            from_level=level,
            to_level=level + 1 if to_level is None else to_level,
            source_file_ids={f.file_id for f in sources},
            target_file_ids={f.file_id for f in targets},
            input_mb=input_mb,
            output_mb=input_mb * self.config.reduction_factor_for(level),
        )

    def start_compaction(self, job: CompactionJob) -> None:
        """Mark the job's input files as owned by the job."""
        for level_index, ids in ((job.from_level, job.source_file_ids), (job.to_level, job.target_file_ids)):
            for file in self.levels[level_index].files:
                if file.file_id in ids:
                    if file.being_compacted:
                        raise InvariantViolation(f"file {file.file_id} picked by two compactions")
                    file.being_compacted = True
        self.levels[job.from_level].compactions_as_source += 1
        self.jobs[job.job_id] = job

    def complete_compaction(self, job_id: int, now: Instant) -> tuple[CompactionJob, list[SSTFile]]:
        """Replace the job's inputs with its output files.

        Returns:
            (job, new_target_level_files)
        """
        job = self.jobs.pop(job_id, None)
        if job is None:
            raise InvariantViolation(f"completion for unknown compaction job {job_id}")
        self.levels[job.from_level].remove(job.source_file_ids)
        self.levels[job.to_level].remove(job.target_file_ids)
        self.levels[job.from_level].compactions_as_source -= 1

        outputs = [
            self._new_file(size, now) for size in split_into_files(job.output_mb, self.config.target_file_size_for_level(job.to_level))
        ]
        for file in outputs:
            self.levels[job.to_level].add(file)
        logger.debug(
            "[%.3fs] compaction %d done: L%d->L%d wrote %d file(s), %.2fMB",
            now.to_seconds(),
            job.job_id,
            job.from_level,
            job.to_level,
            len(outputs),
            job.output_mb,
        )
        return job, outputs

    # ----- population / reset -----

    def populate(self, total_mb: float, now: Instant) -> None:
        """Spread ``total_mb`` over L1..L(n-1) in proportion to level targets."""
        if total_mb <= 0:
            return
        depths = range(1, self.num_levels)
        weights = [self.config.level_multiplier ** (level - 1) for level in depths]
        total_weight = sum(weights)
        for level, weight in zip(depths, weights):
            level_mb = total_mb * weight / total_weight
            for size in split_into_files(level_mb, self.config.target_file_size_for_level(level)):
                self.levels[level].add(self._new_file(size, now))
        logger.info("pre-populated %.1fMB across L1..L%d", total_mb, self.num_levels - 1)

    def clear(self) -> None:
        for level in self.levels:
            level.clear()
        self.jobs.clear()

    def check_invariants(self) -> None:
        for level in self.levels:
            level.check_invariants()
        running_by_level = [0] * self.num_levels
        for job in self.jobs.values():
            running_by_level[job.from_level] += 1
        for level in self.levels:
            if level.compactions_as_source != running_by_level[level.index]:
                raise InvariantViolation(
                    f"L{level.index}: {level.compactions_as_source} compactions recorded, "
                    f"{running_by_level[level.index]} running"
                )

    def __repr__(self) -> str:
        sizes = ", ".join(f"L{level.index}={level.total_size_mb:.0f}MB/{level.file_count}" for level in self.levels)
        return f"LSMTree({sizes}, jobs={len(self.jobs)})"


def split_into_files(total_mb: float, file_size_mb: float) -> list[float]:
    """Split ``total_mb`` into full ``file_size_mb`` files plus one remainder file."""
    if total_mb <= 0:
        return []
    full = int(total_mb // file_size_mb)
    sizes = [file_size_mb] * full
    remainder = total_mb - full * file_size_mb
    if remainder > 1e-9:
        sizes.append(remainder)
    elif not sizes:
        sizes.append(total_mb)
    return sizes
