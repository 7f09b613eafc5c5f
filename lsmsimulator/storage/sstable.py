"""On-disk files and the levels that hold them.

The simulator never stores keys; a file is just a size, a creation time and
a flag telling whether a compaction job currently owns it. This is a pure
data structure, NOT an event handler.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field

from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import InvariantViolation

logger = logging.getLogger(__name__)

# Tolerance for float bookkeeping checks, in MB.
SIZE_EPSILON_MB = 1e-6


class LevelState(enum.Enum):
    IDLE = "idle"
    COMPACTING = "compacting"


@dataclass
class SSTFile:
    """One sorted file.

    Attributes:
        file_id: Unique within a simulator run.
        size_mb: File size on disk.
        created_at: Virtual time the file was written.
        being_compacted: True while a compaction job has it as input.
    """

    file_id: int
    size_mb: float
    created_at: Instant
    being_compacted: bool = False

    def age_seconds(self, now: Instant) -> float:
        return (now - self.created_at).to_seconds()


@dataclass
class Level:
    """Files at one depth of the tree, oldest first.

    ``total_size_mb`` is kept incrementally and checked against the file sum
    by ``check_invariants``.
    """

    index: int
    files: list[SSTFile] = field(default_factory=list)
    total_size_mb: float = 0.0
    compactions_as_source: int = 0

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def state(self) -> LevelState:
        return LevelState.COMPACTING if self.compactions_as_source else LevelState.IDLE

    @property
    def compacting_size_mb(self) -> float:
        return sum(f.size_mb for f in self.files if f.being_compacted)

    @property
    def idle_size_mb(self) -> float:
        return self.total_size_mb - self.compacting_size_mb

    def idle_files(self) -> list[SSTFile]:
        return [f for f in self.files if not f.being_compacted]

    def add(self, file: SSTFile) -> None:
        if file.size_mb < 0:
            raise InvariantViolation(f"L{self.index}: file {file.file_id} has negative size {file.size_mb}")
        self.files.append(file)
        self.total_size_mb += file.size_mb

    def remove(self, file_ids: set[int]) -> float:
        """Drop the given files and return the bytes removed."""
        kept = []
        removed_mb = 0.0
        for f in self.files:
            if f.file_id in file_ids:
                removed_mb += f.size_mb
            else:
                kept.append(f)
        missing = len(file_ids) - (len(self.files) - len(kept))
        if missing:
            raise InvariantViolation(f"L{self.index}: {missing} compaction input file(s) not found")
        self.files = kept
        self.total_size_mb -= removed_mb
        if not self.files:
            # drop accumulated float residue
            self.total_size_mb = 0.0
        return removed_mb

    def clear(self) -> None:
        self.files.clear()
        self.total_size_mb = 0.0
        self.compactions_as_source = 0

    def check_invariants(self) -> None:
        if self.total_size_mb < -SIZE_EPSILON_MB:
            raise InvariantViolation(f"L{self.index}: negative total size {self.total_size_mb}")
        actual = math.fsum(f.size_mb for f in self.files)
        if abs(actual - self.total_size_mb) > SIZE_EPSILON_MB * max(1.0, actual):
            raise InvariantViolation(
                f"L{self.index}: total size {self.total_size_mb:.6f} MB != sum of files {actual:.6f} MB"
            )
        if self.compactions_as_source < 0:
            raise InvariantViolation(f"L{self.index}: negative compaction count")

    def __repr__(self) -> str:
        return f"Level(L{self.index}, files={self.file_count}, size={self.total_size_mb:.1f}MB, {self.state.value})"
