"""Simulation configuration and compression profiles.

SimConfig holds every tunable of the simulated engine. It is frozen: a
change is made by building a new config (``with_changes``) and handing it to
``Simulator.update_config``, which decides whether the change can be applied
live or requires a reset.

Sizes are in megabytes, rates in MB/s, durations in seconds unless the field
name says otherwise (``io_latency_ms``).
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from lsmsimulator.errors import ConfigValidationError

logger = logging.getLogger(__name__)

MAX_TARGET_FILE_SIZE_MB = 2048.0
MIN_LEVELS = 2
MAX_LEVELS = 10

# max_compaction_bytes_mb = 0 means this many target-size files
DEFAULT_MAX_COMPACTION_FILES = 25

# Fields that may change while the simulation is running. Everything else is
# structural: already-scheduled events were computed from it.
HOT_FIELDS = frozenset({"write_rate_mbps", "simulation_speed_multiplier"})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Compression profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompressionProfile:
    """Cost and effect of one compression algorithm.

    Attributes:
        name: Profile name.
        ratio: Compressed size / uncompressed size, in (0, 1].
        compress_mbps: Compression throughput on one core.
        decompress_mbps: Decompression throughput on one core.
        block_size_kb: Block size the ratios were measured at.
    """

    name: str
    ratio: float = 1.0
    compress_mbps: Optional[float] = None
    decompress_mbps: Optional[float] = None
    block_size_kb: int = 4

    @property
    def is_free(self) -> bool:
        """True when (de)compression costs no CPU time."""
        return self.compress_mbps is None and self.decompress_mbps is None

    def compress_seconds(self, size_mb: float) -> float:
        if self.compress_mbps is None:
            return 0.0
        return size_mb / self.compress_mbps

    def decompress_seconds(self, size_mb: float) -> float:
        if self.decompress_mbps is None:
            return 0.0
        return size_mb / self.decompress_mbps

    def type_problems(self) -> list[str]:
        found = []
        if not isinstance(self.name, str):
            found.append(f"compression.name must be a string, got {self.name!r}")
        if not _is_number(self.ratio):
            found.append(f"compression.ratio must be a number, got {self.ratio!r}")
        for attr in ("compress_mbps", "decompress_mbps"):
            value = getattr(self, attr)
            if value is not None and not _is_number(value):
                found.append(f"compression.{attr} must be a number or null, got {value!r}")
        if isinstance(self.block_size_kb, bool) or not isinstance(self.block_size_kb, int):
            found.append(f"compression.block_size_kb must be an integer, got {self.block_size_kb!r}")
        return found

    def problems(self) -> list[str]:
        found = self.type_problems()
        if found:
            return found
        if not 0.0 < self.ratio <= 1.0:
            found.append(f"compression.ratio must be in (0, 1], got {self.ratio}")
        for attr in ("compress_mbps", "decompress_mbps"):
            value = getattr(self, attr)
            if value is not None and value <= 0:
                found.append(f"compression.{attr} must be > 0, got {value}")
        if self.block_size_kb <= 0:
            found.append(f"compression.block_size_kb must be > 0, got {self.block_size_kb}")
        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ratio": self.ratio,
            "compressMBps": self.compress_mbps,
            "decompressMBps": self.decompress_mbps,
            "blockSizeKB": self.block_size_kb,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompressionProfile:
        return cls(
            name=data.get("name", "custom"),
            ratio=data.get("ratio", 1.0),
            compress_mbps=data.get("compressMBps", data.get("compress_mbps")),
            decompress_mbps=data.get("decompressMBps", data.get("decompress_mbps")),
            block_size_kb=data.get("blockSizeKB", data.get("block_size_kb", 4)),
        )


COMPRESSION_PROFILES: dict[str, CompressionProfile] = {
    "none": CompressionProfile("none"),
    "snappy": CompressionProfile("snappy", ratio=0.48, compress_mbps=530.0, decompress_mbps=1800.0),
    "lz4": CompressionProfile("lz4", ratio=0.47, compress_mbps=740.0, decompress_mbps=4500.0),
    "zstd": CompressionProfile("zstd", ratio=0.35, compress_mbps=470.0, decompress_mbps=1380.0),
}


def get_compression_profile(name: str) -> CompressionProfile:
    """Look up a named profile (case-insensitive).

    Raises:
        ConfigValidationError: If no profile has that name.
    """
    try:
        return COMPRESSION_PROFILES[name.lower()]
    except KeyError:
        known = ", ".join(sorted(COMPRESSION_PROFILES))
        raise ConfigValidationError(f"unknown compression profile {name!r} (known: {known})") from None


# ---------------------------------------------------------------------------
# SimConfig
# ---------------------------------------------------------------------------

# snake_case attribute -> operator-facing camelCase key
_WIRE_NAMES = {
    "write_rate_mbps": "writeRateMBps",
    "memtable_flush_size_mb": "memtableFlushSizeMB",
    "max_write_buffer_number": "maxWriteBufferNumber",
    "memtable_flush_timeout_sec": "memtableFlushTimeoutSec",
    "l0_compaction_trigger": "l0CompactionTrigger",
    "max_bytes_for_level_base_mb": "maxBytesForLevelBaseMB",
    "level_multiplier": "levelMultiplier",
    "target_file_size_mb": "targetFileSizeMB",
    "target_file_size_multiplier": "targetFileSizeMultiplier",
    "compaction_reduction_factor": "compactionReductionFactor",
    "deep_level_reduction_factor": "deepLevelReductionFactor",
    "max_background_jobs": "maxBackgroundJobs",
    "max_subcompactions": "maxSubcompactions",
    "max_compaction_bytes_mb": "maxCompactionBytesMB",
    "io_latency_ms": "ioLatencyMs",
    "io_throughput_mbps": "ioThroughputMBps",
    "num_levels": "numLevels",
    "level_compaction_dynamic_level_bytes": "levelCompactionDynamicLevelBytes",
    "compression": "compression",
    "max_stalled_write_memory_mb": "maxStalledWriteMemoryMB",
    "initial_lsm_size_mb": "initialLSMSizeMB",
    "simulation_speed_multiplier": "simulationSpeedMultiplier",
}
_FROM_WIRE = {wire: attr for attr, wire in _WIRE_NAMES.items()}

_INT_FIELDS = frozenset(
    {"max_write_buffer_number", "l0_compaction_trigger", "max_background_jobs", "max_subcompactions", "num_levels"}
)
_BOOL_FIELDS = frozenset({"level_compaction_dynamic_level_bytes"})
_OPTIONAL_FIELDS = frozenset({"max_stalled_write_memory_mb"})


@dataclass(frozen=True)
class SimConfig:
    """All tunables of the simulated storage engine.

    Attributes:
        write_rate_mbps: Client ingest rate. 0 leaves ingest idle.
        memtable_flush_size_mb: Memtable size that triggers a flush.
        max_write_buffer_number: Memtables (active + immutable) before writes stall.
        memtable_flush_timeout_sec: Age that triggers a flush. 0 disables.
        l0_compaction_trigger: L0 file count that triggers L0->L1 compaction.
        max_bytes_for_level_base_mb: Target size of L1.
        level_multiplier: Growth factor between level targets.
        target_file_size_mb: Compaction output file size at L1.
        target_file_size_multiplier: Output file size growth per level.
        compaction_reduction_factor: Output/input ratio for L0->L1 (deduplication).
        deep_level_reduction_factor: Output/input ratio for deeper compactions.
        max_background_jobs: Concurrent compaction slots.
        max_subcompactions: Parallel splits of one compaction's CPU work.
        max_compaction_bytes_mb: Cap on the input of one compaction. 0 means
            25 x target_file_size_mb.
        io_latency_ms: Fixed per-operation seek/latency cost.
        io_throughput_mbps: Disk bandwidth shared by all background work.
        num_levels: Depth of the level hierarchy.
        level_compaction_dynamic_level_bytes: Derive level targets from the
            largest level instead of from max_bytes_for_level_base_mb; L0
            compacts straight into the first level that needs data.
        compression: Compression profile applied to flush and compaction output.
        max_stalled_write_memory_mb: Memory allowed for stalled writes beyond
            the write buffers. None disables OOM detection.
        initial_lsm_size_mb: Data pre-populated across L1+ on reset.
        simulation_speed_multiplier: Virtual seconds per wall-clock second
            when driven by the controller.
    """

    write_rate_mbps: float = 10.0
    memtable_flush_size_mb: float = 64.0
    max_write_buffer_number: int = 2
    memtable_flush_timeout_sec: float = 0.0
    l0_compaction_trigger: int = 4
    max_bytes_for_level_base_mb: float = 256.0
    level_multiplier: float = 10.0
    target_file_size_mb: float = 64.0
    target_file_size_multiplier: float = 2.0
    compaction_reduction_factor: float = 0.9
    deep_level_reduction_factor: float = 0.99
    max_background_jobs: int = 2
    max_subcompactions: int = 1
    max_compaction_bytes_mb: float = 0.0
    io_latency_ms: float = 5.0
    io_throughput_mbps: float = 500.0
    num_levels: int = 7
    level_compaction_dynamic_level_bytes: bool = False
    compression: CompressionProfile = field(default_factory=lambda: COMPRESSION_PROFILES["none"])
    max_stalled_write_memory_mb: Optional[float] = 4096.0
    initial_lsm_size_mb: float = 0.0
    simulation_speed_multiplier: float = 1.0

    # ----- validation -----

    def _type_problems(self) -> list[str]:
        found = []
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            wire = _WIRE_NAMES[f.name]
            if f.name == "compression":
                if not isinstance(value, CompressionProfile):
                    found.append(f"compression must be a profile name or object, got {value!r}")
                else:
                    found.extend(value.type_problems())
            elif value is None and f.name in _OPTIONAL_FIELDS:
                continue
            elif f.name in _BOOL_FIELDS:
                if not isinstance(value, bool):
                    found.append(f"{wire} must be true or false, got {value!r}")
            elif f.name in _INT_FIELDS:
                if isinstance(value, bool) or not isinstance(value, int):
                    found.append(f"{wire} must be an integer, got {value!r}")
            elif not _is_number(value):
                found.append(f"{wire} must be a number, got {value!r}")
        return found

    def problems(self) -> list[str]:
        """Every violated bound, in field order. Empty when valid.

        Wrongly typed values are reported on their own; bounds are only
        checked once every field has the right type.
        """
        found = self._type_problems()
        if found:
            return found

        def check(ok: bool, message: str) -> None:
            if not ok:
                found.append(message)

        check(self.write_rate_mbps >= 0, f"writeRateMBps must be >= 0, got {self.write_rate_mbps}")
        check(self.memtable_flush_size_mb > 0, f"memtableFlushSizeMB must be > 0, got {self.memtable_flush_size_mb}")
        check(self.max_write_buffer_number >= 1, f"maxWriteBufferNumber must be >= 1, got {self.max_write_buffer_number}")
        check(
            self.memtable_flush_timeout_sec >= 0,
            f"memtableFlushTimeoutSec must be >= 0, got {self.memtable_flush_timeout_sec}",
        )
        check(self.l0_compaction_trigger >= 2, f"l0CompactionTrigger must be >= 2, got {self.l0_compaction_trigger}")
        check(
            self.max_bytes_for_level_base_mb > 0,
            f"maxBytesForLevelBaseMB must be > 0, got {self.max_bytes_for_level_base_mb}",
        )
        check(self.level_multiplier > 1, f"levelMultiplier must be > 1, got {self.level_multiplier}")
        check(self.target_file_size_mb > 0, f"targetFileSizeMB must be > 0, got {self.target_file_size_mb}")
        if self.target_file_size_mb > 0 and self.max_bytes_for_level_base_mb > 0:
            check(
                self.target_file_size_mb <= self.max_bytes_for_level_base_mb,
                "targetFileSizeMB must be <= maxBytesForLevelBaseMB "
                f"({self.target_file_size_mb} > {self.max_bytes_for_level_base_mb})",
            )
        check(
            self.target_file_size_multiplier >= 1,
            f"targetFileSizeMultiplier must be >= 1, got {self.target_file_size_multiplier}",
        )
        check(
            0.1 <= self.compaction_reduction_factor <= 1.0,
            f"compactionReductionFactor must be in [0.1, 1.0], got {self.compaction_reduction_factor}",
        )
        check(
            0.1 <= self.deep_level_reduction_factor <= 1.0,
            f"deepLevelReductionFactor must be in [0.1, 1.0], got {self.deep_level_reduction_factor}",
        )
        check(self.max_background_jobs >= 1, f"maxBackgroundJobs must be >= 1, got {self.max_background_jobs}")
        check(self.max_subcompactions >= 1, f"maxSubcompactions must be >= 1, got {self.max_subcompactions}")
        check(
            self.max_compaction_bytes_mb >= 0,
            f"maxCompactionBytesMB must be >= 0, got {self.max_compaction_bytes_mb}",
        )
        check(self.io_latency_ms >= 0, f"ioLatencyMs must be >= 0, got {self.io_latency_ms}")
        check(self.io_throughput_mbps > 0, f"ioThroughputMBps must be > 0, got {self.io_throughput_mbps}")
        check(
            MIN_LEVELS <= self.num_levels <= MAX_LEVELS,
            f"numLevels must be in [{MIN_LEVELS}, {MAX_LEVELS}], got {self.num_levels}",
        )
        found.extend(self.compression.problems())
        if self.max_stalled_write_memory_mb is not None:
            check(
                self.max_stalled_write_memory_mb >= 0,
                f"maxStalledWriteMemoryMB must be >= 0, got {self.max_stalled_write_memory_mb}",
            )
        check(self.initial_lsm_size_mb >= 0, f"initialLSMSizeMB must be >= 0, got {self.initial_lsm_size_mb}")
        check(
            self.simulation_speed_multiplier >= 1,
            f"simulationSpeedMultiplier must be >= 1, got {self.simulation_speed_multiplier}",
        )
        return found

    def validate(self) -> SimConfig:
        """Return self, or raise ConfigValidationError listing every problem."""
        found = self.problems()
        if found:
            raise ConfigValidationError(found)
        return self

    # ----- derived values -----

    @property
    def io_latency_seconds(self) -> float:
        return self.io_latency_ms / 1000.0

    @property
    def memory_ceiling_mb(self) -> Optional[float]:
        """Memory (buffers + stalled writes) above which the engine is OOM-killed."""
        if self.max_stalled_write_memory_mb is None:
            return None
        return self.max_write_buffer_number * self.memtable_flush_size_mb + self.max_stalled_write_memory_mb

    def level_target_mb(self, level: int) -> float:
        """Byte budget of ``level``. L0 is governed by file count and has no byte target."""
        if level <= 0:
            return 0.0
        return self.max_bytes_for_level_base_mb * self.level_multiplier ** (level - 1)

    def target_file_size_for_level(self, level: int) -> float:
        if level <= 1:
            return min(self.target_file_size_mb, MAX_TARGET_FILE_SIZE_MB)
        size = self.target_file_size_mb * self.target_file_size_multiplier ** (level - 1)
        return min(size, MAX_TARGET_FILE_SIZE_MB)

    @property
    def effective_max_compaction_bytes_mb(self) -> float:
        if self.max_compaction_bytes_mb > 0:
            return self.max_compaction_bytes_mb
        return self.target_file_size_mb * DEFAULT_MAX_COMPACTION_FILES

    def reduction_factor_for(self, from_level: int) -> float:
        if from_level == 0:
            return self.compaction_reduction_factor
        return self.deep_level_reduction_factor

    def structural_changes(self, other: SimConfig) -> list[str]:
        """Names of non-hot fields that differ between self and ``other``."""
        return [
            f.name
            for f in dataclasses.fields(self)
            if f.name not in HOT_FIELDS and getattr(self, f.name) != getattr(other, f.name)
        ]

    # ----- construction / serialization -----

    def with_changes(self, **changes: Any) -> SimConfig:
        if isinstance(changes.get("compression"), str):
            changes["compression"] = get_compression_profile(changes["compression"])
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for attr, wire in _WIRE_NAMES.items():
            value = getattr(self, attr)
            data[wire] = value.to_dict() if isinstance(value, CompressionProfile) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: Optional[SimConfig] = None) -> SimConfig:
        """Build a config from camelCase (or snake_case) keys.

        Missing keys keep the value from ``base`` (defaults when None). The
        compression entry may be a profile name or a profile dict.

        Raises:
            ConfigValidationError: On unknown keys or violated bounds.
        """
        changes: dict[str, Any] = {}
        unknown = []
        for key, value in data.items():
            attr = _FROM_WIRE.get(key, key if key in _WIRE_NAMES else None)
            if attr is None:
                unknown.append(key)
                continue
            if attr == "compression":
                if isinstance(value, str):
                    value = get_compression_profile(value)
                elif isinstance(value, dict):
                    value = CompressionProfile.from_dict(value)
            elif attr in _INT_FIELDS and isinstance(value, float) and value.is_integer():
                # JSON numbers such as 4.0
                value = int(value)
            changes[attr] = value
        if unknown:
            raise ConfigValidationError([f"unknown config field {key!r}" for key in unknown])
        return dataclasses.replace(base or cls(), **changes).validate()

    @classmethod
    def from_json(cls, text: str, base: Optional[SimConfig] = None) -> SimConfig:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigValidationError(f"config is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigValidationError("config JSON must be an object")
        return cls.from_dict(data, base=base)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def default_config() -> SimConfig:
    """Seven-level engine with a 64 MB memtable on a 500 MB/s disk."""
    return SimConfig()


def three_level_config() -> SimConfig:
    """Small hierarchy that reaches its deepest level quickly. Handy for experiments."""
    return SimConfig(
        num_levels=3,
        memtable_flush_size_mb=16.0,
        max_bytes_for_level_base_mb=64.0,
        target_file_size_mb=16.0,
        write_rate_mbps=20.0,
    )
