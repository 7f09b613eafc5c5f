"""Time series of metric snapshots for post-run analysis."""

from __future__ import annotations

from typing import Iterator

import pandas as pd

from lsmsimulator.instrumentation.metrics import MetricsSnapshot

# Scalar columns exported to the DataFrame; dict-valued fields are flattened separately.
_SCALAR_FIELDS = (
    "write_amplification",
    "window_write_amplification",
    "read_amplification",
    "space_amplification",
    "user_write_mb",
    "flush_write_mb",
    "compaction_write_mb",
    "flush_count",
    "compaction_count",
    "user_write_throughput_mbps",
    "flush_throughput_mbps",
    "compaction_throughput_mbps",
    "disk_write_throughput_mbps",
    "disk_utilization_pct",
    "cpu_utilization_pct",
    "is_stalled",
    "is_oom_killed",
    "stall_duration_seconds",
    "memory_mb",
    "total_data_mb",
    "l0_file_count",
    "in_progress_compactions",
    "sustainable_write_rate_mbps",
)


class MetricsHistory:
    """Ordered collection of MetricsSnapshot samples.

    Args:
        max_samples: Oldest samples are dropped beyond this count. None keeps all.

    Example::

        history = MetricsHistory()
        for _ in range(60):
            sim.advance(1.0)
            history.record(sim.metrics(reset_window=True))
        df = history.to_dataframe()
        df["write_amplification"].plot()
    """

    TIME = "time_s"

    def __init__(self, max_samples: int | None = None) -> None:
        self.max_samples = max_samples
        self._samples: list[MetricsSnapshot] = []

    def record(self, snapshot: MetricsSnapshot) -> None:
        self._samples.append(snapshot)
        if self.max_samples is not None and len(self._samples) > self.max_samples:
            del self._samples[: len(self._samples) - self.max_samples]

    def clear(self) -> None:
        self._samples.clear()

    @property
    def samples(self) -> list[MetricsSnapshot]:
        return list(self._samples)

    def latest(self) -> MetricsSnapshot | None:
        return self._samples[-1] if self._samples else None

    def series(self, field_name: str) -> list[tuple[float, object]]:
        """(time, value) pairs for one snapshot field."""
        return [(s.timestamp, getattr(s, field_name)) for s in self._samples]

    def to_dataframe(self) -> pd.DataFrame:
        """One row per sample, indexed by virtual time in seconds.

        Per-level byte counters become ``level_<n>_write_mb`` columns.
        """
        rows = []
        for s in self._samples:
            row = {self.TIME: s.timestamp}
            for name in _SCALAR_FIELDS:
                row[name] = getattr(s, name)
            for level, mb in s.level_write_mb.items():
                row[f"level_{level}_write_mb"] = mb
            rows.append(row)
        if not rows:
            return pd.DataFrame(columns=[self.TIME, *_SCALAR_FIELDS]).set_index(self.TIME)
        df = pd.DataFrame(rows).set_index(self.TIME)
        level_columns = [c for c in df.columns if c.startswith("level_")]
        if level_columns:
            df[level_columns] = df[level_columns].fillna(0.0)
        return df

    def __iter__(self) -> Iterator[MetricsSnapshot]:
        return iter(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
