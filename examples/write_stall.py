"""Write stalls: what happens when ingest outruns flushing.

Three runs share one engine configuration and differ only in the client
write rate. The disk is slow (100 MB/s) and the engine keeps at most two
write buffers, so:

- At a rate the disk can absorb, memtables fill, flush, and nothing stalls.
- Slightly above it, both buffers fill before the oldest flush finishes and
  writes stall. Stalled writes accumulate in memory until a flush frees a
  buffer.
- Far above it, the stalled backlog grows without bound and the engine is
  OOM-killed once buffers plus backlog exceed the memory ceiling.

## Memory model

```
   client writes ──► active memtable ──freeze──► immutable memtables ──flush──► L0
                          │                           (<= maxWriteBufferNumber)
                          └── stalled backlog (when all buffers are immutable)
   OOM when: active + immutable + backlog > buffers * flush size + maxStalledWriteMemoryMB
```
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from lsmsimulator import MetricsHistory, SimConfig, Simulator

# =============================================================================
# Simulation
# =============================================================================


@dataclass
class RunResult:
    """Outcome of one write-rate run."""

    write_rate_mbps: float
    history: MetricsHistory
    oom_at_s: float | None

    @property
    def frame(self) -> pd.DataFrame:
        return self.history.to_dataframe()


def base_config() -> SimConfig:
    return SimConfig(
        memtable_flush_size_mb=64,
        max_write_buffer_number=2,
        io_throughput_mbps=100,
        max_stalled_write_memory_mb=512,
        l0_compaction_trigger=8,
    )


def run_at_rate(write_rate_mbps: float, duration_s: float, sample_every_s: float) -> RunResult:
    sim = Simulator(base_config().with_changes(write_rate_mbps=write_rate_mbps))
    sim.start()
    history = MetricsHistory()
    oom_at = None

    elapsed = 0.0
    while elapsed < duration_s:
        result = sim.advance(sample_every_s)
        elapsed += sample_every_s
        history.record(sim.metrics(reset_window=True))
        if result.status == "oom_killed":
            oom_at = result.virtual_time
            break

    return RunResult(write_rate_mbps=write_rate_mbps, history=history, oom_at_s=oom_at)


# =============================================================================
# Summary
# =============================================================================


def print_summary(results: list[RunResult]) -> None:
    print("\n" + "=" * 72)
    print("WRITE STALL COMPARISON")
    print("=" * 72)

    header = f"{'Rate (MB/s)':<14} {'Stalls':>8} {'Stalled (s)':>12} {'Peak mem (MB)':>14} {'Outcome':>14}"
    print(header)
    print("-" * len(header))
    for r in results:
        df = r.frame
        last = r.history.latest()
        outcome = f"OOM @ {r.oom_at_s:.2f}s" if r.oom_at_s is not None else "survived"
        print(
            f"{r.write_rate_mbps:<14.0f} {last.stall_count:>8} {last.stall_duration_seconds:>12.2f} "
            f"{df['memory_mb'].max():>14.1f} {outcome:>14}"
        )
    print("\n" + "=" * 72)


# =============================================================================
# Visualization
# =============================================================================


def visualize_results(results: list[RunResult], output_dir: Path) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    ceiling = base_config().memory_ceiling_mb

    fig, axes = plt.subplots(2, 1, figsize=(12, 8), sharex=True)

    ax = axes[0]
    for r in results:
        df = r.frame
        ax.plot(df.index, df["memory_mb"], label=f"{r.write_rate_mbps:.0f} MB/s")
    ax.axhline(ceiling, color="red", linestyle="--", alpha=0.6, label="OOM ceiling")
    ax.set_ylabel("Memory (MB)")
    ax.set_title("Write buffers + stalled backlog")
    ax.legend(loc="upper left", fontsize=8)
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    for r in results:
        df = r.frame
        ax.plot(df.index, df["user_write_throughput_mbps"], label=f"{r.write_rate_mbps:.0f} MB/s")
    ax.set_xlabel("Virtual time (s)")
    ax.set_ylabel("Accepted ingest (MB/s)")
    ax.set_title("Client throughput per sample")
    ax.grid(True, alpha=0.3)

    fig.suptitle("Write stalls under increasing ingest", fontsize=14)
    fig.tight_layout()
    fig.savefig(output_dir / "write_stall.png", dpi=150)
    plt.close(fig)
    print(f"Saved: {output_dir / 'write_stall.png'}")


# =============================================================================
# Entry Point
# =============================================================================


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Write stall and OOM demonstration")
    parser.add_argument("--duration", type=float, default=30.0, help="Virtual seconds per run")
    parser.add_argument("--sample", type=float, default=0.25, help="Seconds between metric samples")
    parser.add_argument(
        "--rates",
        type=float,
        nargs="+",
        default=[60.0, 120.0, 400.0],
        help="Client write rates to compare (MB/s)",
    )
    parser.add_argument("--output", type=str, default="output/write_stall", help="Output directory")
    parser.add_argument("--no-viz", action="store_true", help="Skip visualization generation")
    args = parser.parse_args()

    results = [run_at_rate(rate, args.duration, args.sample) for rate in args.rates]
    print_summary(results)

    if not args.no_viz:
        visualize_results(results, Path(args.output))
