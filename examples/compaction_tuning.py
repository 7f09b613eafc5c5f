"""Compaction tuning: how level shape trades write amplification for space.

Runs the same sustained ingest against several leveled-compaction shapes
and records write, read and space amplification over time. A larger level
multiplier means fewer levels and less rewriting of data per byte ingested
in the upper levels, but each compaction into a deep level merges with
proportionally more existing data. A higher L0 trigger batches more
flushes per L0->L1 compaction at the cost of read amplification.

Optionally starts from a pre-populated tree (``--initial-mb``) so deep
levels are busy from the first second.
"""

from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

import lsmsimulator
from lsmsimulator import MetricsHistory, SimConfig, Simulator, get_compression_profile

SHAPES: dict[str, dict] = {
    "default (x10, trigger 4)": {},
    "wide (x20, trigger 4)": {"level_multiplier": 20},
    "narrow (x4, trigger 4)": {"level_multiplier": 4},
    "batched L0 (x10, trigger 8)": {"l0_compaction_trigger": 8},
}


def run_shape(
    name: str,
    overrides: dict,
    *,
    duration_s: float,
    write_rate_mbps: float,
    initial_mb: float,
    compression: str,
) -> pd.DataFrame:
    config = SimConfig(
        write_rate_mbps=write_rate_mbps,
        memtable_flush_size_mb=32,
        max_bytes_for_level_base_mb=128,
        target_file_size_mb=32,
        max_background_jobs=4,
        num_levels=5,
        initial_lsm_size_mb=initial_mb,
        compression=get_compression_profile(compression),
    ).with_changes(**overrides)

    sim = Simulator(config)
    history = MetricsHistory()
    elapsed = 0.0
    while elapsed < duration_s:
        result = sim.advance(1.0)
        elapsed += 1.0
        history.record(sim.metrics(reset_window=True))
        if not result.ok:
            print(f"  {name}: stopped at {result.virtual_time:.1f}s ({result.status})")
            break

    df = history.to_dataframe()
    df["shape"] = name
    return df


def print_summary(frames: dict[str, pd.DataFrame]) -> None:
    print("\n" + "=" * 78)
    print("COMPACTION SHAPE COMPARISON (final sample)")
    print("=" * 78)
    header = f"{'Shape':<30} {'WA':>7} {'RA':>6} {'SA':>6} {'Compactions':>12} {'Sustainable':>13}"
    print(header)
    print("-" * len(header))
    for name, df in frames.items():
        last = df.iloc[-1]
        print(
            f"{name:<30} {last['write_amplification']:>7.2f} {last['read_amplification']:>6.0f} "
            f"{last['space_amplification']:>6.2f} {int(last['compaction_count']):>12} "
            f"{last['sustainable_write_rate_mbps']:>10.1f} MB/s"
        )
    print("=" * 78)


def visualize_results(frames: dict[str, pd.DataFrame], output_dir: Path) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)

    fig, axes = plt.subplots(2, 2, figsize=(14, 10))
    panels = [
        ("write_amplification", "Write amplification"),
        ("read_amplification", "Read amplification (sorted runs)"),
        ("space_amplification", "Space amplification"),
        ("disk_utilization_pct", "Disk utilization (%)"),
    ]
    for ax, (column, title) in zip(axes.flat, panels):
        for name, df in frames.items():
            ax.plot(df.index, df[column], label=name)
        ax.set_title(title)
        ax.set_xlabel("Virtual time (s)")
        ax.grid(True, alpha=0.3)
    axes[0][0].legend(loc="lower right", fontsize=8)

    fig.suptitle("Leveled compaction shapes", fontsize=14)
    fig.tight_layout()
    fig.savefig(output_dir / "compaction_tuning.png", dpi=150)
    plt.close(fig)
    print(f"Saved: {output_dir / 'compaction_tuning.png'}")

    combined = pd.concat(frames.values())
    combined.to_csv(output_dir / "compaction_tuning.csv")
    print(f"Saved: {output_dir / 'compaction_tuning.csv'}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Leveled compaction shape comparison")
    parser.add_argument("--duration", type=float, default=120.0, help="Virtual seconds per run")
    parser.add_argument("--rate", type=float, default=40.0, help="Client write rate (MB/s)")
    parser.add_argument("--initial-mb", type=float, default=0.0, help="Pre-populated data across L1+")
    parser.add_argument(
        "--compression", type=str, default="none", help="Compression profile (none, snappy, lz4, zstd)"
    )
    parser.add_argument("--output", type=str, default="output/compaction_tuning", help="Output directory")
    parser.add_argument("--no-viz", action="store_true", help="Skip visualization generation")
    parser.add_argument("--verbose", action="store_true", help="Log simulator events to stderr")
    args = parser.parse_args()

    if args.verbose:
        lsmsimulator.enable_console_logging(level="INFO")

    frames = {
        name: run_shape(
            name,
            overrides,
            duration_s=args.duration,
            write_rate_mbps=args.rate,
            initial_mb=args.initial_mb,
            compression=args.compression,
        )
        for name, overrides in SHAPES.items()
    }
    print_summary(frames)

    if not args.no_viz:
        visualize_results(frames, Path(args.output))
