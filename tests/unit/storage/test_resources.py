"""Unit tests for the disk/CPU cost model."""

import pytest

from lsmsimulator.config import SimConfig, get_compression_profile
from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import InvariantViolation
from lsmsimulator.storage.resources import ResourceBudget, ResourceModel


def _t(seconds: float) -> Instant:
    return Instant.from_seconds(seconds)


class TestResourceBudget:
    def test_slots(self):
        budget = ResourceBudget(max_background_jobs=2)
        budget.acquire_slot()
        budget.acquire_slot()
        assert budget.free_slots == 0
        with pytest.raises(InvariantViolation):
            budget.acquire_slot()
        budget.release_slot()
        assert budget.free_slots == 1

    def test_release_without_acquire(self):
        with pytest.raises(InvariantViolation):
            ResourceBudget(1).release_slot()

    def test_busy_until_serializes_work(self):
        budget = ResourceBudget(1)
        assert budget.occupy_disk(_t(0), 2.0) == _t(2)
        assert budget.occupy_disk(_t(1), 1.0) == _t(3)
        assert budget.occupy_disk(_t(10), 1.0) == _t(11)

    def test_reset(self):
        budget = ResourceBudget(2)
        budget.acquire_slot()
        budget.occupy_cpu(_t(0), 5.0)
        budget.reset()
        assert budget.occupied_slots == 0
        assert budget.cpu_busy_until == Instant.epoch()


class TestResourceModel:
    def _make_model(self, **kwargs) -> ResourceModel:
        return ResourceModel(SimConfig(**kwargs))

    def test_flush_duration_is_write_plus_latency(self):
        model = self._make_model(io_throughput_mbps=500, io_latency_ms=5)
        cost = model.flush_cost(_t(0), 64.0)
        assert cost.start == _t(0)
        assert cost.end.to_seconds() == pytest.approx(64 / 500 + 0.005)
        assert cost.output_mb == 64.0
        assert cost.cpu_seconds == 0.0

    def test_compaction_duration_is_additive_when_idle(self):
        model = self._make_model(io_throughput_mbps=500, io_latency_ms=5)
        cost = model.compaction_cost(_t(0), 256.0, 230.4, input_files=4)
        expected = 256 / 500 + 230.4 / 500 + 0.005
        assert cost.duration_seconds == pytest.approx(expected)
        assert cost.read_io_seconds == pytest.approx(256 / 500)

    def test_contention_on_shared_disk(self):
        model = self._make_model(io_throughput_mbps=100, io_latency_ms=0)
        first = model.flush_cost(_t(0), 100.0)
        second = model.flush_cost(_t(0.5), 100.0)
        assert first.end == _t(1)
        assert second.start == _t(1)
        assert second.end == _t(2)

    def test_compression_shrinks_output_and_costs_cpu(self):
        model = self._make_model(compression=get_compression_profile("zstd"), io_latency_ms=0)
        cost = model.flush_cost(_t(0), 47.0)
        assert cost.output_mb == pytest.approx(47.0 * 0.35)
        assert cost.cpu_seconds == pytest.approx(0.1)
        assert cost.end.to_seconds() == pytest.approx(0.1 + 47.0 * 0.35 / 500)

    def test_subcompactions_divide_cpu_time(self):
        zstd = get_compression_profile("zstd")
        one = self._make_model(compression=zstd, max_subcompactions=1)
        four = self._make_model(compression=zstd, max_subcompactions=4)
        cost_one = one.compaction_cost(_t(0), 35.0, 35.0, input_files=8)
        cost_four = four.compaction_cost(_t(0), 35.0, 35.0, input_files=8)
        assert cost_four.cpu_seconds == pytest.approx(cost_one.cpu_seconds / 4)
        assert cost_four.io_seconds == pytest.approx(cost_one.io_seconds)

    def test_subcompactions_limited_by_input_files(self):
        zstd = get_compression_profile("zstd")
        model = self._make_model(compression=zstd, max_subcompactions=8)
        baseline = self._make_model(compression=zstd, max_subcompactions=2)
        assert model.compaction_cost(_t(0), 35.0, 35.0, input_files=2).cpu_seconds == pytest.approx(
            baseline.compaction_cost(_t(0), 35.0, 35.0, input_files=2).cpu_seconds
        )
