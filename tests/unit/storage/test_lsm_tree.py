"""Unit tests for level bookkeeping and compaction picking."""

import pytest

from lsmsimulator.config import SimConfig
from lsmsimulator.core.temporal import Instant
from lsmsimulator.errors import InvariantViolation
from lsmsimulator.storage.lsm_tree import LSMTree, split_into_files
from lsmsimulator.storage.sstable import Level, LevelState, SSTFile


def _t(seconds: float) -> Instant:
    return Instant.from_seconds(seconds)


class TestLevel:
    def test_add_remove_tracks_total(self):
        level = Level(index=1)
        level.add(SSTFile(1, 10.0, _t(0)))
        level.add(SSTFile(2, 5.0, _t(1)))
        assert level.total_size_mb == 15.0
        assert level.remove({1}) == 10.0
        assert level.total_size_mb == 5.0
        level.check_invariants()

    def test_remove_missing_file(self):
        level = Level(index=0)
        with pytest.raises(InvariantViolation):
            level.remove({99})

    def test_mismatched_total_is_detected(self):
        level = Level(index=2)
        level.add(SSTFile(1, 10.0, _t(0)))
        level.total_size_mb = 12.0
        with pytest.raises(InvariantViolation):
            level.check_invariants()

    def test_age(self):
        assert SSTFile(1, 1.0, _t(2)).age_seconds(_t(5)) == pytest.approx(3.0)


class TestLSMTree:
    def _make_tree(self, **kwargs) -> LSMTree:
        return LSMTree(SimConfig(**kwargs))

    def _fill_l0(self, tree: LSMTree, count: int, size: float = 64.0) -> None:
        for i in range(count):
            tree.add_flushed_file(size, _t(i))

    def test_l0_below_trigger_does_not_compact(self):
        tree = self._make_tree(l0_compaction_trigger=4)
        self._fill_l0(tree, 3)
        assert tree.score(0) == pytest.approx(0.75)
        assert tree.pick_compaction() is None

    def test_l0_compaction_takes_all_l0_files(self):
        tree = self._make_tree(l0_compaction_trigger=4, compaction_reduction_factor=0.9)
        self._fill_l0(tree, 4)
        job = tree.pick_compaction()
        assert job.from_level == 0 and job.to_level == 1
        assert len(job.source_file_ids) == 4
        assert job.input_mb == pytest.approx(256.0)
        assert job.output_mb == pytest.approx(230.4)

    def test_complete_l0_compaction(self):
        tree = self._make_tree(l0_compaction_trigger=4, target_file_size_mb=64)
        self._fill_l0(tree, 4)
        job = tree.pick_compaction()
        tree.start_compaction(job)
        assert tree.levels[0].state is LevelState.COMPACTING
        assert tree.score(0) == 0.0

        done, outputs = tree.complete_compaction(job.job_id, _t(10))
        assert done is job
        assert tree.levels[0].file_count == 0
        assert tree.levels[1].total_size_mb == pytest.approx(230.4)
        assert [f.size_mb for f in outputs] == pytest.approx([64, 64, 64, 38.4])
        assert tree.levels[0].state is LevelState.IDLE
        tree.check_invariants()

    def test_l0_compaction_includes_l1_files(self):
        tree = self._make_tree(l0_compaction_trigger=2)
        tree.levels[1].add(SSTFile(100, 50.0, _t(0)))
        self._fill_l0(tree, 2, size=10.0)
        job = tree.pick_compaction()
        assert job.target_file_ids == {100}
        assert job.input_mb == pytest.approx(70.0)

    def test_deeper_level_picks_oldest_until_under_target(self):
        tree = self._make_tree(max_bytes_for_level_base_mb=100, target_file_size_mb=25, level_multiplier=10, max_compaction_bytes_mb=2000)
        for i in range(5):
            tree.levels[1].add(SSTFile(10 + i, 30.0, _t(i)))
        for i in range(10):
            tree.levels[2].add(SSTFile(100 + i, 100.0, _t(i)))

        assert tree.score(1) == pytest.approx(1.5)
        job = tree.pick_compaction()
        assert job.from_level == 1
        assert job.source_file_ids == {10, 11}
        assert len(job.target_file_ids) == 6
        assert job.output_mb == pytest.approx(660.0 * 0.99)

    def test_ties_go_to_shallower_level(self):
        tree = self._make_tree(l0_compaction_trigger=4, max_bytes_for_level_base_mb=100, target_file_size_mb=25)
        self._fill_l0(tree, 8, size=1.0)
        tree.levels[1].add(SSTFile(500, 200.0, _t(0)))
        assert tree.score(0) == pytest.approx(tree.score(1))
        assert tree.pick_compaction().from_level == 0

    def test_last_level_never_compacts(self):
        tree = self._make_tree(num_levels=2, max_bytes_for_level_base_mb=10, target_file_size_mb=5)
        tree.levels[1].add(SSTFile(1, 1000.0, _t(0)))
        assert tree.score(1) == 0.0
        assert tree.pick_compaction() is None

    def test_file_cannot_join_two_compactions(self):
        tree = self._make_tree(l0_compaction_trigger=2)
        self._fill_l0(tree, 2)
        job = tree.pick_compaction()
        tree.start_compaction(job)
        with pytest.raises(InvariantViolation):
            tree.start_compaction(job)

    def test_complete_unknown_job(self):
        with pytest.raises(InvariantViolation):
            self._make_tree().complete_compaction(42, _t(0))

    def test_populate_distributes_geometrically(self):
        tree = self._make_tree(num_levels=4, level_multiplier=10)
        tree.populate(1110.0, _t(0))
        assert tree.levels[0].total_size_mb == 0.0
        assert tree.levels[1].total_size_mb == pytest.approx(10.0)
        assert tree.levels[2].total_size_mb == pytest.approx(100.0)
        assert tree.levels[3].total_size_mb == pytest.approx(1000.0)
        assert tree.total_size_mb == pytest.approx(1110.0)
        tree.check_invariants()

    def test_stats_and_clear(self):
        tree = self._make_tree()
        self._fill_l0(tree, 2)
        stats = tree.stats()
        assert stats.total_files == 2
        assert stats.level_sizes_mb[0] == 128.0
        tree.clear()
        assert tree.total_size_mb == 0.0

    def test_l0_compaction_stops_adding_l1_files_at_limit(self):
        tree = self._make_tree(l0_compaction_trigger=2, max_compaction_bytes_mb=100)
        for i in range(3):
            tree.levels[1].add(SSTFile(100 + i, 30.0, _t(i)))
        self._fill_l0(tree, 2, size=10.0)
        job = tree.pick_compaction()
        assert len(job.source_file_ids) == 2
        assert job.target_file_ids == {100, 101}
        assert job.input_mb == pytest.approx(80.0)

    def test_l0_keeps_all_sources_even_over_limit(self):
        tree = self._make_tree(l0_compaction_trigger=2, max_compaction_bytes_mb=50)
        tree.levels[1].add(SSTFile(100, 10.0, _t(0)))
        self._fill_l0(tree, 2, size=40.0)
        job = tree.pick_compaction()
        assert len(job.source_file_ids) == 2
        assert job.target_file_ids == set()

    def test_deeper_level_pick_respects_limit(self):
        tree = self._make_tree(
            max_bytes_for_level_base_mb=100, target_file_size_mb=25, level_multiplier=10, max_compaction_bytes_mb=50
        )
        for i in range(5):
            tree.levels[1].add(SSTFile(10 + i, 30.0, _t(i)))
        for i in range(3):
            tree.levels[2].add(SSTFile(100 + i, 10.0, _t(i)))
        job = tree.pick_compaction()
        assert job.source_file_ids == {10}
        assert job.target_file_ids == {100, 101}
        assert job.input_mb == pytest.approx(50.0)

    def test_default_limit_allows_large_picks(self):
        tree = self._make_tree(l0_compaction_trigger=2, target_file_size_mb=64, max_bytes_for_level_base_mb=10000)
        for i in range(20):
            tree.levels[1].add(SSTFile(100 + i, 64.0, _t(i)))
        self._fill_l0(tree, 2, size=64.0)
        job = tree.pick_compaction()
        assert len(job.target_file_ids) == 20
        assert job.input_mb <= 64 * 25


class TestDynamicLevelTargets:
    def _make_tree(self, **kwargs) -> LSMTree:
        kwargs.setdefault("num_levels", 4)
        kwargs.setdefault("max_bytes_for_level_base_mb", 100)
        kwargs.setdefault("level_multiplier", 10)
        kwargs.setdefault("target_file_size_mb", 25)
        return LSMTree(SimConfig(level_compaction_dynamic_level_bytes=True, **kwargs))

    def test_static_targets_by_default(self):
        tree = LSMTree(SimConfig(num_levels=4, max_bytes_for_level_base_mb=100, level_multiplier=10, target_file_size_mb=25))
        assert tree.level_targets() == pytest.approx([0.0, 100.0, 1000.0, 10000.0])
        assert tree.base_level() == 1

    def test_empty_tree_targets_last_level(self):
        tree = self._make_tree()
        assert tree.level_targets() == [0.0, 0.0, 0.0, 0.0]
        assert tree.base_level() == 3

    def test_small_data_uses_first_non_empty_level_as_base(self):
        tree = self._make_tree()
        tree.levels[3].add(SSTFile(1, 5.0, _t(0)))
        assert tree.level_targets() == pytest.approx([0.0, 0.0, 0.0, 100.0])
        assert tree.base_level() == 3

    def test_targets_derived_from_largest_level(self):
        tree = self._make_tree()
        tree.levels[3].add(SSTFile(1, 500.0, _t(0)))
        assert tree.level_targets() == pytest.approx([0.0, 0.0, 100.0, 500.0])
        assert tree.base_level() == 2
        assert tree.score(1) == 0.0

    def test_large_data_reaches_level_one(self):
        tree = self._make_tree()
        tree.levels[3].add(SSTFile(1, 5000.0, _t(0)))
        assert tree.level_targets() == pytest.approx([0.0, 100.0, 500.0, 5000.0])
        assert tree.base_level() == 1

    def test_l0_compacts_into_base_level(self):
        tree = self._make_tree(l0_compaction_trigger=4)
        tree.levels[3].add(SSTFile(1, 500.0, _t(0)))
        for i in range(4):
            tree.add_flushed_file(10.0, _t(i))
        job = tree.pick_compaction()
        assert (job.from_level, job.to_level) == (0, 2)
        tree.start_compaction(job)
        tree.complete_compaction(job.job_id, _t(10))
        assert tree.levels[1].file_count == 0
        assert tree.levels[2].total_size_mb == pytest.approx(36.0)
        tree.check_invariants()


class TestSplitIntoFiles:
    def test_exact_multiple(self):
        assert split_into_files(128.0, 64.0) == [64.0, 64.0]

    def test_remainder(self):
        assert split_into_files(100.0, 64.0) == pytest.approx([64.0, 36.0])

    def test_smaller_than_one_file(self):
        assert split_into_files(3.0, 64.0) == [3.0]

    def test_empty(self):
        assert split_into_files(0.0, 64.0) == []
