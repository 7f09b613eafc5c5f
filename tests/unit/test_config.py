"""Unit tests for SimConfig validation, derived values and serialization."""

import pytest

from lsmsimulator.config import (
    COMPRESSION_PROFILES,
    CompressionProfile,
    SimConfig,
    get_compression_profile,
    three_level_config,
)
from lsmsimulator.errors import ConfigValidationError


class TestValidation:
    def test_defaults_are_valid(self):
        assert SimConfig().problems() == []
        assert three_level_config().validate().num_levels == 3

    @pytest.mark.parametrize(
        "field,value",
        [
            ("write_rate_mbps", -1.0),
            ("memtable_flush_size_mb", 0.0),
            ("max_write_buffer_number", 0),
            ("l0_compaction_trigger", 1),
            ("compaction_reduction_factor", 0.05),
            ("compaction_reduction_factor", 1.5),
            ("max_background_jobs", 0),
            ("max_subcompactions", 0),
            ("max_compaction_bytes_mb", -1.0),
            ("io_throughput_mbps", 0.0),
            ("num_levels", 1),
            ("num_levels", 11),
            ("level_multiplier", 1.0),
            ("simulation_speed_multiplier", 0.5),
        ],
    )
    def test_bounds(self, field, value):
        config = SimConfig(**{field: value})
        with pytest.raises(ConfigValidationError):
            config.validate()

    def test_collects_every_problem(self):
        config = SimConfig(num_levels=1, io_throughput_mbps=-5)
        with pytest.raises(ConfigValidationError) as exc_info:
            config.validate()
        assert len(exc_info.value.problems) == 2
        assert "numLevels" in str(exc_info.value)

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            SimConfig(max_background_jobs=0).validate()

    def test_target_file_size_must_fit_level_base(self):
        with pytest.raises(ConfigValidationError):
            SimConfig(target_file_size_mb=512, max_bytes_for_level_base_mb=256).validate()

    def test_zero_write_rate_is_allowed(self):
        assert SimConfig(write_rate_mbps=0).problems() == []

    def test_bad_compression_profile(self):
        config = SimConfig(compression=CompressionProfile("weird", ratio=1.5))
        assert any("ratio" in p for p in config.problems())


class TestDerivedValues:
    def test_level_targets_grow_geometrically(self):
        config = SimConfig(max_bytes_for_level_base_mb=256, level_multiplier=10)
        assert config.level_target_mb(0) == 0.0
        assert config.level_target_mb(1) == 256
        assert config.level_target_mb(3) == pytest.approx(25_600)

    def test_target_file_size_per_level_is_capped(self):
        config = SimConfig(target_file_size_mb=64, target_file_size_multiplier=2)
        assert config.target_file_size_for_level(1) == 64
        assert config.target_file_size_for_level(3) == 256
        assert config.target_file_size_for_level(9) == 2048

    def test_memory_ceiling(self):
        config = SimConfig(max_write_buffer_number=3, memtable_flush_size_mb=64, max_stalled_write_memory_mb=100)
        assert config.memory_ceiling_mb == pytest.approx(292)
        assert SimConfig(max_stalled_write_memory_mb=None).memory_ceiling_mb is None

    def test_reduction_factor_by_level(self):
        config = SimConfig(compaction_reduction_factor=0.8, deep_level_reduction_factor=0.95)
        assert config.reduction_factor_for(0) == 0.8
        assert config.reduction_factor_for(2) == 0.95

    def test_structural_changes_ignore_hot_fields(self):
        base = SimConfig()
        assert base.structural_changes(base.with_changes(write_rate_mbps=99)) == []
        assert base.structural_changes(base.with_changes(num_levels=4, write_rate_mbps=1)) == ["num_levels"]

    def test_max_compaction_bytes_defaults_to_25_target_files(self):
        assert SimConfig(target_file_size_mb=64).effective_max_compaction_bytes_mb == 1600
        assert SimConfig(max_compaction_bytes_mb=500).effective_max_compaction_bytes_mb == 500

    def test_dynamic_level_bytes_is_structural(self):
        base = SimConfig()
        changed = base.with_changes(level_compaction_dynamic_level_bytes=True)
        assert base.structural_changes(changed) == ["level_compaction_dynamic_level_bytes"]


class TestCompressionProfiles:
    def test_named_profiles(self):
        assert set(COMPRESSION_PROFILES) == {"none", "snappy", "lz4", "zstd"}
        assert get_compression_profile("LZ4").name == "lz4"

    def test_none_costs_nothing(self):
        none = get_compression_profile("none")
        assert none.is_free
        assert none.compress_seconds(100) == 0.0
        assert none.ratio == 1.0

    def test_costs_scale_with_size(self):
        zstd = get_compression_profile("zstd")
        assert zstd.compress_seconds(470) == pytest.approx(1.0)
        assert zstd.decompress_seconds(1380) == pytest.approx(1.0)

    def test_unknown_profile(self):
        with pytest.raises(ConfigValidationError):
            get_compression_profile("brotli")


class TestSerialization:
    def test_to_dict_uses_wire_names(self):
        data = SimConfig().to_dict()
        assert data["writeRateMBps"] == 10.0
        assert data["l0CompactionTrigger"] == 4
        assert data["compression"]["name"] == "none"

    def test_from_dict_round_trip(self):
        config = SimConfig(write_rate_mbps=42, compression=get_compression_profile("snappy"))
        assert SimConfig.from_dict(config.to_dict()) == config

    def test_from_dict_partial_keeps_base(self):
        base = SimConfig(num_levels=5)
        updated = SimConfig.from_dict({"writeRateMBps": 3, "compression": "lz4"}, base=base)
        assert updated.num_levels == 5
        assert updated.write_rate_mbps == 3
        assert updated.compression.name == "lz4"

    def test_from_dict_accepts_snake_case(self):
        assert SimConfig.from_dict({"max_background_jobs": 4}).max_background_jobs == 4

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_dict({"bogus": 1})
        assert "bogus" in str(exc_info.value)

    def test_from_dict_validates(self):
        with pytest.raises(ConfigValidationError):
            SimConfig.from_dict({"numLevels": 0})

    def test_json(self):
        config = SimConfig(memtable_flush_size_mb=32)
        assert SimConfig.from_json(config.to_json()) == config
        with pytest.raises(ConfigValidationError):
            SimConfig.from_json("not json")
        with pytest.raises(ConfigValidationError):
            SimConfig.from_json("[1, 2]")


class TestTypeChecking:
    """Wrongly typed values are rejected as ConfigValidationError, never TypeError."""

    def test_null_number_from_json(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_json('{"writeRateMBps": null}')
        assert "writeRateMBps must be a number, got None" in exc_info.value.problems

    def test_string_integer(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_dict({"numLevels": "4"})
        assert exc_info.value.problems == ["numLevels must be an integer, got '4'"]

    def test_integral_float_is_accepted_for_integer_fields(self):
        config = SimConfig.from_json('{"numLevels": 4.0, "maxBackgroundJobs": 3}')
        assert config.num_levels == 4
        assert isinstance(config.num_levels, int)

    def test_fractional_float_is_rejected_for_integer_fields(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_dict({"maxWriteBufferNumber": 2.5})
        assert "maxWriteBufferNumber must be an integer, got 2.5" in exc_info.value.problems

    def test_bool_is_not_a_number(self):
        with pytest.raises(ConfigValidationError):
            SimConfig.from_dict({"writeRateMBps": True})

    def test_non_bool_flag(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_dict({"levelCompactionDynamicLevelBytes": "yes"})
        assert "levelCompactionDynamicLevelBytes must be true or false" in str(exc_info.value)

    def test_compression_of_wrong_type(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_dict({"compression": 5})
        assert "compression must be a profile name or object, got 5" in exc_info.value.problems

    def test_compression_object_with_bad_field(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            SimConfig.from_dict({"compression": {"name": "custom", "ratio": "x"}})
        assert "compression.ratio must be a number, got 'x'" in exc_info.value.problems

    def test_null_stall_memory_disables_oom(self):
        config = SimConfig.from_json('{"maxStalledWriteMemoryMB": null}')
        assert config.memory_ceiling_mb is None

    def test_constructed_config_reports_types(self):
        assert SimConfig(num_levels="4").problems() == ["numLevels must be an integer, got '4'"]
