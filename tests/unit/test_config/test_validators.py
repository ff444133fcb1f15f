"""
Unit tests for configuration validation functionality.

Tests the validation of every engine configuration section, including
defaults for missing keys and cross-field ordering of thresholds.
"""

from pathlib import Path

import pytest

from memwatch.config.validators import (
    validate_alerts_section,
    validate_engine_config,
    validate_growth_section,
    validate_leak_detection_section,
    validate_optimization_section,
    validate_sampler_section,
    validate_storage_section,
)
from memwatch.models import EngineConfig
from memwatch.validation import ValidationError


@pytest.mark.unit
class TestEngineConfigValidation:
    """Test cases for whole-document validation."""

    def test_validate_engine_config_success(self, sample_config_data):
        """Test successful validation of a complete configuration."""
        config = validate_engine_config(sample_config_data)

        assert isinstance(config, EngineConfig)
        assert config.sampler.interval_seconds == 0.5
        assert config.sampler.enabled is False
        assert config.alerts.cooldowns == {"warning": 900.0, "critical": 600.0, "emergency": 120.0}
        assert config.optimization.aggressiveness == "moderate"
        assert config.storage.root_dir == Path(sample_config_data["storage"]["root_dir"])

    def test_empty_document_uses_defaults(self):
        """Test that every key is optional."""
        config = validate_engine_config({})

        assert config == EngineConfig()
        assert config.alerts.system.warning == 0.75
        assert config.alerts.heap.critical == 0.9
        assert config.leak_detection.window_size == 10

    def test_unknown_section_is_ignored(self, sample_config_data):
        """Test that unknown top-level tables do not fail validation."""
        sample_config_data["plotting"] = {"theme": "dark"}
        config = validate_engine_config(sample_config_data)
        assert config.growth.critical == 0.5

    def test_section_must_be_table(self):
        """Test that a scalar where a table is expected is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validate_engine_config({"alerts": 3})
        assert exc_info.value.field_name == "alerts"

    def test_root_must_be_mapping(self):
        """Test that a non-mapping document is rejected."""
        with pytest.raises(ValidationError):
            validate_engine_config(["not", "a", "table"])


@pytest.mark.unit
class TestSectionValidation:
    """Test cases for individual sections."""

    def test_alert_thresholds_must_ascend(self):
        """Test warning < critical < emergency is enforced."""
        with pytest.raises(ValidationError) as exc_info:
            validate_alerts_section({"system": {"warning": 0.9, "critical": 0.85}})
        assert exc_info.value.field_name == "alerts.system.critical"

    def test_alert_threshold_out_of_range(self):
        """Test the dotted field name of an out-of-range threshold."""
        with pytest.raises(ValidationError) as exc_info:
            validate_alerts_section({"heap": {"emergency": 1.5}})
        assert exc_info.value.field_name == "alerts.heap.emergency"

    def test_unknown_cooldown_level(self):
        """Test that cooldowns only accept the three alert levels."""
        with pytest.raises(ValidationError, match="unknown levels"):
            validate_alerts_section({"cooldowns": {"info": 10}})

    def test_partial_cooldowns_keep_defaults(self):
        """Test that omitted cooldown levels fall back to defaults."""
        config = validate_alerts_section({"cooldowns": {"warning": 60}})
        assert config.cooldowns == {"warning": 60.0, "critical": 600.0, "emergency": 120.0}

    def test_growth_thresholds_must_ascend(self):
        """Test growth classification thresholds are ordered."""
        with pytest.raises(ValidationError):
            validate_growth_section({"normal": 0.4, "concerning": 0.3})

    def test_shrinking_must_be_non_positive(self):
        """Test that the shrinking threshold cannot be positive."""
        with pytest.raises(ValidationError) as exc_info:
            validate_growth_section({"shrinking": 0.1})
        assert exc_info.value.field_name == "growth.shrinking"

    def test_leak_window_must_hold_sub_windows(self):
        """Test window_size >= consecutive_windows + 2."""
        with pytest.raises(ValidationError) as exc_info:
            validate_leak_detection_section({"window_size": 4, "consecutive_windows": 3})
        assert exc_info.value.field_name == "leak_detection.window_size"

    def test_single_window_rejected(self):
        """Test that one noisy window can never be configured to fire alone."""
        with pytest.raises(ValidationError):
            validate_leak_detection_section({"consecutive_windows": 1})

    def test_per_sample_growth_threshold_is_fraction(self):
        """Test growth_threshold is read and limited to [0, 1]."""
        assert validate_leak_detection_section({"growth_threshold": 0.08}).growth_threshold == 0.08
        with pytest.raises(ValidationError) as exc_info:
            validate_leak_detection_section({"growth_threshold": 1.5})
        assert exc_info.value.field_name == "leak_detection.growth_threshold"

    def test_sampler_session_id_required(self):
        """Test that a blank sampler session id is rejected."""
        with pytest.raises(ValidationError):
            validate_sampler_section({"session_id": "  "})

    def test_invalid_aggressiveness(self):
        """Test validation failure with an unknown aggressiveness."""
        with pytest.raises(ValidationError) as exc_info:
            validate_optimization_section({"aggressiveness": "reckless"})
        assert exc_info.value.field_name == "optimization.aggressiveness"

    def test_maintenance_window_shape(self):
        """Test the maintenance window must be a pair of hours."""
        config = validate_optimization_section({"maintenance_window": [22, 2]})
        assert config.maintenance_window == (22, 2)
        with pytest.raises(ValidationError):
            validate_optimization_section({"maintenance_window": [1, 2, 3]})
        with pytest.raises(ValidationError):
            validate_optimization_section({"maintenance_window": [25, 2]})

    def test_storage_format_and_compression(self):
        """Test storage enum fields."""
        config = validate_storage_section({"format": "parquet", "compression": "zstd"})
        assert config.format == "parquet"
        assert config.compression == "zstd"
        with pytest.raises(ValidationError):
            validate_storage_section({"format": "xlsx"})
