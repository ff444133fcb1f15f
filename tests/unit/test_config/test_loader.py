"""
Unit tests for loading the TOML configuration file.
"""

import pytest

from memwatch.config import DEFAULT_CONFIG_PATH, load_config, load_toml_file
from memwatch.models import EngineConfig
from memwatch.validation import ConfigurationError, ValidationError


@pytest.mark.unit
class TestConfigLoader:
    """Test cases for load_config and load_toml_file."""

    def test_shipped_config_loads(self):
        """Test that the repository's conf/config.toml is valid."""
        assert DEFAULT_CONFIG_PATH.exists()
        config = load_config()
        assert isinstance(config, EngineConfig)
        assert config.leak_detection.consecutive_windows >= 2

    def test_load_custom_file(self, temp_dir):
        """Test loading a minimal file overrides only what it names."""
        path = temp_dir / "config.toml"
        path.write_text(
            '[alerts.cooldowns]\nwarning = 30.0\n\n[storage]\nroot_dir = "out"\n',
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.alerts.cooldowns["warning"] == 30.0
        assert config.alerts.cooldowns["critical"] == 600.0
        assert str(config.storage.root_dir) == "out"

    def test_missing_file(self, temp_dir):
        """Test that a missing file is a configuration error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_toml_file(temp_dir / "absent.toml")

    def test_malformed_file(self, temp_dir):
        """Test that malformed TOML is a configuration error."""
        path = temp_dir / "broken.toml"
        path.write_text("[alerts\nwarning = ", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="malformed"):
            load_toml_file(path)

    def test_invalid_value_is_fatal(self, temp_dir):
        """Test that a bad value surfaces as ValidationError."""
        path = temp_dir / "config.toml"
        path.write_text("[sessions]\nmax_sessions = 0\n", encoding="utf-8")
        with pytest.raises(ValidationError) as exc_info:
            load_config(path)
        assert exc_info.value.field_name == "sessions.max_sessions"
