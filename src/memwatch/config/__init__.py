"""
Configuration loading and validation for the memwatch package.

There is no process-wide configuration cache: callers load an EngineConfig
and hand it to the orchestrator they construct.
"""

from .loader import DEFAULT_CONFIG_PATH, load_config, load_toml_file
from .validators import (
    validate_alerts_section,
    validate_engine_config,
    validate_growth_section,
    validate_leak_detection_section,
    validate_level_thresholds,
    validate_optimization_section,
    validate_orchestration_section,
    validate_sampler_section,
    validate_sessions_section,
    validate_storage_section,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "load_config",
    "load_toml_file",
    "validate_alerts_section",
    "validate_engine_config",
    "validate_growth_section",
    "validate_leak_detection_section",
    "validate_level_thresholds",
    "validate_optimization_section",
    "validate_orchestration_section",
    "validate_sampler_section",
    "validate_sessions_section",
    "validate_storage_section",
]
