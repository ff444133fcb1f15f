"""
Configuration validation utilities.

Each ``validate_*_section`` function takes the raw TOML table for one section
and returns the matching dataclass. Missing keys fall back to the dataclass
defaults; invalid values raise ValidationError with the dotted field name.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Mapping

from ..models.config import (
    ALERT_LEVELS,
    AlertConfig,
    EngineConfig,
    GrowthThresholds,
    LeakDetectionConfig,
    LevelThresholds,
    OptimizationConfig,
    OrchestrationConfig,
    SamplerConfig,
    SessionConfig,
    StorageConfig,
)
from ..validation import (
    ValidationError,
    validate_ascending,
    validate_bool,
    validate_enum_choice,
    validate_fraction,
    validate_positive_float,
    validate_positive_integer,
)

logger = logging.getLogger(__name__)

KNOWN_SECTIONS = (
    "growth", "sampler", "leak_detection", "alerts", "sessions",
    "optimization", "storage", "orchestration",
)


def _table(data: Mapping[str, Any], key: str, field_name: str) -> Mapping[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, Mapping):
        raise ValidationError(f"{field_name} must be a table", field_name=field_name, value=value)
    return value


def validate_growth_section(data: Mapping[str, Any]) -> GrowthThresholds:
    defaults = GrowthThresholds()
    normal = validate_positive_float(data.get("normal", defaults.normal), field_name="growth.normal")
    concerning = validate_positive_float(
        data.get("concerning", defaults.concerning), field_name="growth.concerning"
    )
    critical = validate_positive_float(data.get("critical", defaults.critical), field_name="growth.critical")
    validate_ascending((normal, concerning, critical), ("normal", "concerning", "critical"), "growth")

    shrinking = validate_positive_float(
        data.get("shrinking", defaults.shrinking), min_value=-1.0, max_value=0.0,
        field_name="growth.shrinking"
    )
    phase_delta = validate_positive_float(
        data.get("phase_delta", defaults.phase_delta), min_value=0.0001, field_name="growth.phase_delta"
    )
    rate_period = validate_positive_float(
        data.get("rate_period_seconds", defaults.rate_period_seconds),
        min_value=1.0,
        field_name="growth.rate_period_seconds",
    )
    return GrowthThresholds(
        normal=normal,
        concerning=concerning,
        critical=critical,
        shrinking=shrinking,
        phase_delta=phase_delta,
        rate_period_seconds=rate_period,
    )


def validate_sampler_section(data: Mapping[str, Any]) -> SamplerConfig:
    defaults = SamplerConfig()
    session_id = data.get("session_id", defaults.session_id)
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError(
            "sampler.session_id must be a non-empty string", field_name="sampler.session_id", value=session_id
        )
    return SamplerConfig(
        interval_seconds=validate_positive_float(
            data.get("interval_seconds", defaults.interval_seconds),
            min_value=0.01,
            max_value=3600.0,
            field_name="sampler.interval_seconds",
        ),
        history_size=validate_positive_integer(
            data.get("history_size", defaults.history_size),
            min_value=1,
            max_value=1_000_000,
            field_name="sampler.history_size",
        ),
        fragmentation_threshold=validate_fraction(
            data.get("fragmentation_threshold", defaults.fragmentation_threshold),
            field_name="sampler.fragmentation_threshold",
        ),
        session_id=session_id,
        enabled=validate_bool(data.get("enabled", defaults.enabled), field_name="sampler.enabled"),
    )


def validate_leak_detection_section(data: Mapping[str, Any]) -> LeakDetectionConfig:
    defaults = LeakDetectionConfig()
    consecutive = validate_positive_integer(
        data.get("consecutive_windows", defaults.consecutive_windows),
        min_value=2,
        max_value=100,
        field_name="leak_detection.consecutive_windows",
    )
    window_size = validate_positive_integer(
        data.get("window_size", defaults.window_size),
        min_value=3,
        max_value=10_000,
        field_name="leak_detection.window_size",
    )
    if window_size < consecutive + 2:
        raise ValidationError(
            f"leak_detection.window_size ({window_size}) must be at least "
            f"consecutive_windows + 2 ({consecutive + 2})",
            field_name="leak_detection.window_size",
            value=window_size,
        )
    return LeakDetectionConfig(
        enabled=validate_bool(data.get("enabled", defaults.enabled), field_name="leak_detection.enabled"),
        window_size=window_size,
        consecutive_windows=consecutive,
        growth_threshold=validate_fraction(
            data.get("growth_threshold", defaults.growth_threshold),
            field_name="leak_detection.growth_threshold",
        ),
        staircase_min_steps=validate_positive_integer(
            data.get("staircase_min_steps", defaults.staircase_min_steps),
            min_value=1,
            field_name="leak_detection.staircase_min_steps",
        ),
        staircase_step_threshold=validate_fraction(
            data.get("staircase_step_threshold", defaults.staircase_step_threshold),
            field_name="leak_detection.staircase_step_threshold",
        ),
        staircase_max_decrease=validate_fraction(
            data.get("staircase_max_decrease", defaults.staircase_max_decrease),
            field_name="leak_detection.staircase_max_decrease",
        ),
        gc_drop_threshold=validate_fraction(
            data.get("gc_drop_threshold", defaults.gc_drop_threshold),
            field_name="leak_detection.gc_drop_threshold",
        ),
        gc_min_events=validate_positive_integer(
            data.get("gc_min_events", defaults.gc_min_events),
            min_value=3,
            field_name="leak_detection.gc_min_events",
        ),
        gc_decline_tolerance=validate_positive_float(
            data.get("gc_decline_tolerance", defaults.gc_decline_tolerance),
            min_value=0.0,
            max_value=10.0,
            field_name="leak_detection.gc_decline_tolerance",
        ),
        history_size=validate_positive_integer(
            data.get("history_size", defaults.history_size),
            min_value=1,
            field_name="leak_detection.history_size",
        ),
    )


def validate_level_thresholds(data: Mapping[str, Any], default: LevelThresholds, field_name: str) -> LevelThresholds:
    values = []
    for level in ALERT_LEVELS:
        values.append(
            validate_fraction(data.get(level, getattr(default, level)), field_name=f"{field_name}.{level}")
        )
    validate_ascending(values, ALERT_LEVELS, field_name)
    return LevelThresholds(*values)


def validate_alerts_section(data: Mapping[str, Any]) -> AlertConfig:
    defaults = AlertConfig()

    cooldown_data = _table(data, "cooldowns", "alerts.cooldowns")
    unknown = set(cooldown_data) - set(ALERT_LEVELS)
    if unknown:
        raise ValidationError(
            f"alerts.cooldowns has unknown levels: {sorted(unknown)}",
            field_name="alerts.cooldowns",
            value=sorted(unknown),
        )
    cooldowns = {
        level: validate_positive_float(
            cooldown_data.get(level, defaults.cooldowns[level]),
            min_value=0.0,
            field_name=f"alerts.cooldowns.{level}",
        )
        for level in ALERT_LEVELS
    }

    return AlertConfig(
        system=validate_level_thresholds(_table(data, "system", "alerts.system"), defaults.system, "alerts.system"),
        heap=validate_level_thresholds(_table(data, "heap", "alerts.heap"), defaults.heap, "alerts.heap"),
        fragmentation=validate_level_thresholds(
            _table(data, "fragmentation", "alerts.fragmentation"), defaults.fragmentation, "alerts.fragmentation"
        ),
        leak_score=validate_level_thresholds(
            _table(data, "leak_score", "alerts.leak_score"), defaults.leak_score, "alerts.leak_score"
        ),
        cooldowns=cooldowns,
        auto_gc=validate_bool(data.get("auto_gc", defaults.auto_gc), field_name="alerts.auto_gc"),
        memory_dump=validate_bool(data.get("memory_dump", defaults.memory_dump), field_name="alerts.memory_dump"),
        emergency_shutdown=validate_bool(
            data.get("emergency_shutdown", defaults.emergency_shutdown), field_name="alerts.emergency_shutdown"
        ),
        escalate_on_leak=validate_bool(
            data.get("escalate_on_leak", defaults.escalate_on_leak), field_name="alerts.escalate_on_leak"
        ),
        history_size=validate_positive_integer(
            data.get("history_size", defaults.history_size), min_value=1, field_name="alerts.history_size"
        ),
        jsonl_log=validate_bool(data.get("jsonl_log", defaults.jsonl_log), field_name="alerts.jsonl_log"),
    )


def validate_sessions_section(data: Mapping[str, Any]) -> SessionConfig:
    defaults = SessionConfig()
    return SessionConfig(
        session_timeout_seconds=validate_positive_float(
            data.get("session_timeout_seconds", defaults.session_timeout_seconds),
            min_value=1.0,
            field_name="sessions.session_timeout_seconds",
        ),
        retention_days=validate_positive_float(
            data.get("retention_days", defaults.retention_days),
            min_value=0.0,
            field_name="sessions.retention_days",
        ),
        max_snapshots=validate_positive_integer(
            data.get("max_snapshots", defaults.max_snapshots),
            min_value=2,
            max_value=1_000_000,
            field_name="sessions.max_snapshots",
        ),
        max_sessions=validate_positive_integer(
            data.get("max_sessions", defaults.max_sessions),
            min_value=1,
            max_value=1_000_000,
            field_name="sessions.max_sessions",
        ),
        max_phases=validate_positive_integer(
            data.get("max_phases", defaults.max_phases),
            min_value=1,
            field_name="sessions.max_phases",
        ),
        fragmentation_threshold=validate_fraction(
            data.get("fragmentation_threshold", defaults.fragmentation_threshold),
            field_name="sessions.fragmentation_threshold",
        ),
        checkpoint_on_leak=validate_bool(
            data.get("checkpoint_on_leak", defaults.checkpoint_on_leak), field_name="sessions.checkpoint_on_leak"
        ),
        checkpoint_on_alert=validate_bool(
            data.get("checkpoint_on_alert", defaults.checkpoint_on_alert), field_name="sessions.checkpoint_on_alert"
        ),
    )


def validate_optimization_section(data: Mapping[str, Any]) -> OptimizationConfig:
    defaults = OptimizationConfig()

    window = data.get("maintenance_window", list(defaults.maintenance_window))
    if not isinstance(window, (list, tuple)) or len(window) != 2:
        raise ValidationError(
            "optimization.maintenance_window must be a [start_hour, end_hour] pair",
            field_name="optimization.maintenance_window",
            value=window,
        )
    start_hour = validate_positive_integer(
        window[0], min_value=0, max_value=23, field_name="optimization.maintenance_window[0]"
    )
    end_hour = validate_positive_integer(
        window[1], min_value=0, max_value=24, field_name="optimization.maintenance_window[1]"
    )

    return OptimizationConfig(
        auto_optimization=validate_bool(
            data.get("auto_optimization", defaults.auto_optimization), field_name="optimization.auto_optimization"
        ),
        aggressiveness=validate_enum_choice(
            data.get("aggressiveness", defaults.aggressiveness),
            choices=["conservative", "moderate", "aggressive"],
            field_name="optimization.aggressiveness",
        ),
        max_automations_per_hour=validate_positive_integer(
            data.get("max_automations_per_hour", defaults.max_automations_per_hour),
            min_value=0,
            max_value=3600,
            field_name="optimization.max_automations_per_hour",
        ),
        memory_pressure=validate_fraction(
            data.get("memory_pressure", defaults.memory_pressure), field_name="optimization.memory_pressure"
        ),
        fragmentation_critical=validate_fraction(
            data.get("fragmentation_critical", defaults.fragmentation_critical),
            field_name="optimization.fragmentation_critical",
        ),
        leak_severity=validate_fraction(
            data.get("leak_severity", defaults.leak_severity), field_name="optimization.leak_severity"
        ),
        performance_degradation=validate_fraction(
            data.get("performance_degradation", defaults.performance_degradation),
            field_name="optimization.performance_degradation",
        ),
        baseline_efficiency=validate_fraction(
            data.get("baseline_efficiency", defaults.baseline_efficiency),
            field_name="optimization.baseline_efficiency",
        ),
        session_growth=validate_positive_float(
            data.get("session_growth", defaults.session_growth), field_name="optimization.session_growth"
        ),
        trust_alpha=validate_positive_float(
            data.get("trust_alpha", defaults.trust_alpha),
            min_value=0.0001,
            max_value=1.0,
            field_name="optimization.trust_alpha",
        ),
        initial_trust=validate_fraction(
            data.get("initial_trust", defaults.initial_trust), field_name="optimization.initial_trust"
        ),
        maintenance_window=(start_hour, end_hour),
        learning_enabled=validate_bool(
            data.get("learning_enabled", defaults.learning_enabled), field_name="optimization.learning_enabled"
        ),
        history_size=validate_positive_integer(
            data.get("history_size", defaults.history_size), min_value=1, field_name="optimization.history_size"
        ),
    )


def validate_storage_section(data: Mapping[str, Any]) -> StorageConfig:
    defaults = StorageConfig()
    root_dir = data.get("root_dir", str(defaults.root_dir))
    if not isinstance(root_dir, str) or not root_dir.strip():
        raise ValidationError(
            "storage.root_dir must be a non-empty string", field_name="storage.root_dir", value=root_dir
        )
    return StorageConfig(
        root_dir=Path(root_dir).expanduser(),
        format=validate_enum_choice(
            data.get("format", defaults.format), choices=["csv", "parquet"], field_name="storage.format"
        ),
        compression=validate_enum_choice(
            data.get("compression", defaults.compression),
            choices=["snappy", "gzip", "brotli", "lz4", "zstd"],
            field_name="storage.compression",
        ),
        generate_legacy_formats=validate_bool(
            data.get("generate_legacy_formats", defaults.generate_legacy_formats),
            field_name="storage.generate_legacy_formats",
        ),
        write_timeout_seconds=validate_positive_float(
            data.get("write_timeout_seconds", defaults.write_timeout_seconds),
            min_value=0.01,
            max_value=600.0,
            field_name="storage.write_timeout_seconds",
        ),
        max_attempts=validate_positive_integer(
            data.get("max_attempts", defaults.max_attempts),
            min_value=1,
            max_value=20,
            field_name="storage.max_attempts",
        ),
        backoff_base_seconds=validate_positive_float(
            data.get("backoff_base_seconds", defaults.backoff_base_seconds),
            min_value=0.0,
            max_value=60.0,
            field_name="storage.backoff_base_seconds",
        ),
        queue_size=validate_positive_integer(
            data.get("queue_size", defaults.queue_size),
            min_value=1,
            max_value=1_000_000,
            field_name="storage.queue_size",
        ),
    )


def validate_orchestration_section(data: Mapping[str, Any]) -> OrchestrationConfig:
    defaults = OrchestrationConfig()
    return OrchestrationConfig(
        analysis_interval_seconds=validate_positive_float(
            data.get("analysis_interval_seconds", defaults.analysis_interval_seconds),
            min_value=0.01,
            field_name="orchestration.analysis_interval_seconds",
        ),
        shutdown_grace_seconds=validate_positive_float(
            data.get("shutdown_grace_seconds", defaults.shutdown_grace_seconds),
            min_value=0.0,
            max_value=600.0,
            field_name="orchestration.shutdown_grace_seconds",
        ),
    )


def validate_engine_config(data: Mapping[str, Any]) -> EngineConfig:
    """
    Validate and create an EngineConfig from raw configuration data.

    Args:
        data: Parsed TOML document (top-level tables keyed by section)

    Returns:
        Validated EngineConfig instance

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(data, Mapping):
        raise ValidationError("configuration root must be a table", field_name="<root>", value=data)

    unknown = [key for key in data if key not in KNOWN_SECTIONS]
    if unknown:
        logger.warning(f"Ignoring unknown configuration sections: {unknown}")

    config = EngineConfig(
        growth=validate_growth_section(_table(data, "growth", "growth")),
        sampler=validate_sampler_section(_table(data, "sampler", "sampler")),
        leak_detection=validate_leak_detection_section(_table(data, "leak_detection", "leak_detection")),
        alerts=validate_alerts_section(_table(data, "alerts", "alerts")),
        sessions=validate_sessions_section(_table(data, "sessions", "sessions")),
        optimization=validate_optimization_section(_table(data, "optimization", "optimization")),
        storage=validate_storage_section(_table(data, "storage", "storage")),
        orchestration=validate_orchestration_section(_table(data, "orchestration", "orchestration")),
    )
    logger.debug(f"Validated engine configuration: {config}")
    return config
