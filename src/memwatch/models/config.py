"""
Configuration data models.

Each section of ``config.toml`` maps to one dataclass below. Defaults are
the values used when a key is absent; ``memwatch.config.validate_engine_config``
is the only place that builds these from raw TOML data.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Literal, Optional, Tuple

ALERT_LEVELS = ("warning", "critical", "emergency")


@dataclass
class GrowthThresholds:
    """
    Growth-rate classification shared by the leak detector, the session
    analyzer and the health score.

    Rates are fractional growth per ``rate_period_seconds``; total growth
    (initial to current rss) is compared against the same numbers.
    """

    normal: float = 0.1
    concerning: float = 0.3
    critical: float = 0.5
    shrinking: float = -0.05
    # |Δrate| that closes the open growth phase and opens a new one
    phase_delta: float = 0.05
    rate_period_seconds: float = 3600.0

    def classify(self, rate: float) -> str:
        if rate > self.critical:
            return "critical"
        if rate > self.concerning:
            return "concerning"
        if rate > self.normal:
            return "normal"
        if rate < self.shrinking:
            return "shrinking"
        return "stable"


@dataclass
class LevelThresholds:
    """Tiered warning/critical/emergency thresholds for one alert family."""

    warning: float
    critical: float
    emergency: float

    def level_for(self, value: float) -> Optional[str]:
        """Return the highest level whose threshold ``value`` reaches."""
        if value >= self.emergency:
            return "emergency"
        if value >= self.critical:
            return "critical"
        if value >= self.warning:
            return "warning"
        return None

    def to_dict(self) -> Dict[str, float]:
        return {"warning": self.warning, "critical": self.critical, "emergency": self.emergency}


@dataclass
class SamplerConfig:
    """[sampler] - cadence and history of the built-in process sampler."""

    interval_seconds: float = 1.0
    history_size: int = 1000
    fragmentation_threshold: float = 0.3
    # session id used for samples taken by the sample tick itself
    session_id: str = "default"
    enabled: bool = True


@dataclass
class LeakDetectionConfig:
    """[leak_detection] - window and heuristic tuning."""

    enabled: bool = True
    window_size: int = 10
    consecutive_windows: int = 2
    growth_threshold: float = 0.05
    staircase_min_steps: int = 3
    staircase_step_threshold: float = 0.01
    staircase_max_decrease: float = 0.05
    gc_drop_threshold: float = 0.02
    gc_min_events: int = 3
    gc_decline_tolerance: float = 0.1
    history_size: int = 100


@dataclass
class AlertConfig:
    """[alerts] - thresholds per family, cooldowns and action triggers."""

    system: LevelThresholds = field(default_factory=lambda: LevelThresholds(0.75, 0.85, 0.95))
    heap: LevelThresholds = field(default_factory=lambda: LevelThresholds(0.8, 0.9, 0.95))
    fragmentation: LevelThresholds = field(default_factory=lambda: LevelThresholds(0.3, 0.5, 0.7))
    leak_score: LevelThresholds = field(default_factory=lambda: LevelThresholds(0.5, 0.7, 0.9))
    cooldowns: Dict[str, float] = field(
        default_factory=lambda: {"warning": 900.0, "critical": 600.0, "emergency": 120.0}
    )
    auto_gc: bool = True
    memory_dump: bool = True
    emergency_shutdown: bool = True
    escalate_on_leak: bool = True
    history_size: int = 1000
    jsonl_log: bool = True


@dataclass
class SessionConfig:
    """[sessions] - lifecycle timing and per-session bounds."""

    session_timeout_seconds: float = 1800.0
    retention_days: float = 7.0
    max_snapshots: int = 1000
    max_sessions: int = 100
    max_phases: int = 500
    fragmentation_threshold: float = 0.3
    checkpoint_on_leak: bool = True
    checkpoint_on_alert: bool = True


@dataclass
class OptimizationConfig:
    """[optimization] - recommendation triggers and automation limits."""

    auto_optimization: bool = True
    aggressiveness: Literal["conservative", "moderate", "aggressive"] = "moderate"
    max_automations_per_hour: int = 5
    memory_pressure: float = 0.8
    fragmentation_critical: float = 0.4
    leak_severity: float = 0.7
    performance_degradation: float = 0.3
    baseline_efficiency: float = 0.8
    session_growth: float = 0.3
    trust_alpha: float = 0.3
    initial_trust: float = 0.5
    maintenance_window: Tuple[int, int] = (2, 4)
    learning_enabled: bool = True
    history_size: int = 1000


@dataclass
class StorageConfig:
    """
    [storage] - where documents and exports are written.

    Attributes:
        root_dir: Directory holding the document collections and exports
        format: Snapshot export format ('csv' flat file, or 'parquet')
        compression: Compression algorithm for Parquet output
        generate_legacy_formats: Also write CSV next to Parquet exports
        write_timeout_seconds: Per-attempt timeout for document writes
        max_attempts: Attempts per document before giving up
        backoff_base_seconds: Base delay for exponential backoff
        queue_size: Bound on documents waiting for the background writer
    """

    root_dir: Path = Path("memwatch_data")
    format: Literal["csv", "parquet"] = "csv"
    compression: Literal["snappy", "gzip", "brotli", "lz4", "zstd"] = "snappy"
    generate_legacy_formats: bool = False
    write_timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    queue_size: int = 256


@dataclass
class OrchestrationConfig:
    """[orchestration] - the analysis tick and shutdown grace period."""

    analysis_interval_seconds: float = 60.0
    shutdown_grace_seconds: float = 5.0


@dataclass
class EngineConfig:
    """Complete, validated configuration for one monitor instance."""

    growth: GrowthThresholds = field(default_factory=GrowthThresholds)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    leak_detection: LeakDetectionConfig = field(default_factory=LeakDetectionConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
