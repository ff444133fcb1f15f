"""
Data models for the memwatch package.

This package contains the immutable sample types, session and checkpoint
structures, alerts, recommendations, and the configuration dataclasses.
"""

from .alerts import Alert, AlertLevel, AlertState, AlertType
from .config import (
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
from .recommendations import OptimizationOutcome, Recommendation, RecommendationAction
from .samples import (
    FragmentationInfo,
    MemorySample,
    ProcessMemory,
    SystemMemory,
    fragmentation_level,
    fragmentation_score,
)
from .session import (
    PHASE_TYPES,
    PROBLEMATIC_PHASES,
    Checkpoint,
    CrossSessionAnalysis,
    GrowthAnalysis,
    GrowthPhase,
    Session,
    SessionReport,
    SessionSnapshot,
    SessionStatus,
)

__all__ = [
    "Alert",
    "AlertLevel",
    "AlertState",
    "AlertType",
    "ALERT_LEVELS",
    "AlertConfig",
    "EngineConfig",
    "GrowthThresholds",
    "LeakDetectionConfig",
    "LevelThresholds",
    "OptimizationConfig",
    "OrchestrationConfig",
    "SamplerConfig",
    "SessionConfig",
    "StorageConfig",
    "OptimizationOutcome",
    "Recommendation",
    "RecommendationAction",
    "FragmentationInfo",
    "MemorySample",
    "ProcessMemory",
    "SystemMemory",
    "fragmentation_level",
    "fragmentation_score",
    "PHASE_TYPES",
    "PROBLEMATIC_PHASES",
    "Checkpoint",
    "CrossSessionAnalysis",
    "GrowthAnalysis",
    "GrowthPhase",
    "Session",
    "SessionReport",
    "SessionSnapshot",
    "SessionStatus",
]
