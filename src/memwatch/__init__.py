"""
memwatch: memory-performance observability engine.

This package samples process and system memory, detects leak patterns,
raises tiered alerts with cooldowns, tracks per-session growth phases and
produces ranked optimization recommendations.

The package is organized into specialized modules:
- config: TOML configuration loading and validation
- models: Samples, sessions, alerts, recommendations and config records
- validation: Exception taxonomy, validators, retry helpers, event channel
- collectors: Memory collectors, the sampler and performance data sources
- analysis: Statistics, leak detection and session analysis
- alerting: Alert manager, remediation actions and alert sinks
- optimization: Recommendation engine with trust learning
- storage: Document storage, background writer and session export
- orchestration: The monitor that wires everything together

Usage:
    from memwatch import MemoryMonitorOrchestrator, load_config

    monitor = MemoryMonitorOrchestrator(load_config("conf/config.toml"))
    await monitor.start()
    monitor.ingest("build-42", sample)
    report = await monitor.analyze_session("build-42")
    await monitor.stop()
"""

from .config import load_config, validate_engine_config
from .orchestration import MemoryMonitorOrchestrator

from .models import (
    Alert,
    AlertLevel,
    AlertType,
    EngineConfig,
    MemorySample,
    Recommendation,
    Session,
    SessionReport,
)

from .validation import (
    ConfigurationError,
    IngestionError,
    MonitorError,
    PersistenceError,
    SessionNotFoundError,
    ShutdownError,
    ValidationError,
)

__version__ = "1.0.0"

__all__ = [
    # Main interfaces
    "MemoryMonitorOrchestrator",
    "load_config",
    "validate_engine_config",
    # Models
    "Alert",
    "AlertLevel",
    "AlertType",
    "EngineConfig",
    "MemorySample",
    "Recommendation",
    "Session",
    "SessionReport",
    # Errors
    "ConfigurationError",
    "IngestionError",
    "MonitorError",
    "PersistenceError",
    "SessionNotFoundError",
    "ShutdownError",
    "ValidationError",
]
