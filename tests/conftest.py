"""
Pytest configuration and shared fixtures for the memwatch test suite.

This module provides common fixtures, a sample factory and configuration
for all test modules in the memwatch project.
"""

import sys
import tempfile
import shutil
from pathlib import Path
from typing import Optional

import pytest

# Add src to Python path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from memwatch.models import EngineConfig, MemorySample, StorageConfig  # noqa: E402

MB = 1024 * 1024
GB = 1024 * MB


# ============================================================================
# Test Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


def build_sample(
    timestamp: float = 1_700_000_000.0,
    rss_mb: float = 100.0,
    heap_ratio: float = 0.9,
    heap_total_mb: Optional[float] = None,
    system_utilization: float = 0.5,
    system_total: float = 16 * GB,
) -> MemorySample:
    """
    Build a sample from a handful of knobs.

    ``heap_ratio`` is heapUsed / rss, so fragmentation is ``1 - heap_ratio``.
    The heap total defaults to twice the rss, keeping heap utilization at
    ``heap_ratio / 2`` unless overridden.
    """
    rss = rss_mb * MB
    heap_used = rss * heap_ratio
    heap_total = heap_total_mb * MB if heap_total_mb is not None else rss * 2
    return MemorySample.build(
        timestamp=timestamp,
        rss=rss,
        heap_used=heap_used,
        heap_total=heap_total,
        system_total=system_total,
        system_used=system_total * system_utilization,
    )


@pytest.fixture
def make_sample():
    """Factory fixture for MemorySample objects."""
    return build_sample


@pytest.fixture
def growing_samples():
    """Five samples, rss 100 -> 146 MB in 10% steps, 75 seconds apart."""
    start = 1_700_000_000.0
    return [
        build_sample(timestamp=start + i * 75.0, rss_mb=rss, system_utilization=0.86)
        for i, rss in enumerate([100.0, 110.0, 121.0, 133.0, 146.0])
    ]


@pytest.fixture
def sample_payload():
    """A sample in the ingestion JSON shape."""
    return {
        "timestamp": 1_700_000_000.0,
        "process": {
            "rss": 100.0 * MB,
            "heapUsed": 80.0 * MB,
            "heapTotal": 160.0 * MB,
            "external": 1.0 * MB,
        },
        "system": {
            "total": 16.0 * GB,
            "used": 8.0 * GB,
        },
    }


@pytest.fixture
def sample_config_data(temp_dir):
    """Raw configuration tables as they would come out of config.toml."""
    return {
        "growth": {"normal": 0.1, "concerning": 0.3, "critical": 0.5},
        "sampler": {"interval_seconds": 0.5, "history_size": 100, "enabled": False},
        "leak_detection": {"window_size": 10, "consecutive_windows": 2},
        "alerts": {
            "system": {"warning": 0.75, "critical": 0.85, "emergency": 0.95},
            "cooldowns": {"warning": 900, "critical": 600, "emergency": 120},
            "jsonl_log": False,
        },
        "sessions": {"session_timeout_seconds": 1800, "retention_days": 7},
        "optimization": {"aggressiveness": "moderate", "max_automations_per_hour": 5},
        "storage": {"root_dir": str(temp_dir / "data"), "format": "csv"},
        "orchestration": {"analysis_interval_seconds": 60, "shutdown_grace_seconds": 2},
    }


@pytest.fixture
def engine_config(temp_dir):
    """EngineConfig writing into a temporary directory with the sampler off."""
    config = EngineConfig(storage=StorageConfig(root_dir=temp_dir / "data", backoff_base_seconds=0.01))
    config.sampler.enabled = False
    config.alerts.jsonl_log = False
    config.alerts.memory_dump = False
    config.alerts.emergency_shutdown = False
    return config


class FakeClock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    """A FakeClock starting at a fixed epoch."""
    return FakeClock()
