"""
Memory collection for the memwatch package.

This package contains the collector interface, the psutil-based collector,
the Sampler that records and publishes samples, and the external
performance data sources.
"""

from .base import MemoryCollector
from .performance import (
    NO_PERFORMANCE_DATA,
    InMemoryPerformanceSource,
    JsonFilePerformanceSource,
    PerformanceDataSource,
)
from .psutil_collector import PsutilMemoryCollector
from .sampler import Sampler, samples_to_frame

__all__ = [
    "MemoryCollector",
    "NO_PERFORMANCE_DATA",
    "InMemoryPerformanceSource",
    "JsonFilePerformanceSource",
    "PerformanceDataSource",
    "PsutilMemoryCollector",
    "Sampler",
    "samples_to_frame",
]
