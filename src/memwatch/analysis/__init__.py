"""
Statistical analysis of memory samples.

This package contains the numeric helpers, the leak detector and the
per-session analyzer with its registry.
"""

from .leak_detector import HeuristicResult, LeakDetector, LeakReport
from .session_analyzer import SessionAnalyzer, SessionRegistry, memory_efficiency
from .statistics import (
    CorrelationResult,
    coefficient_of_variation,
    correlation_strength,
    least_squares_slope,
    linear_trend,
    mean,
    pearson_correlation,
    population_variance,
    stability,
)

__all__ = [
    "HeuristicResult",
    "LeakDetector",
    "LeakReport",
    "SessionAnalyzer",
    "SessionRegistry",
    "memory_efficiency",
    "CorrelationResult",
    "coefficient_of_variation",
    "correlation_strength",
    "least_squares_slope",
    "linear_trend",
    "mean",
    "pearson_correlation",
    "population_variance",
    "stability",
]
