"""
Optimization recommendations for the memwatch package.
"""

from .engine import LearnedPattern, OptimizationEngine, PressureIndicators

__all__ = ["LearnedPattern", "OptimizationEngine", "PressureIndicators"]
