"""
Small numeric helpers shared by the detectors and the session analyzer.

All functions accept plain sequences of floats and never return NaN:
degenerate inputs produce None or an explicit ``insufficient_data`` result.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

# relative tolerance under which a series is treated as constant
_ZERO_VARIANCE_RTOL = 1e-20


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def population_variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    m = mean(values)
    return sum((v - m) ** 2 for v in values) / len(values)


def coefficient_of_variation(values: Sequence[float]) -> Optional[float]:
    """Population standard deviation over the absolute mean, None when the mean is 0."""
    if not values:
        return None
    m = mean(values)
    if m == 0:
        return None
    return math.sqrt(population_variance(values)) / abs(m)


def stability(values: Sequence[float]) -> float:
    """``1 - CV`` clamped to >= 0. A constant series is perfectly stable."""
    if not values:
        return 0.0
    cv = coefficient_of_variation(values)
    if cv is None:
        return 1.0 if population_variance(values) == 0 else 0.0
    return max(0.0, 1.0 - cv)


def _is_constant(values: Sequence[float], centred_sum_sq: float) -> bool:
    scale = max(1.0, sum(v * v for v in values))
    return centred_sum_sq <= _ZERO_VARIANCE_RTOL * scale


def least_squares_slope(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """
    Ordinary least-squares slope of ys against xs.

    Returns None with fewer than two points, mismatched lengths, or when
    the xs carry no spread.
    """
    n = len(xs)
    if n < 2 or n != len(ys):
        return None
    mx = mean(xs)
    my = mean(ys)
    sxx = sum((x - mx) ** 2 for x in xs)
    if _is_constant(xs, sxx):
        return None
    sxy = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    return sxy / sxx


def linear_trend(values: Sequence[float], flat_tolerance: float = 1e-3) -> Dict[str, Any]:
    """
    Trend of a series over its index.

    ``strength`` is ``|slope| / mean``; anything weaker than
    ``flat_tolerance`` is reported as stable.
    """
    if len(values) < 2:
        return {"insufficient_data": True}
    slope = least_squares_slope(list(range(len(values))), values) or 0.0
    m = mean(values)
    strength = abs(slope) / abs(m) if m else 0.0
    if strength < flat_tolerance:
        direction = "stable"
    else:
        direction = "increasing" if slope > 0 else "decreasing"
    return {"direction": direction, "slope": slope, "strength": strength}


def correlation_strength(r: float) -> str:
    magnitude = abs(r)
    if magnitude > 0.8:
        return "strong"
    if magnitude > 0.5:
        return "moderate"
    if magnitude > 0.3:
        return "weak"
    return "none"


@dataclass(frozen=True)
class CorrelationResult:
    """Pearson correlation, or an explicit insufficient-data marker."""

    sample_count: int
    coefficient: Optional[float] = None
    strength: Optional[str] = None
    insufficient_data: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.insufficient_data:
            return {
                "insufficient_data": True,
                "sample_count": self.sample_count,
                "reason": self.reason,
            }
        return {
            "coefficient": self.coefficient,
            "strength": self.strength,
            "sample_count": self.sample_count,
        }


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> CorrelationResult:
    """
    Product-moment correlation of two equal-length series.

    The result is symmetric in its arguments and clamped to [-1, 1]. Series
    with fewer than two points, unequal lengths, non-finite values or zero
    variance produce ``insufficient_data`` rather than NaN.
    """
    n = min(len(x), len(y))
    if len(x) != len(y):
        return CorrelationResult(sample_count=n, insufficient_data=True, reason="length_mismatch")
    if n < 2:
        return CorrelationResult(sample_count=n, insufficient_data=True, reason="too_few_points")
    if not all(math.isfinite(v) for v in x) or not all(math.isfinite(v) for v in y):
        return CorrelationResult(sample_count=n, insufficient_data=True, reason="non_finite_values")

    mx = mean(x)
    my = mean(y)
    sxx = sum((a - mx) ** 2 for a in x)
    syy = sum((b - my) ** 2 for b in y)
    if _is_constant(x, sxx) or _is_constant(y, syy):
        return CorrelationResult(sample_count=n, insufficient_data=True, reason="zero_variance")

    sxy = sum((a - mx) * (b - my) for a, b in zip(x, y))
    r = sxy / math.sqrt(sxx * syy)
    r = max(-1.0, min(1.0, r))
    return CorrelationResult(sample_count=n, coefficient=r, strength=correlation_strength(r))
