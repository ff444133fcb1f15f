"""
Leak detection over a sliding window of samples.

Three independent heuristics each return a detected flag and a confidence:

- sustained growth: the rss trend, normalised by mean rss, exceeds either
  ``growth.concerning`` per ``growth.rate_period_seconds`` or
  ``leak_detection.growth_threshold`` per sample, in every one of K trailing
  sub-windows. With K >= 2 a single noisy window never fires.
- staircase: at least ``staircase_min_steps`` step increases with every
  decrease after the first step smaller than ``staircase_max_decrease``.
- GC inefficiency: a heap drop of at least ``gc_drop_threshold`` counts as a
  collection event; when the fraction freed per event trends downward
  (normalised slope below ``-gc_decline_tolerance``) reclamation is
  deteriorating.

The composite score is the noisy-OR of the confidences of the heuristics
that fired, so it is 0 when nothing fired and approaches 1 as independent
evidence accumulates.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence

from ..models.config import GrowthThresholds, LeakDetectionConfig
from ..models.samples import MemorySample
from .statistics import least_squares_slope, mean

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeuristicResult:
    name: str
    detected: bool
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "confidence": self.confidence,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class LeakReport:
    """Combined output of the three heuristics for one window."""

    session_id: Optional[str]
    timestamp: float
    sample_count: int
    sustained_growth: HeuristicResult
    staircase: HeuristicResult
    gc_inefficiency: HeuristicResult
    score: float
    insufficient_data: bool = False

    @property
    def detected(self) -> bool:
        return any(h.detected for h in self.heuristics)

    @property
    def heuristics(self) -> List[HeuristicResult]:
        return [self.sustained_growth, self.staircase, self.gc_inefficiency]

    @property
    def patterns(self) -> Dict[str, bool]:
        return {h.name: h.detected for h in self.heuristics}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "sampleCount": self.sample_count,
            "detected": self.detected,
            "score": self.score,
            "insufficient_data": self.insufficient_data,
            "sustainedGrowth": self.sustained_growth.to_dict(),
            "staircase": self.staircase.to_dict(),
            "gcInefficiency": self.gc_inefficiency.to_dict(),
        }


def _not_enough(name: str, have: int, need: int) -> HeuristicResult:
    return HeuristicResult(name, False, 0.0, {"insufficient_data": True, "samples": have, "required": need})


class LeakDetector:
    """
    Per-session sliding windows feeding the leak heuristics.

    ``observe`` is the streaming entry point; ``analyze`` is a pure function
    of a sample sequence and can be used directly on stored history.
    """

    def __init__(self, config: LeakDetectionConfig, growth: GrowthThresholds):
        self.config = config
        self.growth = growth
        self._windows: Dict[str, Deque[MemorySample]] = {}
        self._detections: Deque[LeakReport] = deque(maxlen=config.history_size)
        self._latest: Dict[str, LeakReport] = {}
        self._lock = threading.Lock()

    @property
    def min_samples(self) -> int:
        return self.config.consecutive_windows + 2

    def observe(self, session_id: str, sample: MemorySample) -> LeakReport:
        """Add ``sample`` to the session's window and analyze the window."""
        with self._lock:
            window = self._windows.get(session_id)
            if window is None:
                window = deque(maxlen=self.config.window_size)
                self._windows[session_id] = window
            window.append(sample)
            samples = list(window)

        report = self.analyze(samples, session_id=session_id)
        with self._lock:
            self._latest[session_id] = report
            if report.detected:
                self._detections.append(report)
        if report.detected:
            logger.debug(
                f"Leak pattern in session {session_id}: score={report.score:.3f} "
                f"patterns={report.patterns}"
            )
        return report

    def forget(self, session_id: str) -> None:
        with self._lock:
            self._windows.pop(session_id, None)
            self._latest.pop(session_id, None)

    def latest_report(self, session_id: str) -> Optional[LeakReport]:
        with self._lock:
            return self._latest.get(session_id)

    def get_recent_detections(self, limit: int = 50, session_id: Optional[str] = None) -> List[LeakReport]:
        with self._lock:
            detections = list(self._detections)
        if session_id is not None:
            detections = [d for d in detections if d.session_id == session_id]
        return detections[-limit:]

    def analyze(self, samples: Sequence[MemorySample], session_id: Optional[str] = None) -> LeakReport:
        samples = list(samples)
        timestamp = samples[-1].timestamp if samples else 0.0

        if not self.config.enabled:
            disabled = HeuristicResult("disabled", False, 0.0, {"disabled": True})
            return LeakReport(session_id, timestamp, len(samples), disabled, disabled, disabled, 0.0, True)

        sustained = self.detect_sustained_growth(samples)
        staircase = self.detect_staircase(samples)
        gc = self.detect_gc_inefficiency(samples)

        miss = 1.0
        for result in (sustained, staircase, gc):
            if result.detected:
                miss *= 1.0 - result.confidence
        score = 1.0 - miss

        return LeakReport(
            session_id=session_id,
            timestamp=timestamp,
            sample_count=len(samples),
            sustained_growth=sustained,
            staircase=staircase,
            gc_inefficiency=gc,
            score=score,
            insufficient_data=len(samples) < self.min_samples,
        )

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    def normalized_growth_rate(self, samples: Sequence[MemorySample]) -> Optional[float]:
        """
        Least-squares rss slope divided by mean rss, per rate period.

        Falls back to the per-sample slope when the timestamps carry no
        spread. None when the mean rss is not positive.
        """
        values = [s.process.rss for s in samples]
        avg = mean(values)
        if avg <= 0 or len(values) < 2:
            return None
        slope = least_squares_slope([s.timestamp for s in samples], values)
        if slope is not None:
            return slope * self.growth.rate_period_seconds / avg
        return self.per_sample_growth_rate(samples)

    def per_sample_growth_rate(self, samples: Sequence[MemorySample]) -> Optional[float]:
        """Least-squares rss slope per sample index, divided by mean rss."""
        values = [s.process.rss for s in samples]
        avg = mean(values)
        if avg <= 0 or len(values) < 2:
            return None
        slope = least_squares_slope(list(range(len(values))), values)
        return slope / avg if slope is not None else None

    def detect_sustained_growth(self, samples: Sequence[MemorySample]) -> HeuristicResult:
        k = self.config.consecutive_windows
        n = len(samples)
        if n < k + 2:
            return _not_enough("sustained_growth", n, k + 2)

        threshold = self.growth.concerning
        sample_threshold = self.config.growth_threshold
        size = n - k + 1
        windows = [samples[start:start + size] for start in range(k)]
        rates = [self.normalized_growth_rate(w) for w in windows]
        sample_rates = [self.per_sample_growth_rate(w) for w in windows]

        # each exceeding window contributes how far past its threshold it went
        magnitudes: List[float] = []
        for rate, sample_rate in zip(rates, sample_rates):
            excess = 0.0
            if rate is not None and rate > threshold:
                excess = max(excess, rate / (2 * threshold) if threshold > 0 else 1.0)
            if sample_rate is not None and sample_rate > sample_threshold:
                excess = max(excess, sample_rate / (2 * sample_threshold) if sample_threshold > 0 else 1.0)
            if excess > 0:
                magnitudes.append(min(1.0, excess))
        detected = len(magnitudes) == k

        confidence = (len(magnitudes) / k) * mean(magnitudes) if magnitudes else 0.0

        return HeuristicResult(
            "sustained_growth",
            detected,
            confidence,
            {
                "window_rates": rates,
                "per_sample_rates": sample_rates,
                "threshold": threshold,
                "per_sample_threshold": sample_threshold,
                "windows_exceeding": len(magnitudes),
                "windows_required": k,
            },
        )

    def detect_staircase(self, samples: Sequence[MemorySample]) -> HeuristicResult:
        values = [s.process.rss for s in samples]
        if len(values) < 2:
            return _not_enough("staircase", len(values), 2)

        step_threshold = self.config.staircase_step_threshold
        tolerance = self.config.staircase_max_decrease
        steps = 0
        max_decrease = 0.0
        runs = 1
        direction = 0

        for prev, cur in zip(values, values[1:]):
            change = (cur - prev) / prev if prev > 0 else 0.0
            if change >= step_threshold:
                steps += 1
            elif change < 0 and steps > 0:
                max_decrease = max(max_decrease, -change)

            new_direction = (cur > prev) - (cur < prev)
            if new_direction and direction and new_direction != direction:
                runs += 1
            if new_direction:
                direction = new_direction

        detected = steps >= self.config.staircase_min_steps and max_decrease < tolerance
        if tolerance > 0:
            reclaim_factor = max(0.0, 1.0 - max_decrease / tolerance)
        else:
            reclaim_factor = 1.0 if max_decrease == 0 else 0.0
        confidence = min(1.0, steps / self.config.staircase_min_steps) * reclaim_factor

        return HeuristicResult(
            "staircase",
            detected,
            confidence,
            {"steps": steps, "max_intervening_decrease": max_decrease, "monotonic_runs": runs},
        )

    def detect_gc_inefficiency(self, samples: Sequence[MemorySample]) -> HeuristicResult:
        freed: List[float] = []
        for prev, cur in zip(samples, samples[1:]):
            before = prev.process.heap_used
            after = cur.process.heap_used
            if before <= 0:
                continue
            fraction = (before - after) / before
            if fraction >= self.config.gc_drop_threshold:
                freed.append(fraction)

        required = self.config.gc_min_events
        if len(freed) < required:
            result = _not_enough("gc_inefficiency", len(freed), required)
            return HeuristicResult(result.name, False, 0.0, {**result.details, "events": len(freed)})

        slope = least_squares_slope(list(range(len(freed))), freed) or 0.0
        avg = mean(freed)
        trend = slope / avg if avg > 0 else 0.0
        tolerance = self.config.gc_decline_tolerance
        detected = trend < -tolerance

        confidence = 0.0
        if detected:
            confidence = min(1.0, -trend / (2 * tolerance)) if tolerance > 0 else 1.0

        return HeuristicResult(
            "gc_inefficiency",
            detected,
            confidence,
            {"events": len(freed), "freed_fractions": freed, "trend": trend, "average_freed": avg},
        )
