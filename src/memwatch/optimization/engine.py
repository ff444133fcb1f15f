"""
Recommendation engine for memory remediation.

Each analysis pass turns the current pressure indicators into a ranked list
of recommendations. Ranking combines the priority, the urgency, a
maintenance-window bonus and a per-type trust score learned from previous
automatic applications:

    priority_score = PRIORITY_BASE[priority] * URGENCY_MULTIPLIER[urgency]
                     * (1.2 inside the maintenance window)
                     * (0.5 + trust[type])

Only recommendations that are low risk, reversible and carry at least one
automated action may be applied automatically, and only within the hourly
automation budget and the configured aggressiveness.
"""

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..models.config import OptimizationConfig
from ..models.recommendations import OptimizationOutcome, Recommendation, RecommendationAction
from ..models.samples import MemorySample
from ..validation import EventReporter

logger = logging.getLogger(__name__)

PRIORITY_BASE = {"critical": 100.0, "high": 80.0, "medium": 60.0, "low": 40.0}
URGENCY_MULTIPLIER = {"immediate": 1.5, "urgent": 1.3, "moderate": 1.0, "low": 0.8}
IMPACT_SCORES = {"high": 30.0, "medium": 20.0, "low": 10.0, "none": 0.0}
RISK_SCORES = {"low": 2.0, "medium": 3.0, "high": 4.0}
MAINTENANCE_WINDOW_BONUS = 1.2

# Lowest priority each aggressiveness setting lets through automatically
AUTO_APPLY_PRIORITIES = {
    "conservative": ("critical",),
    "moderate": ("critical", "high"),
    "aggressive": ("critical", "high", "medium", "low"),
}

LEARNED_CONFIDENCE = 0.8
LEARNED_SUCCESS_RATE = 0.7
MAX_LEARNED_PATTERNS = 100
PATTERN_MAX_AGE_SECONDS = 30 * 86400.0
AUTOMATION_WINDOW_SECONDS = 3600.0


@dataclass(frozen=True)
class PressureIndicators:
    """Inputs to one analysis pass."""

    system_utilization: float
    heap_utilization: float
    fragmentation_score: float
    fragmentation_level: str = "low"
    leak: Any = None
    memory_efficiency: Optional[float] = None
    session_growth: Optional[float] = None
    session_id: Optional[str] = None
    timestamp: float = 0.0

    @property
    def pressure(self) -> float:
        return max(self.system_utilization, self.heap_utilization)

    @property
    def leak_detected(self) -> bool:
        return bool(getattr(self.leak, "detected", False))

    @property
    def leak_score(self) -> float:
        return float(getattr(self.leak, "score", 0.0) or 0.0)

    @classmethod
    def from_sample(
        cls,
        sample: MemorySample,
        leak: Any = None,
        memory_efficiency: Optional[float] = None,
        session_growth: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> "PressureIndicators":
        return cls(
            system_utilization=sample.system.utilization,
            heap_utilization=sample.process.heap_utilization,
            fragmentation_score=sample.fragmentation.score,
            fragmentation_level=sample.fragmentation.level,
            leak=leak,
            memory_efficiency=memory_efficiency,
            session_growth=session_growth,
            session_id=session_id,
            timestamp=sample.timestamp,
        )


@dataclass
class LearnedPattern:
    """Track record of one (type, priority) combination that was applied."""

    type: str
    priority: str
    actions: List[RecommendationAction]
    attempts: int = 0
    successes: int = 0
    last_used: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    @property
    def confidence(self) -> float:
        return min(1.0, self.attempts / 10)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "priority": self.priority,
            "attempts": self.attempts,
            "successes": self.successes,
            "successRate": self.success_rate,
            "confidence": self.confidence,
            "lastUsed": self.last_used,
        }


@dataclass
class _TypeStats:
    attempts: int = 0
    successes: int = 0
    impact_bytes: float = 0.0
    trust: float = 0.5


class OptimizationEngine:
    """
    Generates, ranks and optionally applies recommendations.

    ``memory_probe`` returns the current resident size in bytes; it is read
    before and after an automatic application to measure its impact.
    """

    def __init__(
        self,
        config: OptimizationConfig,
        actions: Any = None,
        memory_probe: Optional[Callable[[], float]] = None,
        events: Optional[EventReporter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.actions = actions
        self.events = events
        self.memory_probe = memory_probe or (actions.current_rss if actions is not None else None)
        self.latest: List[Recommendation] = []
        self.total_generated = 0
        self._clock = clock
        self._type_stats: Dict[str, _TypeStats] = {}
        self._patterns: Dict[str, LearnedPattern] = {}
        self._automations: Deque[float] = deque()
        self._outcomes: Deque[OptimizationOutcome] = deque(maxlen=config.history_size)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def trust(self, recommendation_type: str) -> float:
        with self._lock:
            stats = self._type_stats.get(recommendation_type)
            return stats.trust if stats is not None else self.config.initial_trust

    def in_maintenance_window(self, at: Optional[float] = None) -> bool:
        hour = time.localtime(self._clock() if at is None else at).tm_hour
        start, end = self.config.maintenance_window
        if start <= end:
            return start <= hour < end
        return hour >= start or hour < end

    def score(self, recommendation: Recommendation, at: Optional[float] = None) -> Recommendation:
        """Return a copy of ``recommendation`` with priority, impact and risk scores filled in."""
        priority_score = (
            PRIORITY_BASE.get(recommendation.priority, 40.0)
            * URGENCY_MULTIPLIER.get(recommendation.urgency, 1.0)
            * (MAINTENANCE_WINDOW_BONUS if self.in_maintenance_window(at) else 1.0)
            * (0.5 + self.trust(recommendation.type))
        )
        impact_score = sum(IMPACT_SCORES.get(a.estimated_impact, 0.0) for a in recommendation.actions)
        return replace(
            recommendation,
            priority_score=priority_score,
            impact_score=impact_score,
            risk_score=RISK_SCORES.get(recommendation.risk_level, 4.0),
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self, indicators: PressureIndicators) -> List[Recommendation]:
        """Ranked recommendations for ``indicators``, highest priority score first."""
        now = self._clock()
        candidates = [
            self._memory_pressure(indicators),
            self._fragmentation(indicators),
            self._memory_leak(indicators),
            self._leak_relief(indicators),
            self._performance(indicators),
            self._session_growth(indicators),
        ]
        recommendations = [r for r in candidates if r is not None]
        if self.config.learning_enabled:
            present = {r.type for r in recommendations}
            recommendations.extend(r for r in self._learned(indicators) if r.type not in present)

        ranked = sorted(
            (self.score(replace(r, created_at=now)) for r in recommendations),
            key=lambda r: r.priority_score,
            reverse=True,
        )
        with self._lock:
            self.latest = ranked
            self.total_generated += len(ranked)
        if ranked:
            logger.debug(f"Generated {len(ranked)} recommendations: {[r.type for r in ranked]}")
        return ranked

    def _new(self, indicators: PressureIndicators, rec_type: str, **kwargs: Any) -> Recommendation:
        return Recommendation(
            id=f"{rec_type}_{uuid.uuid4().hex[:12]}",
            type=rec_type,
            session_id=indicators.session_id,
            **kwargs,
        )

    def _memory_pressure(self, ind: PressureIndicators) -> Optional[Recommendation]:
        if ind.pressure < self.config.memory_pressure:
            return None
        critical = ind.pressure > 0.9
        return self._new(
            ind,
            "memory_pressure",
            priority="critical" if critical else "high",
            urgency="immediate" if critical else "urgent",
            title="Relieve memory pressure",
            description=(
                f"Memory utilization at {ind.pressure:.1%} "
                f"(system {ind.system_utilization:.1%}, heap {ind.heap_utilization:.1%})"
            ),
            risk_level="low",
            reversible=True,
            estimated_impact="high",
            actions=[
                RecommendationAction("force_gc", "Run a full garbage collection", True, "high"),
                RecommendationAction("clear_caches", "Empty registered application caches", True, "medium"),
                RecommendationAction(
                    "memory_dump", "Capture a memory dump for offline analysis", False, "none", "1 minute"
                ),
            ],
        )

    def _fragmentation(self, ind: PressureIndicators) -> Optional[Recommendation]:
        if ind.fragmentation_score <= self.config.fragmentation_critical:
            return None
        high = ind.fragmentation_score > 0.6
        return self._new(
            ind,
            "memory_fragmentation",
            priority="high" if high else "medium",
            urgency="urgent" if high else "moderate",
            title="Memory fragmentation optimization",
            description=f"Fragmentation score at {ind.fragmentation_score:.1%}",
            risk_level="low",
            reversible=True,
            estimated_impact="high",
            actions=[
                RecommendationAction("compact_heap", "Collect every generation to compact the heap", True, "high", "30 seconds"),
                RecommendationAction(
                    "optimize_allocations", "Pool frequently allocated objects", False, "high", "1-2 hours"
                ),
                RecommendationAction(
                    "adjust_gc_parameters", "Tune collector thresholds for fewer partial pages", False, "medium", "15 minutes"
                ),
            ],
        )

    def _memory_leak(self, ind: PressureIndicators) -> Optional[Recommendation]:
        if not ind.leak_detected or ind.leak_score <= self.config.leak_severity:
            return None
        critical = ind.leak_score > 0.9
        patterns = getattr(ind.leak, "patterns", {}) or {}
        actions = []
        if patterns.get("sustained_growth"):
            actions.append(RecommendationAction(
                "investigate_sustained_growth", "Look for objects accumulating without release",
                False, "high", "30 minutes - 2 hours",
            ))
        if patterns.get("staircase"):
            actions.append(RecommendationAction(
                "investigate_staircase_pattern", "Find allocations that are never cleaned up",
                False, "high", "30 minutes - 1 hour",
            ))
        if patterns.get("gc_inefficiency"):
            actions.append(RecommendationAction(
                "optimize_gc_settings", "Review collector settings for declining reclamation",
                False, "medium", "5 minutes",
            ))
        actions.append(RecommendationAction(
            "create_heap_snapshot", "Capture allocation statistics for leak analysis", True, "none", "1 minute"
        ))
        return self._new(
            ind,
            "memory_leak",
            priority="critical" if critical else "high",
            urgency="immediate" if critical else "urgent",
            title=f"Memory leak suspected ({'critical' if critical else 'high'} severity)",
            description=f"Leak score {ind.leak_score:.3f}",
            risk_level="medium",
            reversible=False,
            estimated_impact="high",
            actions=actions,
        )

    def _leak_relief(self, ind: PressureIndicators) -> Optional[Recommendation]:
        if not ind.leak_detected:
            return None
        return self._new(
            ind,
            "leak_relief",
            priority="high",
            urgency="urgent",
            title="Reclaim memory while the leak is investigated",
            description="Collect garbage and drop caches to buy headroom",
            risk_level="low",
            reversible=True,
            estimated_impact="medium",
            actions=[
                RecommendationAction("force_gc", "Run a full garbage collection", True, "medium"),
                RecommendationAction("clear_caches", "Empty registered application caches", True, "medium"),
            ],
        )

    def _performance(self, ind: PressureIndicators) -> Optional[Recommendation]:
        if ind.memory_efficiency is None:
            return None
        baseline = self.config.baseline_efficiency
        degradation = max(0.0, (baseline - ind.memory_efficiency) / baseline) if baseline > 0 else 0.0
        if degradation <= self.config.performance_degradation:
            return None
        severe = degradation > 0.5
        return self._new(
            ind,
            "performance_optimization",
            priority="high" if severe else "medium",
            urgency="urgent" if severe else "moderate",
            title="Memory efficiency below baseline",
            description=f"Efficiency degraded {degradation:.1%} against the {baseline:.0%} baseline",
            risk_level="low",
            reversible=True,
            estimated_impact="medium",
            actions=[
                RecommendationAction(
                    "memory_efficiency_tuning", "Reduce allocation churn on hot paths", False, "high", "1-3 hours"
                ),
                RecommendationAction(
                    "review_cache_sizing", "Bound in-process caches to the working set", False, "medium", "30 minutes"
                ),
            ],
        )

    def _session_growth(self, ind: PressureIndicators) -> Optional[Recommendation]:
        if ind.session_growth is None or ind.session_growth <= self.config.session_growth:
            return None
        return self._new(
            ind,
            "session_optimization",
            priority="medium",
            urgency="moderate",
            title="Session memory growth",
            description=f"Session memory grew {ind.session_growth:.1%} since it started",
            risk_level="low",
            reversible=True,
            estimated_impact="medium",
            actions=[
                RecommendationAction(
                    "review_session_lifecycle", "Release per-session state when work completes", False, "medium", "1 hour"
                ),
                RecommendationAction(
                    "adjust_checkpoint_frequency", "Checkpoint more often while growth persists", False, "low", "5 minutes"
                ),
            ],
        )

    def _learned(self, ind: PressureIndicators) -> List[Recommendation]:
        with self._lock:
            patterns = [
                p for p in self._patterns.values()
                if p.confidence > LEARNED_CONFIDENCE and p.success_rate > LEARNED_SUCCESS_RATE
            ]
        return [
            self._new(
                ind,
                "learned_optimization",
                priority="medium",
                urgency="low",
                title=f"Apply learned pattern {p.type}_{p.priority}",
                description=f"Previously succeeded in {p.success_rate:.0%} of {p.attempts} applications",
                risk_level="low",
                reversible=True,
                estimated_impact="medium",
                actions=list(p.actions),
            )
            for p in patterns
        ]

    # ------------------------------------------------------------------
    # Automation
    # ------------------------------------------------------------------

    def is_auto_applicable(self, recommendation: Recommendation) -> bool:
        allowed = AUTO_APPLY_PRIORITIES.get(self.config.aggressiveness, ())
        return (
            self.config.auto_optimization
            and recommendation.risk_level == "low"
            and recommendation.reversible
            and recommendation.automated
            and recommendation.priority in allowed
        )

    def automations_last_hour(self) -> int:
        with self._lock:
            self._prune_automations(self._clock())
            return len(self._automations)

    def _prune_automations(self, now: float) -> None:
        while self._automations and self._automations[0] <= now - AUTOMATION_WINDOW_SECONDS:
            self._automations.popleft()

    def auto_apply(self, recommendations: Optional[List[Recommendation]] = None) -> List[OptimizationOutcome]:
        """Apply every eligible recommendation until the hourly budget is spent."""
        if not self.config.auto_optimization or self.actions is None:
            return []
        outcomes = []
        for recommendation in recommendations if recommendations is not None else list(self.latest):
            if not self.is_auto_applicable(recommendation):
                continue
            with self._lock:
                now = self._clock()
                self._prune_automations(now)
                if len(self._automations) >= self.config.max_automations_per_hour:
                    logger.info(
                        f"Automation budget of {self.config.max_automations_per_hour}/h spent; "
                        f"skipping {recommendation.type}"
                    )
                    break
                self._automations.append(now)
            outcomes.append(self.apply(recommendation))
        return outcomes

    def apply(self, recommendation: Recommendation) -> OptimizationOutcome:
        """Run the automated actions of ``recommendation`` and record the outcome."""
        before = self._probe()
        context = {
            "reason": recommendation.title,
            "session_id": recommendation.session_id,
            "recommendation_id": recommendation.id,
        }
        results = [
            self.actions.execute(action.type, context)
            for action in recommendation.actions
            if action.automated
        ]
        after = self._probe()
        impact = before - after if before is not None and after is not None else 0.0

        outcome = OptimizationOutcome(
            recommendation_id=recommendation.id,
            recommendation_type=recommendation.type,
            priority=recommendation.priority,
            success=bool(results) and all(r.success for r in results),
            timestamp=self._clock(),
            impact_bytes=impact,
            actions=[r.to_dict() for r in results],
            errors=[r.error for r in results if r.error],
        )
        self.record_outcome(outcome, recommendation)
        logger.info(
            f"Applied {recommendation.type}: success={outcome.success} impact={impact:.0f} bytes"
        )
        return outcome

    def _probe(self) -> Optional[float]:
        if self.memory_probe is None:
            return None
        try:
            return float(self.memory_probe())
        except Exception as e:
            logger.warning(f"Memory probe failed: {e}")
            return None

    def record_outcome(self, outcome: OptimizationOutcome, recommendation: Optional[Recommendation] = None) -> float:
        """
        Fold an outcome into the trust score of its type.

        A success that freed memory counts 1.0, a success with no measurable
        gain 0.5 and a failure 0.0; trust moves toward that value by
        ``trust_alpha``. Returns the new trust.
        """
        if outcome.success:
            value = 1.0 if outcome.impact_bytes > 0 else 0.5
        else:
            value = 0.0
        with self._lock:
            stats = self._type_stats.setdefault(
                outcome.recommendation_type, _TypeStats(trust=self.config.initial_trust)
            )
            stats.attempts += 1
            stats.successes += int(outcome.success)
            stats.impact_bytes += outcome.impact_bytes
            stats.trust += self.config.trust_alpha * (value - stats.trust)
            self._outcomes.append(outcome)
            if self.config.learning_enabled and recommendation is not None:
                self._learn(recommendation, outcome)
            return stats.trust

    def _learn(self, recommendation: Recommendation, outcome: OptimizationOutcome) -> None:
        key = f"{recommendation.type}_{recommendation.priority}"
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = LearnedPattern(recommendation.type, recommendation.priority, list(recommendation.actions))
            self._patterns[key] = pattern
        pattern.attempts += 1
        pattern.successes += int(outcome.success)
        pattern.last_used = outcome.timestamp

        if len(self._patterns) > MAX_LEARNED_PATTERNS:
            cutoff = outcome.timestamp - PATTERN_MAX_AGE_SECONDS
            for stale in [k for k, p in self._patterns.items() if p.last_used < cutoff or p.success_rate < 0.3]:
                del self._patterns[stale]

    def run(self, indicators: PressureIndicators) -> Tuple[List[Recommendation], List[OptimizationOutcome]]:
        """One analysis pass: generate, rank, then auto-apply what is eligible."""
        recommendations = self.generate(indicators)
        return recommendations, self.auto_apply(recommendations)

    def get_outcomes(self, limit: int = 50) -> List[OptimizationOutcome]:
        with self._lock:
            return list(self._outcomes)[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._prune_automations(self._clock())
            outcomes = list(self._outcomes)
            by_type = {
                t: {
                    "attempts": s.attempts,
                    "successes": s.successes,
                    "successRate": s.successes / s.attempts if s.attempts else 0.0,
                    "impactBytes": s.impact_bytes,
                    "trust": s.trust,
                }
                for t, s in self._type_stats.items()
            }
            patterns = list(self._patterns.values())
            automations = len(self._automations)

        successes = sum(1 for o in outcomes if o.success)
        return {
            "totalRecommendations": self.total_generated,
            "latestRecommendations": len(self.latest),
            "totalAutomations": len(outcomes),
            "automationsLastHour": automations,
            "successRate": successes / len(outcomes) if outcomes else 0.0,
            "byType": by_type,
            "learnedPatterns": len(patterns),
            "successfulPatterns": sum(1 for p in patterns if p.success_rate > LEARNED_SUCCESS_RATE),
        }
