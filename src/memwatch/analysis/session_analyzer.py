"""
Per-session memory analysis.

The ``SessionRegistry`` is the single shared map of session id to Session.
``SessionAnalyzer`` is the only writer of session state: every mutation
happens while holding that session's lock, so samples for one session are
applied strictly in order while other sessions proceed independently.

Growth rates are fractional rss change normalised to
``GrowthThresholds.rate_period_seconds`` so they are comparable with the
classification thresholds regardless of the sampling cadence.
"""

import logging
import math
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import polars as pl

from ..models.config import GrowthThresholds, SessionConfig
from ..models.samples import MemorySample
from ..models.session import (
    PHASE_TYPES,
    PROBLEMATIC_PHASES,
    Checkpoint,
    CrossSessionAnalysis,
    GrowthPhase,
    Session,
    SessionReport,
    SessionSnapshot,
    SessionStatus,
)
from ..validation import IngestionError, SessionNotFoundError
from .statistics import (
    CorrelationResult,
    linear_trend,
    mean,
    pearson_correlation,
    population_variance,
    stability,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


def memory_efficiency(sample: MemorySample) -> float:
    """Headroom left in heap and system memory, discounted by fragmentation."""
    headroom = ((1.0 - sample.process.heap_utilization) + (1.0 - sample.system.utilization)) / 2.0
    return max(0.0, headroom - sample.fragmentation.score)


class SessionRegistry:
    """
    Bounded, thread-safe map of session id to Session.

    ``on_evict`` is called with the id of every session dropped to make room
    for a new one, so per-session state held elsewhere can be released.
    """

    def __init__(
        self,
        max_sessions: int = 100,
        max_snapshots: int = 1000,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        self.max_sessions = max_sessions
        self.max_snapshots = max_snapshots
        self.on_evict = on_evict
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(
        self,
        session_id: str,
        start_time: float,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Session, bool]:
        """Return the session and whether it was created by this call."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session, False
            if len(self._sessions) >= self.max_sessions:
                self._evict_one(session_id)
            session = Session(
                id=session_id,
                start_time=start_time,
                max_snapshots=self.max_snapshots,
                metadata=dict(metadata or {}),
            )
            self._sessions[session_id] = session
            return session, True

    def add(self, session: Session) -> None:
        """Insert a restored session, replacing any session with the same id."""
        with self._lock:
            if session.id not in self._sessions and len(self._sessions) >= self.max_sessions:
                self._evict_one(session.id)
            self._sessions[session.id] = session

    def remove(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def sessions(self, status: Optional[SessionStatus] = None) -> List[Session]:
        with self._lock:
            sessions = list(self._sessions.values())
        if status is not None:
            sessions = [s for s in sessions if s.status == status]
        return sessions

    def _evict_one(self, incoming_id: str) -> None:
        candidates = [s for s in self._sessions.values() if s.status != SessionStatus.ACTIVE]
        if not candidates:
            raise IngestionError(
                f"Session limit of {self.max_sessions} reached and every session is active",
                session_id=incoming_id,
            )
        oldest = min(candidates, key=lambda s: s.last_activity or s.start_time)
        del self._sessions[oldest.id]
        logger.warning(f"Session limit reached, evicted inactive session {oldest.id}")
        if self.on_evict is not None:
            self.on_evict(oldest.id)


class SessionAnalyzer:
    """Growth tracking, phase segmentation, reports and cross-session analysis."""

    def __init__(
        self,
        config: SessionConfig,
        growth: GrowthThresholds,
        registry: Optional[SessionRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.growth = growth
        if registry is None:
            registry = SessionRegistry(config.max_sessions, config.max_snapshots)
        self.registry = registry
        self._clock = clock

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def register_session(
        self,
        session_id: str,
        metadata: Optional[Mapping[str, Any]] = None,
        start_time: Optional[float] = None,
    ) -> Session:
        """Register a session explicitly. Registering an existing id merges metadata."""
        session, created = self.registry.get_or_create(
            session_id, start_time if start_time is not None else self._clock(), metadata
        )
        if created:
            logger.info(f"Registered session {session_id}")
        elif metadata:
            with session.lock:
                session.metadata.update(metadata)
        return session

    def check_order(self, session_id: str, sample: MemorySample) -> None:
        """Raise IngestionError if ``sample`` would go back in time for the session."""
        session = self.registry.find(session_id)
        if session is None:
            return
        with session.lock:
            latest = session.latest
            if latest is not None and sample.timestamp < latest.timestamp:
                raise IngestionError(
                    f"Sample at {sample.timestamp} is older than the latest sample "
                    f"at {latest.timestamp}",
                    session_id=session_id,
                )

    def add_snapshot(self, session_id: str, sample: MemorySample, leak: Any = None) -> SessionSnapshot:
        """
        Record ``sample`` for the session, creating the session on first sight.

        Args:
            session_id: Session the sample belongs to
            sample: The memory sample
            leak: Leak report for the same sample, if one was produced

        Returns:
            The stored snapshot with its derived growth rate and phase
        """
        session, created = self.registry.get_or_create(session_id, sample.timestamp)
        if created:
            logger.info(f"Session {session_id} registered implicitly on first sample")

        with session.lock:
            previous = session.latest
            if previous is not None and sample.timestamp < previous.timestamp:
                raise IngestionError(
                    f"Sample at {sample.timestamp} is older than the latest sample "
                    f"at {previous.timestamp}",
                    session_id=session_id,
                )

            growth = session.growth
            rss = sample.process.rss
            if growth.initial_memory is None:
                growth.initial_memory = rss
            growth.peak_memory = max(growth.peak_memory, rss)
            if growth.initial_memory > 0:
                growth.total_growth = (rss - growth.initial_memory) / growth.initial_memory

            rate = None
            phase_type = None
            if previous is not None:
                rate = self.growth_rate(previous.sample, sample)
                growth.rate_sum += rate
                growth.rate_count += 1
                growth.avg_growth_rate = growth.rate_sum / growth.rate_count
                phase_type = self._update_phases(session, sample, rate, bool(getattr(leak, "detected", False)))

            snapshot = SessionSnapshot(
                sample=sample,
                memory_efficiency=memory_efficiency(sample),
                growth_rate=rate,
                growth_phase=phase_type,
            )
            session.snapshots.append(snapshot)
            session.last_activity = sample.timestamp
            if session.status != SessionStatus.ACTIVE:
                logger.info(f"Session {session_id} reactivated by a new sample")
                session.status = SessionStatus.ACTIVE

        logger.debug(f"Session {session_id}: rss={rss:.0f} rate={rate} phase={phase_type}")
        return snapshot

    def growth_rate(self, previous: MemorySample, current: MemorySample) -> float:
        """Fractional rss change per rate period; per sample when no time elapsed."""
        if previous.process.rss <= 0:
            return 0.0
        fraction = (current.process.rss - previous.process.rss) / previous.process.rss
        elapsed = current.timestamp - previous.timestamp
        if elapsed <= 0:
            return fraction
        return fraction * self.growth.rate_period_seconds / elapsed

    def _update_phases(self, session: Session, sample: MemorySample, rate: float, leak_detected: bool) -> str:
        phases = session.growth.phases
        current = session.growth.current_phase
        if current is None or abs(rate - current.rate) > self.growth.phase_delta:
            if current is not None:
                current.close(sample.timestamp, sample.process.rss)
            current = GrowthPhase(
                start_time=sample.timestamp,
                start_memory=sample.process.rss,
                rate=rate,
                type=self.growth.classify(rate),
                leak_suspected=leak_detected,
            )
            phases.append(current)
            if len(phases) > self.config.max_phases:
                del phases[: len(phases) - self.config.max_phases]
            logger.debug(f"Session {session.id}: new {current.type} phase at rate {rate:.4f}")
        elif leak_detected:
            current.leak_suspected = True
        return current.type

    def sweep_timeouts(self, now: Optional[float] = None) -> List[str]:
        """Mark active sessions with no sample for ``session_timeout_seconds`` inactive."""
        now = self._clock() if now is None else now
        expired = []
        for session in self.registry.sessions(SessionStatus.ACTIVE):
            with session.lock:
                idle = now - (session.last_activity or session.start_time)
                if session.status == SessionStatus.ACTIVE and idle > self.config.session_timeout_seconds:
                    session.status = SessionStatus.INACTIVE
                    expired.append(session.id)
        if expired:
            logger.info(f"Sessions timed out: {', '.join(expired)}")
        return expired

    def remove_expired(self, retention_days: Optional[float] = None, now: Optional[float] = None) -> List[str]:
        """Delete non-active sessions whose last activity is older than the retention window."""
        days = self.config.retention_days if retention_days is None else retention_days
        now = self._clock() if now is None else now
        cutoff = now - days * SECONDS_PER_DAY
        removed = []
        for session in self.registry.sessions():
            with session.lock:
                if session.status == SessionStatus.ACTIVE:
                    continue
                if (session.last_activity or session.start_time) < cutoff:
                    removed.append(session.id)
        for session_id in removed:
            self.registry.remove(session_id)
        if removed:
            logger.info(f"Removed {len(removed)} sessions past {days} day retention")
        return removed

    def create_checkpoint(self, session_id: str, reason: str = "manual") -> Checkpoint:
        session = self.registry.get(session_id)
        with session.lock:
            latest = session.latest
            checkpoint = Checkpoint(
                id=str(uuid.uuid4()),
                session_id=session_id,
                timestamp=self._clock(),
                reason=reason,
                memory_state=latest.sample.to_dict() if latest is not None else None,
                growth_analysis=session.growth.to_dict(),
                session_duration=session.duration,
                snapshot_count=session.snapshot_count,
            )
            session.checkpoints.append(checkpoint)
        logger.info(f"Checkpoint {checkpoint.id} for session {session_id} ({reason})")
        return checkpoint

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def health_score(self, session: Session) -> float:
        """
        1.0 minus penalties for growth severity, problematic phases and
        fragmentation, clamped to [0, 1]. No snapshots means no penalty.
        """
        with session.lock:
            if not session.snapshots:
                return 1.0
            score = 1.0
            total_growth = session.growth.total_growth
            if total_growth > 0.5:
                score -= 0.4
            elif total_growth > 0.3:
                score -= 0.2
            elif total_growth > 0.1:
                score -= 0.1

            phases = session.growth.phases
            if phases:
                problematic = sum(1 for p in phases if p.type in PROBLEMATIC_PHASES)
                score -= 0.3 * (problematic / len(phases))

            score -= 0.2 * mean([s.sample.fragmentation.score for s in session.snapshots])
        return min(1.0, max(0.0, score))

    def analyze_session(
        self,
        session_id: str,
        performance: Optional[Mapping[str, Any]] = None,
        mark_analyzed: bool = False,
    ) -> SessionReport:
        """
        Full analysis of one session.

        A session without snapshots yields a report with ``insufficient_data``
        set and a health score of 1.0 instead of raising.

        Raises:
            SessionNotFoundError: If the session is unknown
        """
        session = self.registry.get(session_id)
        with session.lock:
            snapshots = list(session.snapshots)
            health = self.health_score(session)
            report = SessionReport(
                session_id=session_id,
                generated_at=self._clock(),
                status=session.status.value,
                insufficient_data=not snapshots,
                snapshot_count=len(snapshots),
                duration=session.duration,
                health_score=health,
            )
            if snapshots:
                report.memory = self._memory_statistics(snapshots, session)
                report.growth = self._growth_statistics(session)
                report.fragmentation = self._fragmentation_statistics(snapshots)
                report.correlations = self.correlate(snapshots, performance)
                report.recommendations = self._session_recommendations(session, report)
            if mark_analyzed and session.status == SessionStatus.INACTIVE:
                session.status = SessionStatus.ANALYZED
                report.status = session.status.value
            session.last_report = report.to_dict()

        logger.info(
            f"Analyzed session {session_id}: {len(snapshots)} snapshots, health={health:.2f}"
        )
        return report

    def _memory_statistics(self, snapshots: Sequence[SessionSnapshot], session: Session) -> Dict[str, Any]:
        rss = [s.sample.process.rss for s in snapshots]
        efficiency = [s.memory_efficiency for s in snapshots]
        return {
            "min": min(rss),
            "max": max(rss),
            "mean": mean(rss),
            "variance": population_variance(rss),
            "initial": session.growth.initial_memory,
            "current": rss[-1],
            "peak": session.growth.peak_memory,
            "trend": linear_trend(rss),
            "stability": stability(rss),
            "averageEfficiency": mean(efficiency),
        }

    def _growth_statistics(self, session: Session) -> Dict[str, Any]:
        growth = session.growth
        counts = {phase_type: 0 for phase_type in PHASE_TYPES}
        for phase in growth.phases:
            counts[phase.type] = counts.get(phase.type, 0) + 1
        problematic = sum(counts[t] for t in PROBLEMATIC_PHASES)
        current = growth.current_phase
        return {
            "totalGrowth": growth.total_growth,
            "peakMemory": growth.peak_memory,
            "avgGrowthRate": growth.avg_growth_rate,
            "classification": self.growth.classify(growth.avg_growth_rate),
            "phaseCount": len(growth.phases),
            "phaseTypes": counts,
            "problematicPhaseRatio": problematic / len(growth.phases) if growth.phases else 0.0,
            "leakSuspectedPhases": sum(1 for p in growth.phases if p.leak_suspected),
            "currentPhase": current.to_dict() if current is not None else None,
        }

    def _fragmentation_statistics(self, snapshots: Sequence[SessionSnapshot]) -> Dict[str, Any]:
        scores = [s.sample.fragmentation.score for s in snapshots]
        high = sum(1 for s in snapshots if s.sample.fragmentation.level == "high")
        return {
            "average": mean(scores),
            "max": max(scores),
            "min": min(scores),
            "highRatio": high / len(snapshots),
            "trend": linear_trend(scores),
        }

    def _session_recommendations(self, session: Session, report: SessionReport) -> List[Dict[str, Any]]:
        recommendations = []
        total_growth = session.growth.total_growth
        if total_growth > self.growth.critical:
            recommendations.append({
                "type": "critical_growth",
                "priority": "high",
                "message": f"Memory grew {total_growth:.0%} over the session; investigate for leaks",
            })
        elif total_growth > self.growth.concerning:
            recommendations.append({
                "type": "concerning_growth",
                "priority": "medium",
                "message": f"Memory grew {total_growth:.0%} over the session; monitor allocation patterns",
            })

        if report.growth.get("problematicPhaseRatio", 0.0) > 0.5:
            recommendations.append({
                "type": "unstable_memory",
                "priority": "medium",
                "message": "Most growth phases were concerning or critical",
            })

        if report.fragmentation.get("average", 0.0) > self.config.fragmentation_threshold:
            recommendations.append({
                "type": "high_fragmentation",
                "priority": "medium",
                "message": "Average fragmentation is high; consider heap compaction or pooling",
            })
        return recommendations

    # ------------------------------------------------------------------
    # Correlation with external performance series
    # ------------------------------------------------------------------

    def correlate(
        self,
        snapshots: Sequence[SessionSnapshot],
        performance: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """
        Correlate the session's rss series with each performance series.

        Series of ``{"timestamp", "value"}`` points are aligned to the
        snapshots by nearest timestamp; bare numeric series are paired by
        position and must match the snapshot count.
        """
        if not performance or performance.get("no_performance_data"):
            return {"no_performance_data": True}

        results: Dict[str, Any] = {}
        for name, series in performance.items():
            if not isinstance(series, (list, tuple)):
                continue
            result, alignment = self._correlate_series(snapshots, series)
            results[name] = {**result.to_dict(), "alignment": alignment}
        return results or {"no_performance_data": True}

    def _correlate_series(
        self, snapshots: Sequence[SessionSnapshot], series: Sequence[Any]
    ) -> Tuple[CorrelationResult, str]:
        parsed = _timestamped_points(series)
        if parsed is None:
            return _positional_correlation(snapshots, series), "positional"

        points, dropped = parsed
        if dropped:
            logger.debug(f"Skipped {dropped} unusable performance points")
        if not points:
            if dropped:
                return CorrelationResult(sample_count=0, insufficient_data=True, reason="invalid_values"), "asof"
            return pearson_correlation([], []), "asof"

        memory = pl.DataFrame(
            {
                "timestamp": [s.timestamp for s in snapshots],
                "rss": [s.sample.process.rss for s in snapshots],
            },
            schema={"timestamp": pl.Float64, "rss": pl.Float64},
        ).sort("timestamp")
        external = pl.DataFrame(
            {"timestamp": [p[0] for p in points], "value": [p[1] for p in points]},
            schema={"timestamp": pl.Float64, "value": pl.Float64},
        ).sort("timestamp")

        aligned = memory.join_asof(external, on="timestamp", strategy="nearest").drop_nulls("value")
        return (
            pearson_correlation(aligned["rss"].to_list(), aligned["value"].to_list()),
            "asof",
        )

    # ------------------------------------------------------------------
    # Cross-session analysis
    # ------------------------------------------------------------------

    def cross_session_analysis(self) -> CrossSessionAnalysis:
        """Patterns across sessions that are no longer active."""
        completed = [
            s for s in self.registry.sessions()
            if s.status != SessionStatus.ACTIVE and s.snapshot_count > 0
        ]
        completed.sort(key=lambda s: s.start_time)
        generated_at = self._clock()
        if len(completed) < 2:
            return CrossSessionAnalysis(generated_at, len(completed), insufficient_data=True)

        growths: List[float] = []
        durations: List[float] = []
        efficiencies: List[float] = []
        phase_presence = {phase_type: 0 for phase_type in PHASE_TYPES}
        for session in completed:
            with session.lock:
                growths.append(session.growth.total_growth)
                durations.append(session.duration)
                efficiencies.append(mean([s.memory_efficiency for s in session.snapshots]))
                for phase_type in {p.type for p in session.growth.phases}:
                    phase_presence[phase_type] = phase_presence.get(phase_type, 0) + 1

        count = len(completed)
        distribution = {
            "high": sum(1 for e in efficiencies if e > 0.8),
            "medium": sum(1 for e in efficiencies if 0.5 < e <= 0.8),
            "low": sum(1 for e in efficiencies if e <= 0.5),
        }
        return CrossSessionAnalysis(
            generated_at=generated_at,
            session_count=count,
            insufficient_data=False,
            average_growth=mean(growths),
            common_growth_patterns={k: v / count for k, v in phase_presence.items()},
            duration_correlation=pearson_correlation(durations, growths).to_dict(),
            efficiency={
                "average": mean(efficiencies),
                "distribution": distribution,
                "trend": linear_trend(efficiencies),
            },
        )

    def get_session_summary(self, session_id: str) -> Dict[str, Any]:
        session = self.registry.get(session_id)
        with session.lock:
            latest = session.latest
            current = session.growth.current_phase
            return {
                "id": session.id,
                "status": session.status.value,
                "startTime": session.start_time,
                "lastActivity": session.last_activity,
                "duration": session.duration,
                "snapshotCount": session.snapshot_count,
                "checkpointCount": len(session.checkpoints),
                "metadata": dict(session.metadata),
                "totalGrowth": session.growth.total_growth,
                "peakMemory": session.growth.peak_memory,
                "avgGrowthRate": session.growth.avg_growth_rate,
                "currentPhase": current.type if current is not None else None,
                "latestSample": latest.sample.to_dict() if latest is not None else None,
                "healthScore": self.health_score(session),
            }


def _finite(value: Any) -> Optional[float]:
    """The value as a finite float, or None for nulls, text and NaN."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _timestamped_points(series: Iterable[Any]) -> Optional[Tuple[List[Tuple[float, float]], int]]:
    """
    Usable (timestamp, value) pairs plus the count of points skipped for a
    missing or non-numeric timestamp or value. None if the series carries no
    timestamps.
    """
    points = []
    dropped = 0
    for item in series:
        if isinstance(item, Mapping):
            if "timestamp" not in item or "value" not in item:
                return None
            raw = (item["timestamp"], item["value"])
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            raw = (item[0], item[1])
        else:
            return None
        timestamp, value = _finite(raw[0]), _finite(raw[1])
        if timestamp is None or value is None:
            dropped += 1
        else:
            points.append((timestamp, value))
    return points, dropped


def _positional_correlation(snapshots: Sequence[SessionSnapshot], series: Sequence[Any]) -> CorrelationResult:
    """Pair values with snapshots by index, skipping positions whose value is unusable."""
    if len(series) != len(snapshots):
        return CorrelationResult(
            sample_count=min(len(series), len(snapshots)), insufficient_data=True, reason="length_mismatch"
        )
    pairs = [
        (s.sample.process.rss, value)
        for s, value in zip(snapshots, (_finite(v) for v in series))
        if value is not None
    ]
    if series and not pairs:
        return CorrelationResult(sample_count=0, insufficient_data=True, reason="invalid_values")
    return pearson_correlation([p[0] for p in pairs], [p[1] for p in pairs])
