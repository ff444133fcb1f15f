"""
Top-level wiring of the memory monitor.

The orchestrator owns every component instance; nothing is process-global,
so several monitors can coexist in one process. Samples reach the pipeline
either from the Sampler (sample tick) or from ``ingest``; both paths run::

    LeakDetector -> AlertManager -> SessionAnalyzer -> (checkpoint, recommendations)

under the owning session's lock, so each session sees its samples strictly
in order. Nothing on this path waits on I/O: documents are handed to the
AsyncPersistenceWriter with ``submit``.

The analysis tick sweeps timed-out sessions, analyzes them, runs the
cross-session analysis and the optimization engine, and applies the
retention policy.
"""

import asyncio
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..alerting import AlertManager, AlertSink, JsonlAlertSink, LoggingAlertSink, RemediationActions
from ..analysis import LeakDetector, SessionAnalyzer, SessionRegistry
from ..collectors import (
    NO_PERFORMANCE_DATA,
    MemoryCollector,
    PerformanceDataSource,
    PsutilMemoryCollector,
    Sampler,
)
from ..models.alerts import Alert, AlertLevel
from ..models.config import EngineConfig
from ..models.recommendations import Recommendation
from ..models.samples import MemorySample
from ..models.session import Checkpoint, CrossSessionAnalysis, SessionReport, SessionStatus
from ..optimization import OptimizationEngine, PressureIndicators
from ..storage import (
    AsyncPersistenceWriter,
    DataStorage,
    FileStorage,
    SessionExporter,
    create_storage,
    safe_file_stem,
)
from ..validation import (
    ErrorSeverity,
    EventReporter,
    EventType,
    IngestionError,
    MonitorError,
    ShutdownError,
)

logger = logging.getLogger(__name__)


def _document_id(session_id: str, timestamp: float) -> str:
    return f"{safe_file_stem(session_id)}_{int(timestamp * 1000)}_{uuid.uuid4().hex[:8]}"


def utilization_status(utilization: float) -> str:
    if utilization > 0.9:
        return "critical"
    if utilization > 0.8:
        return "warning"
    if utilization > 0.7:
        return "caution"
    return "healthy"


def health_rating(score: float) -> str:
    if score >= 0.8:
        return "excellent"
    if score >= 0.6:
        return "good"
    if score >= 0.4:
        return "fair"
    if score >= 0.2:
        return "poor"
    return "critical"


class MemoryMonitorOrchestrator:
    """
    Memory monitor with a sample tick and an analysis tick.

    Collaborators can be injected for testing or embedding; anything not
    supplied is built from ``config``.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        collector: Optional[MemoryCollector] = None,
        performance_source: Optional[PerformanceDataSource] = None,
        storage: Optional[DataStorage] = None,
        sinks: Optional[Sequence[AlertSink]] = None,
        actions: Optional[RemediationActions] = None,
        events: Optional[EventReporter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or EngineConfig()
        self._clock = clock
        cfg = self.config

        self.events = events or EventReporter(clock=clock)
        self.storage = storage or create_storage(cfg.storage)
        self.writer = AsyncPersistenceWriter(self.storage, cfg.storage, self.events)
        export_dir = self.storage.exports_dir if isinstance(self.storage, FileStorage) else cfg.storage.root_dir / "exports"
        self.exporter = SessionExporter(self.storage, export_dir)

        self.actions = actions or RemediationActions(events=self.events, clock=clock)
        if self.actions.dump_sink is None:
            self.actions.dump_sink = self._persist_dump

        if sinks is None:
            sinks = [LoggingAlertSink()]
            if cfg.alerts.jsonl_log:
                sinks.append(JsonlAlertSink(Path(cfg.storage.root_dir) / "alerts.jsonl"))
        self.sinks: List[AlertSink] = list(sinks)

        self.detector = LeakDetector(cfg.leak_detection, cfg.growth)
        self.registry = SessionRegistry(
            cfg.sessions.max_sessions, cfg.sessions.max_snapshots, on_evict=self.detector.forget
        )
        self.analyzer = SessionAnalyzer(cfg.sessions, cfg.growth, self.registry, clock)
        self.alert_manager = AlertManager(cfg.alerts, self.actions, self.sinks, self.events, clock)
        self.engine = OptimizationEngine(cfg.optimization, self.actions, events=self.events, clock=clock)

        self.collector = collector or PsutilMemoryCollector(
            fragmentation_threshold=cfg.sampler.fragmentation_threshold, clock=clock
        )
        self.sampler = Sampler(cfg.sampler, self.collector, self.events)
        self.sampler.subscribe(self._on_sample)
        self.performance_source = performance_source

        self.latest_recommendations: List[Recommendation] = []
        self.last_cross_session: Optional[CrossSessionAnalysis] = None
        self.samples_processed = 0
        self.samples_rejected = 0
        self.analysis_cycles = 0

        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False
        self._stopped = False
        self._started_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the persistence writer and the periodic ticks."""
        if self._running:
            logger.warning("Memory monitor already running")
            return
        if self._stopped:
            raise MonitorError("A stopped memory monitor cannot be restarted")

        self._stop_event = asyncio.Event()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="memwatch")
        await self.writer.start()

        if self.config.sampler.enabled:
            self._tasks.append(asyncio.create_task(self._sample_loop(), name="memwatch-sample-tick"))
        self._tasks.append(asyncio.create_task(self._analysis_loop(), name="memwatch-analysis-tick"))
        self._running = True
        self._started_at = self._clock()
        logger.info(
            f"Memory monitor started (sample every {self.config.sampler.interval_seconds}s, "
            f"analysis every {self.config.orchestration.analysis_interval_seconds}s)"
        )

    async def stop(self) -> bool:
        """
        Cancel the ticks, drain pending writes and release resources.

        Failures are reported as shutdown events and never raised.

        Returns:
            True if everything shut down cleanly within the grace period
        """
        if self._stopped:
            return True
        self._stopped = True
        self._running = False
        clean = True

        if self._stop_event is not None:
            self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for task, result in zip(self._tasks, results):
                if isinstance(result, Exception):
                    clean = False
                    self._report_shutdown(f"task {task.get_name()} ended with {result!r}")
            self._tasks.clear()

        if not await self.writer.stop(self.config.orchestration.shutdown_grace_seconds):
            clean = False

        for sink in self.sinks:
            try:
                sink.close()
            except Exception as e:
                clean = False
                self._report_shutdown(f"closing {type(sink).__name__} failed: {e}")

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

        logger.info(f"Memory monitor stopped ({'clean' if clean else 'with errors'})")
        return clean

    def _report_shutdown(self, message: str) -> None:
        self.events.report_error(
            ShutdownError(message), "orchestrator", "stop",
            EventType.SHUTDOWN_ERROR, severity=ErrorSeverity.WARNING,
        )

    async def _sample_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.sampler.interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                try:
                    await loop.run_in_executor(self._executor, self.sampler.sample)
                except Exception as e:
                    self.events.report_error(
                        e, "sampler", "sample", EventType.UNKNOWN_ERROR, severity=ErrorSeverity.WARNING
                    )

    async def _analysis_loop(self) -> None:
        interval = self.config.orchestration.analysis_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                try:
                    await self.run_analysis_cycle()
                except Exception as e:
                    self.events.report_error(
                        e, "orchestrator", "analysis_cycle", EventType.ANALYSIS_WARNING,
                        severity=ErrorSeverity.WARNING,
                    )

    # ------------------------------------------------------------------
    # Sample pipeline
    # ------------------------------------------------------------------

    def register_session(self, session_id: str, metadata: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        self.analyzer.register_session(session_id, metadata)
        return self.analyzer.get_session_summary(session_id)

    def ingest(self, session_id: str, sample: Union[MemorySample, Mapping[str, Any]]) -> List[Alert]:
        """
        Feed one externally produced sample into the pipeline.

        Args:
            session_id: Session the sample belongs to
            sample: A MemorySample or its JSON form

        Returns:
            Alerts emitted for this sample

        Raises:
            IngestionError: If the sample is malformed, older than the
                session's latest sample, or the monitor is stopped. Other
                sessions are unaffected.
        """
        try:
            if self._stopped:
                raise IngestionError("Monitor is stopped; samples are no longer accepted", session_id)
            if not isinstance(sample, MemorySample):
                sample = MemorySample.from_dict(sample, self.config.sampler.fragmentation_threshold)
            return self._process(session_id, sample)
        except IngestionError as e:
            if e.session_id is None:
                e.session_id = session_id
            self.samples_rejected += 1
            self.events.report_error(
                e, "orchestrator", "ingest", EventType.INGESTION_ERROR,
                severity=ErrorSeverity.WARNING, session_id=session_id,
            )
            raise

    def _on_sample(self, session_id: str, sample: MemorySample) -> None:
        self._process(session_id, sample)

    def _process(self, session_id: str, sample: MemorySample) -> List[Alert]:
        session, created = self.registry.get_or_create(session_id, sample.timestamp)
        if created:
            logger.info(f"Session {session_id} registered implicitly on first sample")

        with session.lock:
            self.analyzer.check_order(session_id, sample)
            leak = self.detector.observe(session_id, sample)
            alerts = self.alert_manager.process(sample, leak, session_id)
            snapshot = self.analyzer.add_snapshot(session_id, sample, leak)
            total_growth = session.growth.total_growth
        self.samples_processed += 1

        if leak.detected:
            self.events.report(
                EventType.LEAK_DETECTED, "leak_detector", "observe",
                message=f"Leak pattern in session {session_id} (score {leak.score:.2f})",
                severity=ErrorSeverity.WARNING, session_id=session_id,
                score=leak.score, patterns=leak.patterns,
            )

        if leak.detected or alerts:
            sessions_cfg = self.config.sessions
            if (leak.detected and sessions_cfg.checkpoint_on_leak) or (alerts and sessions_cfg.checkpoint_on_alert):
                reason = "leak_detected" if leak.detected else f"alert:{alerts[0].key}"
                checkpoint = self.analyzer.create_checkpoint(session_id, reason)
                self.writer.submit("checkpoints", checkpoint.to_dict(), checkpoint.id)

            indicators = PressureIndicators.from_sample(
                sample, leak, snapshot.memory_efficiency, total_growth, session_id
            )
            self.latest_recommendations = self.engine.generate(indicators)
        return alerts

    def _persist_dump(self, document: Dict[str, Any]) -> None:
        self.writer.submit("dumps", document, document["id"])

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def _load_performance(self, session_id: str) -> Dict[str, Any]:
        if self.performance_source is None:
            return dict(NO_PERFORMANCE_DATA)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self.performance_source.load, session_id)
        except Exception as e:
            self.events.report_error(
                e, "performance", "load", EventType.ANALYSIS_WARNING,
                severity=ErrorSeverity.WARNING, session_id=session_id,
            )
            return dict(NO_PERFORMANCE_DATA)

    async def analyze_session(self, session_id: str) -> SessionReport:
        """
        Analyze one session and persist the report.

        Raises:
            SessionNotFoundError: If the session is unknown
        """
        performance = await self._load_performance(session_id)
        report = self.analyzer.analyze_session(session_id, performance)
        self.writer.submit("reports", report.to_dict(), _document_id(session_id, report.generated_at))
        return report

    async def create_checkpoint(self, session_id: str, reason: str = "manual") -> Checkpoint:
        """
        Capture and durably write a checkpoint.

        The checkpoint is kept in memory even if the write ultimately fails;
        the failure is reported as a persistence warning.
        """
        checkpoint = self.analyzer.create_checkpoint(session_id, reason)
        result = await self.writer.write("checkpoints", checkpoint.to_dict(), checkpoint.id)
        if not result.success:
            logger.warning(f"Checkpoint {checkpoint.id} kept in memory only: {result.error}")
        return checkpoint

    def _latest_observation(self) -> Optional[Tuple[Optional[str], MemorySample]]:
        best: Optional[Tuple[Optional[str], MemorySample]] = None
        for session in self.registry.sessions(SessionStatus.ACTIVE):
            latest = session.latest
            if latest is not None and (best is None or latest.timestamp > best[1].timestamp):
                best = (session.id, latest.sample)
        history = self.sampler.get_history(1)
        if history and (best is None or history[-1].timestamp > best[1].timestamp):
            best = (None, history[-1])
        return best

    def _current_indicators(self) -> Optional[PressureIndicators]:
        observation = self._latest_observation()
        if observation is None:
            return None
        session_id, sample = observation
        leak = efficiency = growth = None
        if session_id is not None:
            leak = self.detector.latest_report(session_id)
            session = self.registry.find(session_id)
            if session is not None and session.latest is not None:
                efficiency = session.latest.memory_efficiency
                growth = session.growth.total_growth
        return PressureIndicators.from_sample(sample, leak, efficiency, growth, session_id)

    async def run_analysis_cycle(self) -> Dict[str, Any]:
        """
        One analysis tick: timeout sweep, analysis of inactive sessions,
        cross-session analysis, optimization pass and retention cleanup.
        """
        now = self._clock()
        timed_out = self.analyzer.sweep_timeouts(now)

        reports = []
        for session in self.registry.sessions(SessionStatus.INACTIVE):
            performance = await self._load_performance(session.id)
            report = self.analyzer.analyze_session(session.id, performance, mark_analyzed=True)
            reports.append(report)
            self.writer.submit("reports", report.to_dict(), _document_id(session.id, report.generated_at))
            with session.lock:
                archived = session.to_dict()
            self.writer.submit("sessions", archived, _document_id(session.id, report.generated_at))

        cross = self.analyzer.cross_session_analysis()
        self.last_cross_session = cross

        recommendations: List[Recommendation] = []
        outcomes = []
        indicators = self._current_indicators()
        if indicators is not None:
            loop = asyncio.get_running_loop()
            recommendations, outcomes = await loop.run_in_executor(self._executor, self.engine.run, indicators)
            self.latest_recommendations = recommendations
            if recommendations:
                self.writer.submit(
                    "recommendations",
                    {
                        "id": _document_id("recommendations", now),
                        "timestamp": now,
                        "sessionId": indicators.session_id,
                        "recommendations": [r.to_dict() for r in recommendations],
                        "outcomes": [o.to_dict() for o in outcomes],
                    },
                )

        removed = self.cleanup()
        self.analysis_cycles += 1
        logger.info(
            f"Analysis cycle: {len(timed_out)} timed out, {len(reports)} analyzed, "
            f"{len(recommendations)} recommendations, {len(outcomes)} applied, {removed} removed"
        )
        return {
            "timestamp": now,
            "timedOut": timed_out,
            "analyzed": [r.session_id for r in reports],
            "crossSession": cross.to_dict(),
            "recommendations": [r.to_dict() for r in recommendations],
            "outcomes": [o.to_dict() for o in outcomes],
            "removed": removed,
        }

    def cleanup(self, retention_days: Optional[float] = None) -> int:
        """Remove sessions past the retention window. Returns the number removed."""
        removed = self.analyzer.remove_expired(retention_days, self._clock())
        for session_id in removed:
            self.detector.forget(session_id)
        return len(removed)

    def export_session(self, session_id: str, fmt: str = "json", path: Optional[Union[str, Path]] = None) -> Path:
        return self.exporter.export(self.registry.get(session_id), fmt, path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_health_snapshot(self) -> Dict[str, Any]:
        """
        Current status band, utilization and a 0..1 health score.

        The score starts at 1.0 and loses points for high utilization, high
        fragmentation and unresolved critical or warning alerts.
        """
        active_sessions = len(self.registry.sessions(SessionStatus.ACTIVE))
        observation = self._latest_observation()
        if observation is None:
            return {
                "status": "unknown",
                "utilization": None,
                "healthScore": 1.0,
                "rating": health_rating(1.0),
                "activeSessions": active_sessions,
                "timestamp": self._clock(),
            }

        _, sample = observation
        system_util = sample.system.utilization
        utilization = max(system_util, sample.process.heap_utilization)
        fragmentation = sample.fragmentation.score

        score = 1.0
        score -= 0.5 if system_util > 0.9 else 0.3 if system_util > 0.8 else 0.1 if system_util > 0.7 else 0.0
        score -= 0.3 if fragmentation > 0.5 else 0.2 if fragmentation > 0.3 else 0.1 if fragmentation > 0.1 else 0.0
        unresolved = self.alert_manager.get_unresolved()
        critical = sum(1 for a in unresolved if a.level in (AlertLevel.CRITICAL, AlertLevel.EMERGENCY))
        warning = sum(1 for a in unresolved if a.level == AlertLevel.WARNING)
        score -= critical * 0.2 + warning * 0.1
        score = max(0.0, min(1.0, score))

        return {
            "status": utilization_status(utilization),
            "utilization": {
                "system": system_util,
                "heap": sample.process.heap_utilization,
                "max": utilization,
            },
            "fragmentation": {"score": fragmentation, "level": sample.fragmentation.level},
            "healthScore": score,
            "rating": health_rating(score),
            "activeSessions": active_sessions,
            "timestamp": sample.timestamp,
        }

    def get_status(self) -> Dict[str, Any]:
        sessions = self.registry.sessions()
        by_status = {s.value: 0 for s in SessionStatus}
        for session in sessions:
            by_status[session.status.value] += 1
        return {
            "running": self._running,
            "stopped": self._stopped,
            "uptime": self._clock() - self._started_at if self._started_at is not None else 0.0,
            "samplesProcessed": self.samples_processed,
            "samplesRejected": self.samples_rejected,
            "analysisCycles": self.analysis_cycles,
            "sessions": {"total": len(sessions), **by_status},
            "alerts": self.alert_manager.get_stats(),
            "optimization": self.engine.get_stats(),
            "latestRecommendations": [r.to_dict() for r in self.latest_recommendations],
            "sampler": self.sampler.status(),
            "persistence": {
                "pending": self.writer.pending,
                "completed": self.writer.completed,
                "failed": self.writer.failed,
                "dropped": self.writer.dropped,
            },
            "events": self.events.get_summary(),
            "shutdownRequested": self.actions.shutdown_requested.is_set(),
        }
