"""
Tiered memory alerts with per-(type, level) cooldowns.

Each (alert type, level) pair runs its own small state machine::

    IDLE --crossing--> TRIGGERED --actions and sinks done--> COOLDOWN
    COOLDOWN --crossing at or after cooldown_until--> IDLE --> TRIGGERED

Crossings that arrive while a pair is TRIGGERED or in COOLDOWN are counted
as suppressed and not emitted. Cooldowns are measured on sample timestamps,
so for any pair no two alerts are closer together than the configured
cooldown for their level. Resolving an alert does not end its cooldown.

For each sample only the highest crossed level of each family is
considered. A detected leak escalates a warning-level system or heap
crossing to critical and rides along in that alert's payload; only when no
system or heap threshold is crossed does it raise a memory_leak alert of its
own, which never goes beyond critical.
"""

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from ..models.alerts import Alert, AlertLevel, AlertState, AlertType
from ..models.config import AlertConfig, LevelThresholds
from ..models.samples import MemorySample
from ..validation import EventReporter, EventType
from .actions import RemediationActions
from .sinks import AlertSink

logger = logging.getLogger(__name__)

LEAK_LEVEL_CEILING = AlertLevel.CRITICAL
RECENT_WINDOW_SECONDS = 3600.0

Crossing = Tuple[AlertType, AlertLevel, Dict[str, Any]]


@dataclass
class CooldownState:
    state: AlertState = AlertState.IDLE
    cooldown_until: float = 0.0
    last_emitted: Optional[float] = None
    suppressed: int = 0


class AlertManager:
    """
    Evaluates samples against thresholds and emits rate-limited alerts.

    Attributes:
        total_suppressed: Crossings swallowed by cooldowns since creation
    """

    def __init__(
        self,
        config: AlertConfig,
        actions: Optional[RemediationActions] = None,
        sinks: Optional[Sequence[AlertSink]] = None,
        events: Optional[EventReporter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.actions = actions
        self.events = events
        self.sinks: List[AlertSink] = list(sinks or [])
        self.total_suppressed = 0
        self._clock = clock
        self._states: Dict[Tuple[AlertType, AlertLevel], CooldownState] = {}
        self._history: Deque[Alert] = deque(maxlen=config.history_size)
        self._lock = threading.Lock()

    def add_sink(self, sink: AlertSink) -> None:
        with self._lock:
            self.sinks.append(sink)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, sample: MemorySample, leak: Any = None) -> List[Crossing]:
        """Threshold crossings for ``sample``, without touching any state."""
        leak_detected = bool(getattr(leak, "detected", False))
        families = (
            (AlertType.SYSTEM_MEMORY, sample.system.utilization, self.config.system),
            (AlertType.HEAP_PRESSURE, sample.process.heap_utilization, self.config.heap),
            (AlertType.MEMORY_FRAGMENTATION, sample.fragmentation.score, self.config.fragmentation),
        )

        crossings: List[Crossing] = []
        for alert_type, value, thresholds in families:
            level = _crossed_level(thresholds, value)
            if level is None:
                continue
            payload = {
                "value": value,
                "threshold": getattr(thresholds, level.value),
                "message": f"{alert_type.value} at {value:.1%} crossed the {level.value} threshold",
            }
            if (
                leak_detected
                and self.config.escalate_on_leak
                and alert_type in (AlertType.SYSTEM_MEMORY, AlertType.HEAP_PRESSURE)
                and level == AlertLevel.WARNING
            ):
                payload["escalatedFrom"] = level.value
                level = level.escalated(AlertLevel.CRITICAL)
                payload["message"] += " (escalated: leak pattern detected)"
            crossings.append((alert_type, level, payload))

        if not leak_detected:
            return crossings

        leak_info = {"score": leak.score, "patterns": leak.patterns}
        pressure = [c for c in crossings if c[0] in (AlertType.SYSTEM_MEMORY, AlertType.HEAP_PRESSURE)]
        if pressure:
            for _, _, payload in pressure:
                payload["leak"] = leak_info
        else:
            level = _crossed_level(self.config.leak_score, leak.score)
            if level is not None:
                if level.rank > LEAK_LEVEL_CEILING.rank:
                    level = LEAK_LEVEL_CEILING
                crossings.append((
                    AlertType.MEMORY_LEAK,
                    level,
                    {
                        "value": leak.score,
                        "threshold": getattr(self.config.leak_score, level.value),
                        "patterns": leak.patterns,
                        "message": f"Leak pattern detected with score {leak.score:.2f}",
                    },
                ))
        return crossings

    def process(self, sample: MemorySample, leak: Any = None, session_id: Optional[str] = None) -> List[Alert]:
        """
        Evaluate ``sample`` and emit every crossing not held back by a cooldown.

        Returns:
            The alerts emitted for this sample, possibly empty
        """
        emitted = []
        for alert_type, level, payload in self.evaluate(sample, leak):
            alert = self._trigger(alert_type, level, sample.timestamp, payload, session_id)
            if alert is not None:
                emitted.append(alert)

        for alert in emitted:
            self._dispatch(alert)
        return emitted

    def actions_for(self, level: AlertLevel) -> List[str]:
        if level == AlertLevel.CRITICAL and self.config.auto_gc:
            return ["force_gc", "clear_caches"]
        if level == AlertLevel.EMERGENCY:
            actions = []
            if self.config.memory_dump:
                actions.append("memory_dump")
            if self.config.emergency_shutdown:
                actions.append("emergency_shutdown")
            if actions:
                return actions
        return ["monitor"]

    def _trigger(
        self,
        alert_type: AlertType,
        level: AlertLevel,
        timestamp: float,
        payload: Dict[str, Any],
        session_id: Optional[str],
    ) -> Optional[Alert]:
        with self._lock:
            state = self._states.setdefault((alert_type, level), CooldownState())
            if state.state == AlertState.COOLDOWN and timestamp >= state.cooldown_until:
                state.state = AlertState.IDLE
            if state.state != AlertState.IDLE:
                state.suppressed += 1
                self.total_suppressed += 1
                logger.debug(f"Suppressed {alert_type.value}_{level.value} during cooldown")
                return None

            state.state = AlertState.TRIGGERED
            state.last_emitted = timestamp
            state.cooldown_until = timestamp + self.config.cooldowns[level.value]
            alert = Alert(
                id=str(uuid.uuid4()),
                type=alert_type,
                level=level,
                timestamp=timestamp,
                payload=payload,
                session_id=session_id,
                actions=self.actions_for(level),
            )
            self._history.append(alert)
        return alert

    def _dispatch(self, alert: Alert) -> None:
        try:
            if self.actions is not None:
                context = {
                    "reason": alert.payload.get("message", alert.key),
                    "session_id": alert.session_id,
                    "alert_id": alert.id,
                }
                results = self.actions.execute_all(alert.actions, context)
                alert.payload["actionResults"] = [r.to_dict() for r in results]

            with self._lock:
                sinks = list(self.sinks)
            for sink in sinks:
                try:
                    sink.deliver(alert)
                except Exception as e:
                    if self.events is not None:
                        self.events.report_error(
                            e, "alert_manager", f"deliver:{type(sink).__name__}",
                            EventType.SINK_ERROR, session_id=alert.session_id,
                        )
                    else:
                        logger.error(f"Alert sink {sink!r} failed: {e}")
        finally:
            with self._lock:
                state = self._states[(alert.type, alert.level)]
                if state.state == AlertState.TRIGGERED:
                    state.state = AlertState.COOLDOWN

    # ------------------------------------------------------------------
    # Queries and lifecycle
    # ------------------------------------------------------------------

    def state_of(self, alert_type: AlertType, level: AlertLevel, at: Optional[float] = None) -> AlertState:
        """State of a pair, treating an elapsed cooldown as IDLE when ``at`` is given."""
        with self._lock:
            state = self._states.get((alert_type, level))
            if state is None:
                return AlertState.IDLE
            if state.state == AlertState.COOLDOWN and at is not None and at >= state.cooldown_until:
                return AlertState.IDLE
            return state.state

    def _find(self, alert_id: str) -> Optional[Alert]:
        for alert in self._history:
            if alert.id == alert_id:
                return alert
        return None

    def acknowledge(self, alert_id: str, user: str = "system") -> Optional[Alert]:
        with self._lock:
            alert = self._find(alert_id)
            if alert is None:
                logger.warning(f"Cannot acknowledge unknown alert {alert_id}")
                return None
            alert.acknowledged = True
            alert.acknowledged_by = user
            alert.acknowledged_at = self._clock()
        logger.info(f"Alert {alert_id} acknowledged by {user}")
        return alert

    def resolve(self, alert_id: str, resolution: str = "", user: str = "system") -> Optional[Alert]:
        with self._lock:
            alert = self._find(alert_id)
            if alert is None:
                logger.warning(f"Cannot resolve unknown alert {alert_id}")
                return None
            alert.resolved = True
            alert.resolved_by = user
            alert.resolved_at = self._clock()
            alert.resolution = resolution
        logger.info(f"Alert {alert_id} resolved by {user}")
        return alert

    def get_recent(self, limit: int = 50) -> List[Alert]:
        """Most recent alerts, newest first."""
        with self._lock:
            alerts = list(self._history)
        return list(reversed(alerts))[:limit]

    def get_unresolved(self, level: Optional[AlertLevel] = None) -> List[Alert]:
        with self._lock:
            alerts = [a for a in self._history if not a.resolved]
        if level is not None:
            alerts = [a for a in alerts if a.level == level]
        return alerts

    def clear_resolved(self, older_than: Optional[float] = None) -> int:
        """Drop resolved alerts, optionally only those resolved more than ``older_than`` seconds ago."""
        now = self._clock()
        with self._lock:
            keep = deque(maxlen=self._history.maxlen)
            removed = 0
            for alert in self._history:
                expired = older_than is None or (alert.resolved_at or 0.0) <= now - older_than
                if alert.resolved and expired:
                    removed += 1
                else:
                    keep.append(alert)
            self._history = keep
        return removed

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            alerts = list(self._history)
            states = {
                f"{t.value}_{l.value}": {
                    "state": s.state.value,
                    "cooldownUntil": s.cooldown_until,
                    "suppressed": s.suppressed,
                }
                for (t, l), s in self._states.items()
            }
            suppressed = self.total_suppressed

        by_type = {t.value: 0 for t in AlertType}
        by_level = {l.value: 0 for l in AlertLevel}
        for alert in alerts:
            by_type[alert.type.value] += 1
            by_level[alert.level.value] += 1
        return {
            "total": len(alerts),
            "byType": by_type,
            "byLevel": by_level,
            "active": sum(1 for a in alerts if not a.resolved and not a.acknowledged),
            "unresolved": sum(1 for a in alerts if not a.resolved),
            "recent": sum(1 for a in alerts if a.timestamp >= now - RECENT_WINDOW_SECONDS),
            "suppressed": suppressed,
            "states": states,
        }


def _crossed_level(thresholds: LevelThresholds, value: float) -> Optional[AlertLevel]:
    level = thresholds.level_for(value)
    return AlertLevel(level) if level is not None else None
