"""
Structured event channel for contained errors and notable conditions.

Components never let IngestionError, PersistenceError or ShutdownError escape
to the caller of a periodic task. Instead they report them here: each report
is logged at the matching level, kept in a bounded history, counted per event
type and handed to any registered listener.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from .exceptions import ErrorSeverity

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of events carried on the channel."""
    INGESTION_ERROR = "ingestion_error"
    PERSISTENCE_ERROR = "persistence_error"
    SUBSCRIBER_ERROR = "subscriber_error"
    ACTION_ERROR = "action_error"
    SINK_ERROR = "sink_error"
    SHUTDOWN_ERROR = "shutdown_error"
    ANALYSIS_WARNING = "analysis_warning"
    LEAK_DETECTED = "leak_detected"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    UNKNOWN_ERROR = "unknown_error"


@dataclass
class MonitorEvent:
    """A single reported event."""
    event_type: EventType
    severity: ErrorSeverity
    component: str
    operation: str
    message: str
    timestamp: float
    session_id: Optional[str] = None
    exception_type: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "component": self.component,
            "operation": self.operation,
            "message": self.message,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "exception_type": self.exception_type,
            "details": dict(self.details),
        }


_LOG_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class EventReporter:
    """
    Thread-safe event channel with bounded history.

    Listeners are invoked synchronously after the event is recorded; a
    failing listener is logged and skipped so one bad consumer cannot
    silence the others.
    """

    def __init__(
        self,
        max_history_size: int = 1000,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.max_history_size = max_history_size
        self.history: Deque[MonitorEvent] = deque(maxlen=max_history_size)
        self.event_counts: Dict[EventType, int] = {}
        self._listeners: List[Callable[[MonitorEvent], Any]] = []
        self._clock = clock
        self._lock = threading.Lock()

    def add_listener(self, listener: Callable[[MonitorEvent], Any]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[MonitorEvent], Any]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def report(
        self,
        event_type: EventType,
        component: str,
        operation: str,
        message: str = "",
        severity: ErrorSeverity = ErrorSeverity.WARNING,
        error: Optional[BaseException] = None,
        session_id: Optional[str] = None,
        **details: Any,
    ) -> MonitorEvent:
        """
        Record, log and broadcast an event.

        Args:
            event_type: Kind of event
            component: Component that produced the event
            operation: Operation that was running
            message: Human readable description, defaults to str(error)
            severity: Severity used for logging
            error: Exception that caused the event, if any
            session_id: Session the event relates to, if any
            **details: Extra structured data kept with the event

        Returns:
            The recorded event
        """
        event = MonitorEvent(
            event_type=event_type,
            severity=severity,
            component=component,
            operation=operation,
            message=message or (str(error) if error is not None else event_type.value),
            timestamp=self._clock(),
            session_id=session_id,
            exception_type=type(error).__name__ if error is not None else None,
            details=details,
        )

        with self._lock:
            self.history.append(event)
            self.event_counts[event_type] = self.event_counts.get(event_type, 0) + 1
            listeners = list(self._listeners)

        self._log_event(event)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self.logger.warning(f"Event listener {listener!r} failed: {e}")

        return event

    def report_error(
        self,
        error: BaseException,
        component: str,
        operation: str,
        event_type: EventType = EventType.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        session_id: Optional[str] = None,
        **details: Any,
    ) -> MonitorEvent:
        """Shorthand for reporting a caught exception."""
        return self.report(
            event_type,
            component,
            operation,
            severity=severity,
            error=error,
            session_id=session_id,
            **details,
        )

    def get_recent(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[MonitorEvent]:
        with self._lock:
            events = list(self.history)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:]

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of reported events.

        Returns:
            Dictionary containing totals, per-type counts and the last ten events
        """
        with self._lock:
            recent = list(self.history)[-10:]
            return {
                "total_events": sum(self.event_counts.values()),
                "event_counts": {k.value: v for k, v in self.event_counts.items()},
                "recent_events": [e.to_dict() for e in recent],
            }

    def clear(self) -> None:
        with self._lock:
            self.history.clear()
            self.event_counts.clear()

    def _log_event(self, event: MonitorEvent) -> None:
        level = _LOG_LEVELS.get(event.severity, logging.ERROR)
        where = f"{event.component}.{event.operation}"
        if event.session_id:
            where = f"{where} [session={event.session_id}]"
        self.logger.log(
            level,
            f"{event.event_type.value} in {where}: {event.message}",
            extra={"memwatch_event": event.to_dict()},
        )
