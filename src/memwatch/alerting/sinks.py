"""
Alert delivery sinks.

The alert manager only produces ``Alert`` objects and hands them to sinks;
transport (files, webhooks, mail) is the sink's concern. ``deliver`` is
called on the sampling path and must not block on I/O.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..models.alerts import Alert, AlertLevel
from ..validation import simple_retry

logger = logging.getLogger(__name__)


class AlertSink(ABC):
    """Destination for emitted alerts."""

    @abstractmethod
    def deliver(self, alert: Alert) -> None:
        """Hand ``alert`` to the destination without blocking."""

    def close(self) -> None:
        """Release resources. Called once when the monitor stops."""


class LoggingAlertSink(AlertSink):
    """Writes alerts to a logger at a level matching the alert level."""

    LEVELS = {
        AlertLevel.WARNING: logging.WARNING,
        AlertLevel.CRITICAL: logging.ERROR,
        AlertLevel.EMERGENCY: logging.CRITICAL,
    }

    def __init__(self, target: Optional[logging.Logger] = None):
        self.target = target or logger

    def deliver(self, alert: Alert) -> None:
        session = f" [session {alert.session_id}]" if alert.session_id else ""
        self.target.log(
            self.LEVELS.get(alert.level, logging.WARNING),
            f"{alert.level.value.upper()} {alert.type.value}{session}: {alert.payload.get('message', '')}",
        )


class CallbackAlertSink(AlertSink):
    """Forwards alerts to a callable supplied by the embedding application."""

    def __init__(self, callback: Callable[[Alert], Any]):
        self.callback = callback

    def deliver(self, alert: Alert) -> None:
        self.callback(alert)


class JsonlAlertSink(AlertSink):
    """
    Appends one JSON line per alert.

    Writes run on a single background thread so lines keep their emission
    order and the caller never waits on the file system. Each write is
    retried a few times before being logged as lost.
    """

    def __init__(self, path: Union[str, Path], max_attempts: int = 3, retry_delay: float = 0.1):
        self.path = Path(path)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.written = 0
        self.failed = 0
        self._lock = threading.Lock()
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="memwatch-alert-log")

    def deliver(self, alert: Alert) -> None:
        with self._lock:
            if self._closed:
                logger.warning(f"Alert {alert.id} dropped: sink {self.path} is closed")
                return
            future = self._executor.submit(self._append, alert.to_dict())
        future.add_done_callback(self._on_done)

    def _append(self, document: Dict[str, Any]) -> None:
        line = json.dumps(document, default=str) + "\n"

        def write():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

        simple_retry(write, self.max_attempts, self.retry_delay, context=f"append alert to {self.path}")

    def _on_done(self, future: Future) -> None:
        error = future.exception()
        with self._lock:
            if error is None:
                self.written += 1
            else:
                self.failed += 1
        if error is not None:
            logger.error(f"Alert line lost for {self.path}: {error}")

    def flush(self) -> None:
        """Block until every queued line has been written."""
        with self._lock:
            if self._closed:
                return
            barrier = self._executor.submit(lambda: None)
        barrier.result()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
        logger.debug(f"Closed alert log {self.path} ({self.written} written, {self.failed} failed)")
