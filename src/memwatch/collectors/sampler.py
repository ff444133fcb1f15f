"""
Periodic memory sampling with a bounded history and push-based fan-out.

The Sampler does not schedule itself; the orchestrator calls ``sample()`` on
its sample tick. Every sample is appended to a ring buffer (oldest evicted
on overflow) and delivered synchronously to each subscriber in registration
order, so no live subscriber misses a sample. A subscriber that raises is
reported on the event channel and does not prevent delivery to the others.

Subscribers have no inbound queue. The orchestrator's pipeline is the only
subscriber in practice and runs in the sample tick's executor thread, so a
slow subscriber delays the next tick instead of growing an unbounded
backlog. A subscriber that must not slow sampling should hand the sample
off to its own bounded queue.
"""

import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import polars as pl

from ..analysis.statistics import mean, stability
from ..models.config import SamplerConfig
from ..models.samples import MemorySample
from ..validation import EventReporter, EventType, validate_enum_choice
from .base import MemoryCollector

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, MemorySample], Any]

TREND_WINDOW = 10


def samples_to_frame(samples: List[MemorySample]) -> pl.DataFrame:
    """Flatten samples into one row per observation."""
    return pl.DataFrame(
        {
            "timestamp": [s.timestamp for s in samples],
            "rss": [s.process.rss for s in samples],
            "heapUsed": [s.process.heap_used for s in samples],
            "heapTotal": [s.process.heap_total for s in samples],
            "external": [s.process.external for s in samples],
            "heapUtilization": [s.process.heap_utilization for s in samples],
            "systemTotal": [s.system.total for s in samples],
            "systemUsed": [s.system.used for s in samples],
            "systemAvailable": [s.system.available for s in samples],
            "systemUtilization": [s.system.utilization for s in samples],
            "fragmentation": [s.fragmentation.score for s in samples],
            "fragmentationLevel": [s.fragmentation.level for s in samples],
        },
        schema={
            "timestamp": pl.Float64,
            "rss": pl.Float64,
            "heapUsed": pl.Float64,
            "heapTotal": pl.Float64,
            "external": pl.Float64,
            "heapUtilization": pl.Float64,
            "systemTotal": pl.Float64,
            "systemUsed": pl.Float64,
            "systemAvailable": pl.Float64,
            "systemUtilization": pl.Float64,
            "fragmentation": pl.Float64,
            "fragmentationLevel": pl.Utf8,
        },
    )


class Sampler:
    """
    Produces samples from a collector and publishes them to subscribers.

    Attributes:
        history: Ring buffer of the most recent ``history_size`` samples
        samples_taken: Total samples produced since creation
        publish_failures: Subscriber invocations that raised
    """

    def __init__(
        self,
        config: SamplerConfig,
        collector: MemoryCollector,
        events: Optional[EventReporter] = None,
    ):
        self.config = config
        self.collector = collector
        self.events = events
        self.history: Deque[MemorySample] = deque(maxlen=config.history_size)
        self.samples_taken = 0
        self.publish_failures = 0
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def sample(self, session_id: Optional[str] = None) -> MemorySample:
        """
        Take one sample, record it and publish it.

        Args:
            session_id: Session to attribute the sample to; defaults to the
                configured sampler session

        Returns:
            The new sample
        """
        sample = self.collector.collect()
        with self._lock:
            self.history.append(sample)
            self.samples_taken += 1
        self.publish(session_id or self.config.session_id, sample)
        return sample

    def publish(self, session_id: str, sample: MemorySample) -> int:
        """Deliver ``sample`` to every subscriber. Returns the number that succeeded."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber(session_id, sample)
                delivered += 1
            except Exception as e:
                with self._lock:
                    self.publish_failures += 1
                if self.events is not None:
                    self.events.report_error(
                        e, "sampler", "publish", EventType.SUBSCRIBER_ERROR, session_id=session_id
                    )
                else:
                    logger.error(f"Sample subscriber {subscriber!r} failed: {e}")
        return delivered

    def get_history(self, limit: Optional[int] = None) -> List[MemorySample]:
        with self._lock:
            history = list(self.history)
        return history[-limit:] if limit else history

    def trends(self) -> Dict[str, Any]:
        """
        Compare the mean rss of the last 10 samples with the 10 before.

        Confidence is the stability (1 - coefficient of variation) of the
        recent window.
        """
        history = self.get_history()
        if len(history) < 2 * TREND_WINDOW:
            return {"insufficient_data": True, "samples": len(history)}

        recent = [s.process.rss for s in history[-TREND_WINDOW:]]
        older = [s.process.rss for s in history[-2 * TREND_WINDOW:-TREND_WINDOW]]
        recent_avg = mean(recent)
        older_avg = mean(older)
        rate = (recent_avg - older_avg) / older_avg if older_avg > 0 else 0.0
        if recent_avg > older_avg:
            direction = "increasing"
        elif recent_avg < older_avg:
            direction = "decreasing"
        else:
            direction = "stable"
        return {"direction": direction, "rate": rate, "confidence": stability(recent)}

    def export_history(self, path: Union[str, Path], fmt: str = "csv") -> Path:
        """Write the history to ``path`` as CSV or Parquet."""
        fmt = validate_enum_choice(fmt, ["csv", "parquet"], "fmt")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = samples_to_frame(self.get_history())
        if fmt == "csv":
            df.write_csv(path)
        else:
            df.write_parquet(path)
        logger.info(f"Exported {df.height} samples to {path}")
        return path

    def status(self) -> Dict[str, Any]:
        with self._lock:
            latest = self.history[-1] if self.history else None
            history_len = len(self.history)
            subscriber_count = len(self._subscribers)
        return {
            "enabled": self.config.enabled,
            "interval_seconds": self.config.interval_seconds,
            "samples_taken": self.samples_taken,
            "history_size": history_len,
            "history_capacity": self.config.history_size,
            "subscribers": subscriber_count,
            "publish_failures": self.publish_failures,
            "latest": latest.to_dict() if latest is not None else None,
            **self.collector.describe(),
        }
