"""
External performance series used for memory/performance correlation.

A source returns a mapping of series name to points for a session. Points
are either ``{"timestamp": t, "value": v}`` mappings, which the analyzer
aligns to snapshots by nearest timestamp, or bare numbers paired by
position. When nothing is available a source returns
``{"no_performance_data": True}`` rather than raising.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

NO_PERFORMANCE_DATA: Dict[str, Any] = {"no_performance_data": True}


class PerformanceDataSource(ABC):
    """Read-only provider of performance series."""

    @abstractmethod
    def load(self, session_id: str) -> Dict[str, Any]:
        """
        Load the performance series for a session.

        Returns:
            ``{series_name: [points]}`` or ``{"no_performance_data": True}``
        """


class InMemoryPerformanceSource(PerformanceDataSource):
    """Series pushed by the embedding application, keyed by session."""

    def __init__(self):
        self._series: Dict[str, Dict[str, List[Any]]] = {}
        self._lock = threading.Lock()

    def add_point(self, session_id: str, series: str, timestamp: float, value: float) -> None:
        with self._lock:
            points = self._series.setdefault(session_id, {}).setdefault(series, [])
            points.append({"timestamp": float(timestamp), "value": float(value)})

    def set_series(self, session_id: str, series: str, points: Sequence[Any]) -> None:
        with self._lock:
            self._series.setdefault(session_id, {})[series] = list(points)

    def clear(self, session_id: Optional[str] = None) -> None:
        with self._lock:
            if session_id is None:
                self._series.clear()
            else:
                self._series.pop(session_id, None)

    def load(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            series = {name: list(points) for name, points in self._series.get(session_id, {}).items()}
        return series or dict(NO_PERFORMANCE_DATA)


class JsonFilePerformanceSource(PerformanceDataSource):
    """
    Reads ``performance.json`` and ``system-metrics.json`` from a metrics directory.

    ``performance.json`` holds ``{"completionTimes": [...]}``, exposed as the
    ``taskCompletion`` series. ``system-metrics.json`` holds a list of
    ``{"timestamp", "cpuLoad"}`` entries, exposed as ``cpuUsage``. A
    per-session subdirectory, when present, takes precedence over the shared
    files.
    """

    PERFORMANCE_FILE = "performance.json"
    SYSTEM_METRICS_FILE = "system-metrics.json"

    def __init__(self, metrics_dir: Union[str, Path]):
        self.metrics_dir = Path(metrics_dir)

    def load(self, session_id: str) -> Dict[str, Any]:
        base = self.metrics_dir / session_id
        if not base.is_dir():
            base = self.metrics_dir

        series: Dict[str, Any] = {}
        performance = self._read_json(base / self.PERFORMANCE_FILE)
        if isinstance(performance, dict):
            completion_times = performance.get("completionTimes")
            if isinstance(completion_times, list):
                series["taskCompletion"] = completion_times

        system_metrics = self._read_json(base / self.SYSTEM_METRICS_FILE)
        if isinstance(system_metrics, list):
            series["cpuUsage"] = self._cpu_series(system_metrics)

        return series or dict(NO_PERFORMANCE_DATA)

    @staticmethod
    def _cpu_series(entries: List[Any]) -> List[Any]:
        entries = [e for e in entries if isinstance(e, dict)]
        if entries and all("timestamp" in e for e in entries):
            return [{"timestamp": e["timestamp"], "value": e.get("cpuLoad", 0)} for e in entries]
        return [e.get("cpuLoad", 0) for e in entries]

    @staticmethod
    def _read_json(path: Path) -> Any:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable performance file {path}: {e}")
            return None
