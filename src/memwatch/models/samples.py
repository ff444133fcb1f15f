"""
Memory sample data structures.

A MemorySample is immutable once created. The wire form (``to_dict`` /
``from_dict``) uses the fixed camelCase JSON shape accepted by ingestion:

    {
      "timestamp": 1700000000.0,
      "process": {"rss", "heapUsed", "heapTotal", "external", "heapUtilization"},
      "system": {"total", "used", "available", "utilization"},
      "fragmentation": {"score", "level"}
    }
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..validation import IngestionError

FRAGMENTATION_LEVELS = ("low", "medium", "high")


def fragmentation_score(rss: float, heap_used: float) -> float:
    """
    Fraction of resident memory not accounted for by the live heap.

    Monotonic in the gap ``rss - heap_used`` for a fixed rss and clamped to
    [0, 1]; a process with no resident memory scores 0.
    """
    if rss <= 0:
        return 0.0
    return min(1.0, max(0.0, (rss - heap_used) / rss))


def fragmentation_level(score: float, threshold: float = 0.3) -> str:
    if score > threshold:
        return "high"
    if score > threshold * 0.5:
        return "medium"
    return "low"


@dataclass(frozen=True)
class ProcessMemory:
    rss: float
    heap_used: float
    heap_total: float
    external: float
    heap_utilization: float


@dataclass(frozen=True)
class SystemMemory:
    total: float
    used: float
    available: float
    utilization: float


@dataclass(frozen=True)
class FragmentationInfo:
    score: float
    level: str


@dataclass(frozen=True)
class MemorySample:
    """A timestamped process + system memory observation."""

    timestamp: float
    process: ProcessMemory
    system: SystemMemory
    fragmentation: FragmentationInfo

    @property
    def rss(self) -> float:
        return self.process.rss

    @classmethod
    def build(
        cls,
        timestamp: float,
        rss: float,
        heap_used: float,
        heap_total: float,
        system_total: float,
        system_used: float,
        system_available: Optional[float] = None,
        external: float = 0.0,
        fragmentation_threshold: float = 0.3,
    ) -> "MemorySample":
        """
        Create a sample from raw byte counts, deriving the ratios.

        ``heap_utilization`` is ``heap_used / heap_total`` and the system
        utilization is ``used / total``; both are 0 when the denominator is 0.
        """
        heap_util = heap_used / heap_total if heap_total > 0 else 0.0
        sys_util = system_used / system_total if system_total > 0 else 0.0
        if system_available is None:
            system_available = max(0.0, system_total - system_used)
        score = fragmentation_score(rss, heap_used)
        return cls(
            timestamp=float(timestamp),
            process=ProcessMemory(
                rss=float(rss),
                heap_used=float(heap_used),
                heap_total=float(heap_total),
                external=float(external),
                heap_utilization=min(1.0, max(0.0, heap_util)),
            ),
            system=SystemMemory(
                total=float(system_total),
                used=float(system_used),
                available=float(system_available),
                utilization=min(1.0, max(0.0, sys_util)),
            ),
            fragmentation=FragmentationInfo(
                score=score,
                level=fragmentation_level(score, fragmentation_threshold),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "process": {
                "rss": self.process.rss,
                "heapUsed": self.process.heap_used,
                "heapTotal": self.process.heap_total,
                "external": self.process.external,
                "heapUtilization": self.process.heap_utilization,
            },
            "system": {
                "total": self.system.total,
                "used": self.system.used,
                "available": self.system.available,
                "utilization": self.system.utilization,
            },
            "fragmentation": {
                "score": self.fragmentation.score,
                "level": self.fragmentation.level,
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], fragmentation_threshold: float = 0.3) -> "MemorySample":
        """
        Parse and validate the ingestion JSON shape.

        ``heapUtilization``, ``system.utilization``, ``system.available`` and
        the whole ``fragmentation`` block are derived when absent.

        Raises:
            IngestionError: If a required field is missing, non-numeric,
                negative, or a ratio lies outside [0, 1]
        """
        if not isinstance(data, Mapping):
            raise IngestionError(f"sample must be a mapping, got {type(data).__name__}")

        timestamp = _number(data, "timestamp", "timestamp")
        process = _section(data, "process")
        system = _section(data, "system")

        rss = _number(process, "rss", "process.rss")
        heap_used = _number(process, "heapUsed", "process.heapUsed")
        heap_total = _number(process, "heapTotal", "process.heapTotal")
        external = _number(process, "external", "process.external", default=0.0)
        if "heapUtilization" in process:
            heap_util = _ratio(process, "heapUtilization", "process.heapUtilization")
        else:
            heap_util = heap_used / heap_total if heap_total > 0 else 0.0
            heap_util = min(1.0, heap_util)

        total = _number(system, "total", "system.total")
        used = _number(system, "used", "system.used")
        if used > total:
            raise IngestionError(f"system.used ({used}) exceeds system.total ({total})")
        available = _number(system, "available", "system.available", default=max(0.0, total - used))
        if "utilization" in system:
            sys_util = _ratio(system, "utilization", "system.utilization")
        else:
            sys_util = used / total if total > 0 else 0.0

        frag = data.get("fragmentation")
        if frag is None:
            score = fragmentation_score(rss, heap_used)
            level = fragmentation_level(score, fragmentation_threshold)
        else:
            if not isinstance(frag, Mapping):
                raise IngestionError("fragmentation must be a mapping")
            score = _ratio(frag, "score", "fragmentation.score")
            level = frag.get("level") or fragmentation_level(score, fragmentation_threshold)
            if level not in FRAGMENTATION_LEVELS:
                raise IngestionError(
                    f"fragmentation.level must be one of {FRAGMENTATION_LEVELS}, got {level!r}"
                )

        return cls(
            timestamp=timestamp,
            process=ProcessMemory(rss, heap_used, heap_total, external, heap_util),
            system=SystemMemory(total, used, available, sys_util),
            fragmentation=FragmentationInfo(score, level),
        )


_MISSING = object()


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = data.get(key)
    if not isinstance(section, Mapping):
        raise IngestionError(f"sample is missing the '{key}' section")
    return section


def _number(data: Mapping[str, Any], key: str, field_name: str, default: Any = _MISSING) -> float:
    value = data.get(key, default)
    if value is _MISSING or value is None:
        raise IngestionError(f"sample is missing required field '{field_name}'")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise IngestionError(f"{field_name} must be numeric, got {value!r}")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise IngestionError(f"{field_name} must be finite, got {value}")
    if value < 0:
        raise IngestionError(f"{field_name} must be non-negative, got {value}")
    return value


def _ratio(data: Mapping[str, Any], key: str, field_name: str) -> float:
    value = _number(data, key, field_name)
    if value > 1.0:
        raise IngestionError(f"{field_name} must be within [0, 1], got {value}")
    return value
