"""
Session data structures.

A Session is the only mutable, broadly shared structure in the engine. It is
created and mutated exclusively by ``SessionAnalyzer`` while holding the
session's own lock; everything handed out to callers is either immutable
(Checkpoint) or a plain-dict copy.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from .samples import MemorySample

PHASE_TYPES = ("stable", "normal", "concerning", "critical", "shrinking")
PROBLEMATIC_PHASES = ("concerning", "critical")


class SessionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ANALYZED = "analyzed"


@dataclass
class GrowthPhase:
    """
    A contiguous interval with a roughly constant growth rate.

    ``duration`` and ``memory_delta`` stay None while the phase is open and
    are fixed once when the next phase opens.
    """

    start_time: float
    start_memory: float
    rate: float
    type: str
    duration: Optional[float] = None
    memory_delta: Optional[float] = None
    leak_suspected: bool = False

    @property
    def is_open(self) -> bool:
        return self.duration is None

    def close(self, timestamp: float, memory: float) -> None:
        if self.duration is None:
            self.duration = max(0.0, timestamp - self.start_time)
            self.memory_delta = memory - self.start_memory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startTime": self.start_time,
            "startMemory": self.start_memory,
            "rate": self.rate,
            "type": self.type,
            "duration": self.duration,
            "memoryDelta": self.memory_delta,
            "leakSuspected": self.leak_suspected,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrowthPhase":
        return cls(
            start_time=float(data["startTime"]),
            start_memory=float(data["startMemory"]),
            rate=float(data["rate"]),
            type=str(data["type"]),
            duration=data.get("duration"),
            memory_delta=data.get("memoryDelta"),
            leak_suspected=bool(data.get("leakSuspected", False)),
        )


@dataclass
class GrowthAnalysis:
    """Running growth statistics for one session."""

    initial_memory: Optional[float] = None
    total_growth: float = 0.0
    peak_memory: float = 0.0
    avg_growth_rate: float = 0.0
    rate_sum: float = 0.0
    rate_count: int = 0
    phases: List[GrowthPhase] = field(default_factory=list)

    @property
    def current_phase(self) -> Optional[GrowthPhase]:
        return self.phases[-1] if self.phases else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialMemory": self.initial_memory,
            "totalGrowth": self.total_growth,
            "peakMemory": self.peak_memory,
            "avgGrowthRate": self.avg_growth_rate,
            "rateSum": self.rate_sum,
            "rateCount": self.rate_count,
            "phases": [p.to_dict() for p in self.phases],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrowthAnalysis":
        initial = data.get("initialMemory")
        return cls(
            initial_memory=float(initial) if initial is not None else None,
            total_growth=float(data.get("totalGrowth", 0.0)),
            peak_memory=float(data.get("peakMemory", 0.0)),
            avg_growth_rate=float(data.get("avgGrowthRate", 0.0)),
            rate_sum=float(data.get("rateSum", 0.0)),
            rate_count=int(data.get("rateCount", 0)),
            phases=[GrowthPhase.from_dict(p) for p in data.get("phases", [])],
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """A sample as recorded in a session, with the values derived on arrival."""

    sample: MemorySample
    memory_efficiency: float
    growth_rate: Optional[float] = None
    growth_phase: Optional[str] = None

    @property
    def timestamp(self) -> float:
        return self.sample.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample": self.sample.to_dict(),
            "memoryEfficiency": self.memory_efficiency,
            "growthRate": self.growth_rate,
            "growthPhase": self.growth_phase,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            sample=MemorySample.from_dict(data["sample"]),
            memory_efficiency=float(data.get("memoryEfficiency", 0.0)),
            growth_rate=data.get("growthRate"),
            growth_phase=data.get("growthPhase"),
        )


@dataclass(frozen=True)
class Checkpoint:
    """A durable snapshot of a session's state at a point in time."""

    id: str
    session_id: str
    timestamp: float
    reason: str
    memory_state: Optional[Dict[str, Any]]
    growth_analysis: Dict[str, Any]
    session_duration: float
    snapshot_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "memoryState": self.memory_state,
            "growthAnalysis": self.growth_analysis,
            "sessionDurationAtCapture": self.session_duration,
            "snapshotCountAtCapture": self.snapshot_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            id=str(data["id"]),
            session_id=str(data["sessionId"]),
            timestamp=float(data["timestamp"]),
            reason=str(data.get("reason", "manual")),
            memory_state=data.get("memoryState"),
            growth_analysis=dict(data.get("growthAnalysis", {})),
            session_duration=float(data.get("sessionDurationAtCapture", 0.0)),
            snapshot_count=int(data.get("snapshotCountAtCapture", 0)),
        )


@dataclass
class Session:
    """Memory behaviour tracked for one logical unit of work."""

    id: str
    start_time: float
    max_snapshots: int = 1000
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE
    last_activity: Optional[float] = None
    snapshots: Deque[SessionSnapshot] = field(default_factory=deque)
    checkpoints: List[Checkpoint] = field(default_factory=list)
    growth: GrowthAnalysis = field(default_factory=GrowthAnalysis)
    last_report: Optional[Dict[str, Any]] = None
    lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.snapshots, deque) or self.snapshots.maxlen != self.max_snapshots:
            self.snapshots = deque(self.snapshots, maxlen=self.max_snapshots)
        if self.last_activity is None:
            self.last_activity = self.start_time

    @property
    def snapshot_count(self) -> int:
        return len(self.snapshots)

    @property
    def latest(self) -> Optional[SessionSnapshot]:
        return self.snapshots[-1] if self.snapshots else None

    @property
    def duration(self) -> float:
        return max(0.0, (self.last_activity or self.start_time) - self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.start_time,
            "status": self.status.value,
            "lastActivity": self.last_activity,
            "metadata": dict(self.metadata),
            "maxSnapshots": self.max_snapshots,
            "snapshotCount": self.snapshot_count,
            "snapshots": [s.to_dict() for s in self.snapshots],
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "growthAnalysis": self.growth.to_dict(),
            "lastReport": self.last_report,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Rebuild a session from its persisted JSON form without recomputing growth."""
        max_snapshots = int(data.get("maxSnapshots", 1000))
        return cls(
            id=str(data["id"]),
            start_time=float(data["startTime"]),
            max_snapshots=max_snapshots,
            metadata=dict(data.get("metadata", {})),
            status=SessionStatus(data.get("status", SessionStatus.INACTIVE.value)),
            last_activity=data.get("lastActivity"),
            snapshots=deque(
                (SessionSnapshot.from_dict(s) for s in data.get("snapshots", [])),
                maxlen=max_snapshots,
            ),
            checkpoints=[Checkpoint.from_dict(c) for c in data.get("checkpoints", [])],
            growth=GrowthAnalysis.from_dict(data.get("growthAnalysis", {})),
            last_report=data.get("lastReport"),
        )


@dataclass
class SessionReport:
    """
    Result of a full per-session analysis.

    When the session has no snapshots ``insufficient_data`` is True, the
    statistics sections are empty and ``health_score`` is 1.0.
    """

    session_id: str
    generated_at: float
    status: str
    insufficient_data: bool
    snapshot_count: int
    duration: float
    health_score: float
    memory: Dict[str, Any] = field(default_factory=dict)
    growth: Dict[str, Any] = field(default_factory=dict)
    fragmentation: Dict[str, Any] = field(default_factory=dict)
    correlations: Dict[str, Any] = field(default_factory=dict)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "generatedAt": self.generated_at,
            "status": self.status,
            "insufficient_data": self.insufficient_data,
            "snapshotCount": self.snapshot_count,
            "duration": self.duration,
            "healthScore": self.health_score,
            "memory": self.memory,
            "growth": self.growth,
            "fragmentation": self.fragmentation,
            "correlations": self.correlations,
            "recommendations": self.recommendations,
        }


@dataclass
class CrossSessionAnalysis:
    """Patterns across completed sessions."""

    generated_at: float
    session_count: int
    insufficient_data: bool
    average_growth: Optional[float] = None
    common_growth_patterns: Dict[str, float] = field(default_factory=dict)
    duration_correlation: Dict[str, Any] = field(default_factory=dict)
    efficiency: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "sessionCount": self.session_count,
            "insufficient_data": self.insufficient_data,
            "averageGrowth": self.average_growth,
            "commonGrowthPatterns": self.common_growth_patterns,
            "durationCorrelation": self.duration_correlation,
            "efficiency": self.efficiency,
        }
