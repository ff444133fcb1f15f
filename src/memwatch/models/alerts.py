"""
Alert data structures.

Alerts are created only by ``AlertManager`` and mutated only by its
acknowledge/resolve operations.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AlertType(str, Enum):
    SYSTEM_MEMORY = "system_memory"
    HEAP_PRESSURE = "heap_pressure"
    MEMORY_FRAGMENTATION = "memory_fragmentation"
    MEMORY_LEAK = "memory_leak"


class AlertLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def escalated(self, ceiling: "AlertLevel") -> "AlertLevel":
        """Next level up, never beyond ``ceiling``."""
        order = [AlertLevel.WARNING, AlertLevel.CRITICAL, AlertLevel.EMERGENCY]
        next_level = order[min(self.rank + 1, len(order) - 1)]
        return next_level if next_level.rank <= ceiling.rank else self


_LEVEL_RANK = {AlertLevel.WARNING: 0, AlertLevel.CRITICAL: 1, AlertLevel.EMERGENCY: 2}


class AlertState(str, Enum):
    """Per-(type, level) delivery state."""
    IDLE = "idle"
    TRIGGERED = "triggered"
    COOLDOWN = "cooldown"


@dataclass
class Alert:
    """A threshold crossing that escaped cooldown."""

    id: str
    type: AlertType
    level: AlertLevel
    timestamp: float
    payload: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    actions: List[str] = field(default_factory=list)
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[float] = None
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[float] = None
    resolution: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.type.value}_{self.level.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "level": self.level.value,
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
            "payload": dict(self.payload),
            "actions": list(self.actions),
            "acknowledged": self.acknowledged,
            "acknowledgedBy": self.acknowledged_by,
            "acknowledgedAt": self.acknowledged_at,
            "resolved": self.resolved,
            "resolvedBy": self.resolved_by,
            "resolvedAt": self.resolved_at,
            "resolution": self.resolution,
        }
