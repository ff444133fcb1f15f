"""Optimization recommendation data structures."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

RISK_LEVELS = ("low", "medium", "high")
PRIORITIES = ("critical", "high", "medium", "low")
URGENCIES = ("immediate", "urgent", "moderate", "low")
IMPACTS = ("high", "medium", "low", "none")


@dataclass(frozen=True)
class RecommendationAction:
    """One concrete step of a recommendation."""

    type: str
    description: str
    automated: bool
    estimated_impact: str = "medium"
    implementation_time: str = "immediate"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Recommendation:
    """
    A ranked, risk-annotated remediation proposal.

    Recommendations are never mutated; each analysis pass produces a new
    list that supersedes the previous one.
    """

    id: str
    type: str
    priority: str
    urgency: str
    title: str
    description: str
    risk_level: str
    reversible: bool
    actions: List[RecommendationAction] = field(default_factory=list)
    estimated_impact: str = "medium"
    created_at: float = 0.0
    priority_score: float = 0.0
    impact_score: float = 0.0
    risk_score: float = 0.0
    session_id: Optional[str] = None

    @property
    def automated(self) -> bool:
        return any(action.automated for action in self.actions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "urgency": self.urgency,
            "title": self.title,
            "description": self.description,
            "riskLevel": self.risk_level,
            "reversible": self.reversible,
            "automated": self.automated,
            "estimatedImpact": self.estimated_impact,
            "actions": [a.to_dict() for a in self.actions],
            "createdAt": self.created_at,
            "priorityScore": self.priority_score,
            "impactScore": self.impact_score,
            "riskScore": self.risk_score,
            "sessionId": self.session_id,
        }


@dataclass(frozen=True)
class OptimizationOutcome:
    """What happened when a recommendation was auto-applied."""

    recommendation_id: str
    recommendation_type: str
    priority: str
    success: bool
    timestamp: float
    impact_bytes: float = 0.0
    actions: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendationId": self.recommendation_id,
            "type": self.recommendation_type,
            "priority": self.priority,
            "success": self.success,
            "timestamp": self.timestamp,
            "impactBytes": self.impact_bytes,
            "actions": list(self.actions),
            "errors": list(self.errors),
        }
