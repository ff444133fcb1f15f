"""
Orchestration for the memwatch package.
"""

from .orchestrator import MemoryMonitorOrchestrator, health_rating, utilization_status

__all__ = ["MemoryMonitorOrchestrator", "health_rating", "utilization_status"]
