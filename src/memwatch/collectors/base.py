"""
Defines the abstract interface for memory collectors.

A collector turns one observation of the monitored process and the host into
a ``MemorySample``. The Sampler owns scheduling, history and fan-out; the
collector only reads numbers.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from ..models.samples import MemorySample

logger = logging.getLogger(__name__)


class MemoryCollector(ABC):
    """
    Abstract base class for memory collectors.

    Implementations must be safe to call from a worker thread, because the
    orchestrator runs ``collect`` in an executor to keep the event loop free.
    """

    @abstractmethod
    def collect(self) -> MemorySample:
        """
        Take one memory observation.

        Returns:
            A fully populated MemorySample
        """

    def describe(self) -> Dict[str, Any]:
        """Static facts about the collector, for status reports."""
        return {"collector": self.__class__.__name__}
