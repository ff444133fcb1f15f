"""
Memory collector implementation using the 'psutil' library.

Process memory comes from ``memory_info()`` and, where the platform and
permissions allow it, ``memory_full_info()``. USS (memory unique to the
process) stands in for the live heap: the gap between RSS and USS is shared
or mapped memory the process holds but does not actively own, which is what
the fragmentation score measures.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import psutil

from ..models.samples import MemorySample
from .base import MemoryCollector

logger = logging.getLogger(__name__)


class PsutilMemoryCollector(MemoryCollector):
    """
    Collects process and system memory for a single process via psutil.

    Attributes:
        pid: Process being observed (defaults to the current process)
        fragmentation_threshold: Score above which fragmentation is 'high'
    """

    def __init__(
        self,
        pid: Optional[int] = None,
        fragmentation_threshold: float = 0.3,
        clock: Callable[[], float] = time.time,
    ):
        self.pid = pid if pid is not None else os.getpid()
        self.fragmentation_threshold = fragmentation_threshold
        self._clock = clock
        self._process = psutil.Process(self.pid)
        self._full_info_available = True
        logger.info(f"Initializing PsutilMemoryCollector for PID {self.pid}")

    def collect(self) -> MemorySample:
        mem_info = self._process.memory_info()
        rss = float(mem_info.rss)
        heap_used = min(self._unique_set_size(rss), rss)
        # 'shared' is only reported on Linux
        external = float(getattr(mem_info, "shared", 0) or 0)

        vm = psutil.virtual_memory()
        return MemorySample.build(
            timestamp=self._clock(),
            rss=rss,
            heap_used=heap_used,
            heap_total=rss,
            system_total=float(vm.total),
            system_used=float(vm.total - vm.available),
            system_available=float(vm.available),
            external=external,
            fragmentation_threshold=self.fragmentation_threshold,
        )

    def _unique_set_size(self, rss: float) -> float:
        if not self._full_info_available:
            return rss
        try:
            full_info = self._process.memory_full_info()
        except (psutil.AccessDenied, NotImplementedError) as e:
            logger.warning(f"memory_full_info unavailable for PID {self.pid}, using RSS: {e}")
            self._full_info_available = False
            return rss
        uss = getattr(full_info, "uss", None)
        return float(uss) if uss is not None else rss

    def describe(self) -> Dict[str, Any]:
        return {
            "collector": self.__class__.__name__,
            "pid": self.pid,
            "uss_available": self._full_info_available,
        }
