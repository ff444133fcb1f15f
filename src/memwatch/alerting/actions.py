"""
Remediation actions shared by the alert manager and the optimization engine.

Actions are addressed by name so alerts and recommendations can carry them
as plain data. Every action returns an ``ActionResult``; a failing action is
reported on the event channel and never raises into the caller.
"""

import gc
import logging
import threading
import time
import tracemalloc
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import psutil

from ..validation import ErrorSeverity, EventReporter, EventType

logger = logging.getLogger(__name__)

TRACEMALLOC_TOP_LIMIT = 10


@dataclass(frozen=True)
class ActionResult:
    action: str
    success: bool
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "details": dict(self.details),
            "error": self.error,
        }


class RemediationActions:
    """
    Registry of named remediation actions.

    Attributes:
        shutdown_requested: Set by ``emergency_shutdown``; the embedding
            application decides what a controlled shutdown means
    """

    def __init__(
        self,
        dump_sink: Optional[Callable[[Dict[str, Any]], Any]] = None,
        events: Optional[EventReporter] = None,
        pid: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.dump_sink = dump_sink
        self.events = events
        self.shutdown_requested = threading.Event()
        self._process = psutil.Process(pid) if pid is not None else psutil.Process()
        self._clock = clock
        self._cache_clearers: Dict[str, Callable[[], Any]] = {}
        self._shutdown_hooks: List[Callable[[str], Any]] = []
        self._lock = threading.Lock()
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "monitor": self.monitor,
            "force_gc": self.force_gc,
            "clear_caches": self.clear_caches,
            "compact_heap": self.compact_heap,
            "memory_dump": self.memory_dump,
            "create_heap_snapshot": self.create_heap_snapshot,
            "emergency_shutdown": self.emergency_shutdown,
        }

    @property
    def available(self) -> List[str]:
        return sorted(self._handlers)

    def register_cache(self, name: str, clear: Callable[[], Any]) -> None:
        """Register a cache to be emptied by ``clear_caches``."""
        with self._lock:
            self._cache_clearers[name] = clear

    def unregister_cache(self, name: str) -> None:
        with self._lock:
            self._cache_clearers.pop(name, None)

    def register_shutdown_hook(self, hook: Callable[[str], Any]) -> None:
        with self._lock:
            self._shutdown_hooks.append(hook)

    def current_rss(self) -> float:
        return float(self._process.memory_info().rss)

    def execute(self, action: str, context: Optional[Dict[str, Any]] = None) -> ActionResult:
        handler = self._handlers.get(action)
        if handler is None:
            return ActionResult(action, False, error=f"Unknown action: {action}")
        try:
            details = handler(dict(context or {}))
        except Exception as e:
            if self.events is not None:
                self.events.report_error(e, "actions", action, EventType.ACTION_ERROR)
            else:
                logger.error(f"Remediation action {action} failed: {e}")
            return ActionResult(action, False, error=str(e))
        return ActionResult(action, True, details)

    def execute_all(self, actions: Sequence[str], context: Optional[Dict[str, Any]] = None) -> List[ActionResult]:
        return [self.execute(action, context) for action in actions]

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def monitor(self, context: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Monitoring memory condition: {context.get('reason', 'threshold crossed')}")
        return {}

    def force_gc(self, context: Dict[str, Any]) -> Dict[str, Any]:
        before = self.current_rss()
        collected = gc.collect()
        after = self.current_rss()
        logger.info(f"Forced garbage collection: {collected} objects, rss {before:.0f} -> {after:.0f}")
        return {"collected": collected, "freed_bytes": before - after}

    def compact_heap(self, context: Dict[str, Any]) -> Dict[str, Any]:
        before = self.current_rss()
        collected = gc.collect(2)
        after = self.current_rss()
        return {"collected": collected, "freed_bytes": before - after}

    def clear_caches(self, context: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            clearers = dict(self._cache_clearers)
        cleared = []
        failed = []
        for name, clear in clearers.items():
            try:
                clear()
                cleared.append(name)
            except Exception as e:
                failed.append(name)
                if self.events is not None:
                    self.events.report_error(e, "actions", "clear_caches", EventType.ACTION_ERROR, cache=name)
                else:
                    logger.error(f"Clearing cache {name} failed: {e}")
        if failed and not cleared:
            raise RuntimeError(f"All cache clearers failed: {', '.join(failed)}")
        return {"cleared": cleared, "failed": failed}

    def memory_dump(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """Capture process, system, gc and (when tracing) allocation state."""
        document = {
            "id": str(uuid.uuid4()),
            "timestamp": self._clock(),
            "reason": context.get("reason", "manual"),
            "sessionId": context.get("session_id"),
            "process": self._process.memory_info()._asdict(),
            "system": psutil.virtual_memory()._asdict(),
            "gc": {"counts": list(gc.get_count()), "stats": gc.get_stats()},
            "tracemalloc": _top_allocations() if tracemalloc.is_tracing() else None,
        }
        if self.dump_sink is not None:
            self.dump_sink(document)
        logger.warning(f"Memory dump {document['id']} captured ({document['reason']})")
        return {"dump_id": document["id"]}

    def create_heap_snapshot(self, context: Dict[str, Any]) -> Dict[str, Any]:
        if not tracemalloc.is_tracing():
            tracemalloc.start()
            logger.info("Started tracemalloc; allocation snapshots available from the next dump")
            return {"tracing_started": True, "top": []}
        return {"tracing_started": False, "top": _top_allocations()}

    def emergency_shutdown(self, context: Dict[str, Any]) -> Dict[str, Any]:
        reason = context.get("reason", "emergency memory condition")
        self.shutdown_requested.set()
        if self.events is not None:
            self.events.report(
                EventType.SHUTDOWN_REQUESTED,
                "actions",
                "emergency_shutdown",
                message=f"Controlled shutdown requested: {reason}",
                severity=ErrorSeverity.CRITICAL,
                session_id=context.get("session_id"),
            )
        else:
            logger.critical(f"Controlled shutdown requested: {reason}")

        with self._lock:
            hooks = list(self._shutdown_hooks)
        notified = 0
        for hook in hooks:
            try:
                hook(reason)
                notified += 1
            except Exception as e:
                logger.error(f"Shutdown hook {hook!r} failed: {e}")
        return {"hooks_notified": notified}


def _top_allocations(limit: int = TRACEMALLOC_TOP_LIMIT) -> List[Dict[str, Any]]:
    snapshot = tracemalloc.take_snapshot()
    return [
        {"location": str(stat.traceback), "size": stat.size, "count": stat.count}
        for stat in snapshot.statistics("lineno")[:limit]
    ]
