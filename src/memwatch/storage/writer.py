"""
Asynchronous, retrying document writer.

``write`` is the awaitable form: it returns a ``WriteResult`` instead of
raising, after up to ``max_attempts`` attempts each bounded by
``write_timeout_seconds`` and separated by exponential backoff. A final
failure is reported as a warning event; callers keep their in-memory state.

``submit`` is the fire-and-forget form used on the sampling path. It never
blocks: documents go to a bounded queue drained by a background task, or to
a backlog until the writer is started. It is safe to call from worker
threads.
"""

import asyncio
import logging
import threading
import uuid
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Deque, Dict, Optional, Tuple

from ..models.config import StorageConfig
from ..validation import ErrorSeverity, EventReporter, EventType, PersistenceError, retry_async
from .base import DataStorage

logger = logging.getLogger(__name__)

PendingWrite = Tuple[str, str, Dict[str, Any]]


@dataclass(frozen=True)
class WriteResult:
    collection: str
    document_id: str
    success: bool
    attempts: int
    path: Optional[Path] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "documentId": self.document_id,
            "success": self.success,
            "attempts": self.attempts,
            "path": str(self.path) if self.path is not None else None,
            "error": self.error,
        }


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, PersistenceError):
        return error.retryable
    return True


class AsyncPersistenceWriter:
    """
    Background writer for checkpoints, reports, dumps and recommendations.

    Attributes:
        completed: Documents written successfully
        failed: Documents given up on after retries
        dropped: Documents rejected because the queue was full
    """

    def __init__(
        self,
        storage: DataStorage,
        config: StorageConfig,
        events: Optional[EventReporter] = None,
        executor: Optional[Executor] = None,
    ):
        self.storage = storage
        self.config = config
        self.events = events
        self.executor = executor
        self.completed = 0
        self.failed = 0
        self.dropped = 0
        self.recent_results: Deque[WriteResult] = deque(maxlen=100)
        self._backlog: Deque[PendingWrite] = deque()
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        with self._lock:
            backlog = len(self._backlog)
        return backlog + (self._queue.qsize() if self._queue is not None else 0)

    async def write(
        self,
        collection: str,
        document: Dict[str, Any],
        document_id: Optional[str] = None,
    ) -> WriteResult:
        """
        Write one document with bounded retries.

        Returns:
            WriteResult describing the outcome; never raises for write failures
        """
        document_id = document_id or str(document.get("id") or uuid.uuid4())
        loop = asyncio.get_running_loop()
        attempts = 0

        async def attempt():
            nonlocal attempts
            attempts += 1
            return await loop.run_in_executor(
                self.executor, self.storage.write_document, collection, document_id, document
            )

        try:
            path = await retry_async(
                attempt,
                max_attempts=self.config.max_attempts,
                backoff_base=self.config.backoff_base_seconds,
                timeout=self.config.write_timeout_seconds,
                context=f"write {collection}/{document_id}",
                should_retry=_is_retryable,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = WriteResult(collection, document_id, False, attempts, error=str(e) or type(e).__name__)
            with self._lock:
                self.failed += 1
                self.recent_results.append(result)
            self._report(
                e, f"write:{collection}", document_id=document_id, attempts=attempts
            )
            return result

        result = WriteResult(collection, document_id, True, attempts, path=path)
        with self._lock:
            self.completed += 1
            self.recent_results.append(result)
        return result

    def submit(self, collection: str, document: Dict[str, Any], document_id: Optional[str] = None) -> str:
        """
        Queue a document for background writing without blocking.

        Returns:
            The document id the write will use
        """
        document_id = document_id or str(document.get("id") or uuid.uuid4())
        item = (collection, document_id, document)

        with self._lock:
            if not self._running or self._loop is None:
                if len(self._backlog) >= self.config.queue_size:
                    self.dropped += 1
                    dropped = True
                else:
                    self._backlog.append(item)
                    dropped = False
                loop = None
            else:
                loop = self._loop
                dropped = False

        if dropped:
            self._report_drop(collection, document_id)
            return document_id
        if loop is None:
            return document_id

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._enqueue(item)
        else:
            loop.call_soon_threadsafe(self._enqueue, item)
        return document_id

    def _enqueue(self, item: PendingWrite) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            with self._lock:
                self.dropped += 1
            self._report_drop(item[0], item[1])

    async def start(self) -> None:
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.config.queue_size)
        with self._lock:
            self._running = True
            backlog = list(self._backlog)
            self._backlog.clear()
        for item in backlog:
            self._enqueue(item)
        self._task = asyncio.create_task(self._run(), name="memwatch-persistence-writer")
        logger.info(f"Persistence writer started ({len(backlog)} documents from backlog)")

    async def _run(self) -> None:
        while True:
            collection, document_id, document = await self._queue.get()
            try:
                await self.write(collection, document, document_id)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued document has been written or given up on."""
        if self._queue is not None and self._running:
            await self._queue.join()

    async def stop(self, grace_seconds: float = 5.0) -> bool:
        """
        Stop accepting documents and drain the queue for up to ``grace_seconds``.

        Returns:
            True if every queued document was processed within the grace period
        """
        if not self._running:
            return True
        with self._lock:
            self._running = False

        drained = True
        try:
            await asyncio.wait_for(self._queue.join(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            drained = False
            remaining = self._queue.qsize()
            self._report(
                TimeoutError(f"{remaining} documents not written within {grace_seconds}s"),
                "drain",
                event_type=EventType.SHUTDOWN_ERROR,
                remaining=remaining,
            )

        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info(
            f"Persistence writer stopped: {self.completed} written, {self.failed} failed, "
            f"{self.dropped} dropped"
        )
        return drained

    def _report_drop(self, collection: str, document_id: str) -> None:
        self._report(
            PersistenceError("Write queue full", collection=collection, document_id=document_id),
            f"submit:{collection}",
            document_id=document_id,
        )

    def _report(
        self,
        error: BaseException,
        operation: str,
        event_type: EventType = EventType.PERSISTENCE_ERROR,
        **details: Any,
    ) -> None:
        if self.events is not None:
            self.events.report_error(
                error, "persistence", operation, event_type, severity=ErrorSeverity.WARNING, **details
            )
        else:
            logger.warning(f"Persistence {operation} failed: {error}")
