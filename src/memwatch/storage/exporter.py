"""
Session export to flat files and JSON.

The flat export has one row per snapshot with the columns::

    timestamp, rss, heapUsed, heapUtilization, fragmentation,
    memoryEfficiency, growthRate, growthPhase

The JSON export is ``Session.to_dict()`` and can be loaded back with
``load_session`` without recomputing any growth statistics.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import polars as pl

from ..models.session import Session
from ..validation import validate_enum_choice
from .base import DataStorage
from .file_storage import safe_file_stem

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = (
    "timestamp",
    "rss",
    "heapUsed",
    "heapUtilization",
    "fragmentation",
    "memoryEfficiency",
    "growthRate",
    "growthPhase",
)

EXPORT_FORMATS = ["json", "csv", "parquet"]


class SessionExporter:
    """Writes sessions through a ``DataStorage`` backend."""

    def __init__(self, storage: DataStorage, export_dir: Union[str, Path]):
        self.storage = storage
        self.export_dir = Path(export_dir)

    @staticmethod
    def to_frame(session: Session) -> pl.DataFrame:
        with session.lock:
            snapshots = list(session.snapshots)
        return pl.DataFrame(
            {
                "timestamp": [s.sample.timestamp for s in snapshots],
                "rss": [s.sample.process.rss for s in snapshots],
                "heapUsed": [s.sample.process.heap_used for s in snapshots],
                "heapUtilization": [s.sample.process.heap_utilization for s in snapshots],
                "fragmentation": [s.sample.fragmentation.score for s in snapshots],
                "memoryEfficiency": [s.memory_efficiency for s in snapshots],
                "growthRate": [s.growth_rate for s in snapshots],
                "growthPhase": [s.growth_phase for s in snapshots],
            },
            schema={
                "timestamp": pl.Float64,
                "rss": pl.Float64,
                "heapUsed": pl.Float64,
                "heapUtilization": pl.Float64,
                "fragmentation": pl.Float64,
                "memoryEfficiency": pl.Float64,
                "growthRate": pl.Float64,
                "growthPhase": pl.Utf8,
            },
        )

    def export(self, session: Session, fmt: str = "json", path: Optional[Union[str, Path]] = None) -> Path:
        """
        Export ``session`` as json, csv or parquet.

        Args:
            session: Session to export
            fmt: Output format
            path: Destination; defaults to ``<export_dir>/<session id>.<fmt>``
                with the id reduced to a safe file name

        Returns:
            The path written
        """
        fmt = validate_enum_choice(fmt, EXPORT_FORMATS, "fmt", case_sensitive=False)
        target = Path(path) if path is not None else self.export_dir / f"{safe_file_stem(session.id)}.{fmt}"

        if fmt == "json":
            with session.lock:
                document = session.to_dict()
            written = self.storage.save_dict(document, target)
        else:
            written = self.storage.save_dataframe(self.to_frame(session), target.with_suffix(f".{fmt}"))
        logger.info(f"Exported session {session.id} as {fmt} to {written}")
        return written

    def load_session(self, path: Union[str, Path]) -> Session:
        return Session.from_dict(self.storage.load_dict(path))
