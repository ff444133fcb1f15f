"""
Storage package for memwatch.

Provides the storage interface and its file system implementation, the
asynchronous document writer, and session exports.
"""

from .base import DataStorage
from .exporter import EXPORT_FORMATS, SNAPSHOT_COLUMNS, SessionExporter
from .factory import create_storage
from .file_storage import COLLECTIONS, FileStorage, safe_file_stem
from .writer import AsyncPersistenceWriter, WriteResult

__all__ = [
    "DataStorage",
    "EXPORT_FORMATS",
    "SNAPSHOT_COLUMNS",
    "SessionExporter",
    "create_storage",
    "COLLECTIONS",
    "FileStorage",
    "safe_file_stem",
    "AsyncPersistenceWriter",
    "WriteResult",
]
