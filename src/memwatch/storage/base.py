"""
Abstract base class for data storage implementations.

Two kinds of data pass through storage:

- Documents (checkpoints, session reports, memory dumps, recommendation
  sets) are JSON objects addressed by collection and id. They are
  write-once: writing the same id twice with identical content is a no-op,
  with different content an error.
- Exports (snapshot series as CSV or Parquet, full session JSON) are plain
  files that may be overwritten.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import polars as pl

PathLike = Union[str, Path]


class DataStorage(ABC):
    """Abstract base class for data storage implementations."""

    @abstractmethod
    def write_document(self, collection: str, document_id: str, document: Dict[str, Any]) -> Path:
        """
        Durably store a JSON document exactly once.

        Args:
            collection: Collection name, e.g. 'checkpoints'
            document_id: Unique id within the collection
            document: JSON-serializable document

        Returns:
            Location of the stored document

        Raises:
            PersistenceError: If the write fails or a different document
                already exists under the same id
        """

    @abstractmethod
    def read_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        """Load a document previously stored with ``write_document``."""

    @abstractmethod
    def list_documents(self, collection: str) -> List[str]:
        """Ids of the documents in ``collection``, oldest first."""

    @abstractmethod
    def save_dataframe(self, df: pl.DataFrame, path: PathLike) -> Path:
        """
        Save a Polars DataFrame to the specified path.

        Args:
            df: Polars DataFrame to save
            path: File path to save to; the suffix selects the format

        Returns:
            The path written
        """

    @abstractmethod
    def load_dataframe(self, path: PathLike, columns: Optional[List[str]] = None) -> pl.DataFrame:
        """
        Load a Polars DataFrame from the specified path.

        Args:
            path: File path to load from
            columns: Optional list of columns to load (for column pruning)
        """

    @abstractmethod
    def save_dict(self, data: Dict[str, Any], path: PathLike) -> Path:
        """Save dictionary data to the specified path, replacing any existing file."""

    @abstractmethod
    def load_dict(self, path: PathLike) -> Dict[str, Any]:
        """Load dictionary data from the specified path."""

    @abstractmethod
    def file_exists(self, path: PathLike) -> bool:
        """Check if a file exists at the specified path."""
