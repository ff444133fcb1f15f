"""
File system storage implementation using Polars for tabular exports.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import polars as pl

from ..validation import PersistenceError
from .base import DataStorage, PathLike

logger = logging.getLogger(__name__)

COLLECTIONS = ("checkpoints", "reports", "sessions", "dumps", "recommendations")

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


def safe_file_stem(name: str) -> str:
    """Map an arbitrary id to a file name stem that cannot leave its directory."""
    return _UNSAFE_CHARS.sub("_", name).lstrip("._-") or "session"


class FileStorage(DataStorage):
    """
    Stores documents as JSON files and frames as CSV or Parquet.

    Layout under ``root_dir``::

        <collection>/<document_id>.json   write-once documents
        exports/                          snapshot and session exports

    A document is first written to a temporary file and then hard-linked
    into place, so a crashed write never leaves a truncated document behind
    and the final link fails if the id is already taken.
    """

    def __init__(
        self,
        root_dir: PathLike,
        format: Literal["csv", "parquet"] = "csv",
        compression: Literal["snappy", "gzip", "brotli", "lz4", "zstd"] = "snappy",
        generate_legacy_formats: bool = False,
    ):
        self.root_dir = Path(root_dir)
        self.format = format
        self.compression = compression
        self.generate_legacy_formats = generate_legacy_formats
        logger.debug(f"Initialized FileStorage at {self.root_dir} ({format}, {compression})")

    @property
    def exports_dir(self) -> Path:
        return self.root_dir / "exports"

    def document_path(self, collection: str, document_id: str) -> Path:
        for name, value in (("collection", collection), ("document id", document_id)):
            if not _SAFE_NAME.match(value):
                raise PersistenceError(
                    f"Invalid {name} {value!r}", collection=collection,
                    document_id=document_id, retryable=False,
                )
        return self.root_dir / collection / f"{document_id}.json"

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def write_document(self, collection: str, document_id: str, document: Dict[str, Any]) -> Path:
        path = self.document_path(collection, document_id)
        try:
            payload = json.dumps(document, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"Document {collection}/{document_id} is not serializable: {e}",
                collection=collection, document_id=document_id, retryable=False,
            ) from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{document_id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.link(tmp_name, path)
            finally:
                os.unlink(tmp_name)
        except FileExistsError:
            existing = path.read_text(encoding="utf-8")
            if existing == payload:
                logger.debug(f"Document {collection}/{document_id} already stored")
                return path
            raise PersistenceError(
                f"Document {collection}/{document_id} already exists with different content",
                collection=collection, document_id=document_id, retryable=False,
            )
        except OSError as e:
            raise PersistenceError(
                f"Failed to write {collection}/{document_id}: {e}",
                collection=collection, document_id=document_id,
            ) from e

        logger.debug(f"Stored document {collection}/{document_id}")
        return path

    def read_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        return self.load_dict(self.document_path(collection, document_id))

    def list_documents(self, collection: str) -> List[str]:
        directory = self.root_dir / collection
        if not directory.is_dir():
            return []
        files = sorted(directory.glob("*.json"), key=lambda p: p.stat().st_mtime)
        return [p.stem for p in files]

    # ------------------------------------------------------------------
    # Frames and exports
    # ------------------------------------------------------------------

    def save_dataframe(self, df: pl.DataFrame, path: PathLike) -> Path:
        path = Path(path)
        if path.suffix not in (".csv", ".parquet"):
            path = path.with_suffix(f".{self.format}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.suffix == ".parquet":
                df.write_parquet(path, compression=self.compression)
                if self.generate_legacy_formats:
                    df.write_csv(path.with_suffix(".csv"))
            else:
                df.write_csv(path)
        except Exception as e:
            logger.error(f"Failed to save DataFrame to {path}: {e}")
            raise
        logger.debug(f"Saved DataFrame with {len(df)} rows to {path}")
        return path

    def load_dataframe(self, path: PathLike, columns: Optional[List[str]] = None) -> pl.DataFrame:
        path = Path(path)
        try:
            if path.suffix == ".parquet":
                return pl.read_parquet(path, columns=columns)
            return pl.read_csv(path, columns=columns)
        except Exception as e:
            logger.error(f"Failed to load DataFrame from {path}: {e}")
            raise

    def save_dict(self, data: Dict[str, Any], path: PathLike) -> Path:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        except Exception as e:
            logger.error(f"Failed to save dictionary to {path}: {e}")
            raise
        logger.debug(f"Saved dictionary data to {path}")
        return path

    def load_dict(self, path: PathLike) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except Exception as e:
            logger.error(f"Failed to load dictionary from {path}: {e}")
            raise

    def file_exists(self, path: PathLike) -> bool:
        return Path(path).exists()
