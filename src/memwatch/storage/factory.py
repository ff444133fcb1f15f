"""
Factory for creating storage instances.
"""

import logging

from ..models.config import StorageConfig
from .base import DataStorage
from .file_storage import FileStorage

logger = logging.getLogger(__name__)


def create_storage(config: StorageConfig) -> DataStorage:
    """
    Create a storage instance for the configured export format.

    Args:
        config: Storage section of the engine configuration

    Returns:
        DataStorage instance

    Raises:
        ValueError: If an unsupported format type is specified
    """
    if config.format not in ("csv", "parquet"):
        raise ValueError(f"Unsupported storage format: {config.format}")
    logger.debug(f"Creating FileStorage at {config.root_dir} with {config.format} exports")
    return FileStorage(
        root_dir=config.root_dir,
        format=config.format,
        compression=config.compression,
        generate_legacy_formats=config.generate_legacy_formats,
    )
