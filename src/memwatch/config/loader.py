"""
Configuration file loading utilities.

Handles the low-level loading and parsing of the TOML configuration file and
turns it into a validated EngineConfig.
"""

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..models.config import EngineConfig
from ..validation import ConfigurationError, ErrorSeverity, handle_config_error
from .validators import validate_engine_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent.parent / "conf" / "config.toml"


def load_toml_file(file_path: Path, description: str = "configuration file") -> Dict[str, Any]:
    """
    Load and parse a TOML file with error handling.

    Args:
        file_path: Path to the TOML file to load
        description: Human-readable description for error messages

    Returns:
        Parsed TOML data as a dictionary

    Raises:
        ConfigurationError: If the file doesn't exist or is malformed
    """
    logger.info(f"Loading {description} from: {file_path}")

    if not file_path.exists():
        logger.error(f"{description} not found: {file_path}")
        raise ConfigurationError(f"{description} not found: {file_path}")

    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        handle_config_error(
            error=ConfigurationError(f"malformed {description} {file_path}: {e}"),
            context=f"parsing {description}",
            severity=ErrorSeverity.CRITICAL,
            reraise=True,
            logger=logger
        )
        raise


def load_config(config_path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load and validate the engine configuration.

    Args:
        config_path: Path to a config.toml; defaults to the repository's conf/config.toml

    Returns:
        Fully validated EngineConfig

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    data = load_toml_file(path, "memwatch configuration file")
    config = validate_engine_config(data)
    logger.info(f"Loaded configuration from {path}")
    return config
