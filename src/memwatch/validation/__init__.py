"""
Validation and error handling for the memwatch package.

This module provides the exception taxonomy, configuration validators,
retry helpers and the structured event channel used to report contained
failures.
"""

from .exceptions import (
    ConfigurationError,
    ErrorSeverity,
    IngestionError,
    MonitorError,
    PersistenceError,
    SessionNotFoundError,
    ShutdownError,
    ValidationError,
    handle_config_error,
    handle_error,
    handle_file_error,
)
from .strategies import backoff_delay, retry_async, simple_retry
from .validators import (
    validate_ascending,
    validate_bool,
    validate_enum_choice,
    validate_fraction,
    validate_positive_float,
    validate_positive_integer,
)
from .error_handler import EventReporter, EventType, MonitorEvent

__all__ = [
    "ConfigurationError",
    "ErrorSeverity",
    "IngestionError",
    "MonitorError",
    "PersistenceError",
    "SessionNotFoundError",
    "ShutdownError",
    "ValidationError",
    "handle_config_error",
    "handle_error",
    "handle_file_error",
    "backoff_delay",
    "retry_async",
    "simple_retry",
    "validate_ascending",
    "validate_bool",
    "validate_enum_choice",
    "validate_fraction",
    "validate_positive_float",
    "validate_positive_integer",
    "EventReporter",
    "EventType",
    "MonitorEvent",
]
