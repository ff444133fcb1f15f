"""
Exception taxonomy and error handling helpers.

Only ConfigurationError (and its ValidationError subclass) is meant to be
fatal. Every other error is contained by the component that raised it and
reported through the event channel so the monitor stays available while the
system it watches is unhealthy.
"""

import logging
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for error handling."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class MonitorError(Exception):
    """Base class for all memwatch errors."""


class ConfigurationError(MonitorError):
    """Invalid or missing configuration detected at startup."""


class ValidationError(ConfigurationError):
    """
    Exception raised when a configuration value fails validation.

    Carries the dotted field name and the offending value so callers can
    report exactly which setting is wrong.
    """

    def __init__(self, message: str, field_name: Optional[str] = None,
                 value: Any = None, severity: ErrorSeverity = ErrorSeverity.ERROR):
        super().__init__(message)
        self.field_name = field_name
        self.value = value
        self.severity = severity


class IngestionError(MonitorError):
    """A sample was malformed, out of order, or arrived after shutdown."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class PersistenceError(MonitorError):
    """A checkpoint, report or export could not be written."""

    def __init__(self, message: str, collection: Optional[str] = None,
                 document_id: Optional[str] = None, retryable: bool = True):
        super().__init__(message)
        self.collection = collection
        self.document_id = document_id
        self.retryable = retryable


class ShutdownError(MonitorError):
    """A resource failed to release cleanly during stop()."""


class SessionNotFoundError(MonitorError, KeyError):
    """Raised when an operation names a session that is not registered."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


def handle_error(
    error: Exception,
    context: str,
    severity: Union[ErrorSeverity, str] = ErrorSeverity.ERROR,
    reraise: bool = True,
    logger: Optional[logging.Logger] = None
) -> None:
    """
    Handle errors with consistent logging and optional re-raising.

    Args:
        error: The exception that occurred
        context: Context description of where the error occurred
        severity: Severity level for logging
        reraise: Whether to re-raise the exception after logging
        logger: Logger instance to use (defaults to module logger)
    """
    effective_logger = logger or globals()['logger']

    error_msg = f"Error in {context}: {error}"

    if isinstance(severity, str):
        severity_str = severity.lower()
    else:
        severity_str = severity.value

    if severity_str == "debug":
        effective_logger.debug(error_msg, exc_info=True)
    elif severity_str == "info":
        effective_logger.info(error_msg)
    elif severity_str == "warning":
        effective_logger.warning(error_msg)
    elif severity_str == "error":
        effective_logger.error(error_msg)
    elif severity_str == "critical":
        effective_logger.critical(error_msg, exc_info=True)

    if reraise:
        raise error


def handle_config_error(error: Exception, context: str, **kwargs) -> None:
    """Handle configuration-related errors."""
    handle_error(error, f"config {context}", **kwargs)


def handle_file_error(error: Exception, context: str, **kwargs) -> None:
    """Handle file-related errors."""
    handle_error(error, f"file {context}", **kwargs)
