"""
Unit tests for the validation package: validators, retry helpers and the
event channel.
"""

import asyncio
import logging
from unittest.mock import Mock

import pytest

from memwatch.validation import (
    ConfigurationError,
    ErrorSeverity,
    EventReporter,
    EventType,
    IngestionError,
    MonitorError,
    PersistenceError,
    SessionNotFoundError,
    ValidationError,
    backoff_delay,
    handle_error,
    retry_async,
    simple_retry,
    validate_ascending,
    validate_bool,
    validate_enum_choice,
    validate_fraction,
    validate_positive_float,
    validate_positive_integer,
)


@pytest.mark.unit
class TestValidators:
    """Test cases for the scalar validators."""

    def test_positive_integer_accepts_whole_numbers(self):
        """Test that integers and integral floats pass."""
        assert validate_positive_integer(5) == 5
        assert validate_positive_integer(5.0) == 5
        assert validate_positive_integer("7") == 7

    def test_positive_integer_rejects_bool_and_fractions(self):
        """Test that booleans and fractional floats are rejected."""
        with pytest.raises(ValidationError):
            validate_positive_integer(True, field_name="x")
        with pytest.raises(ValidationError, match="whole number"):
            validate_positive_integer(2.5, field_name="x")

    def test_positive_integer_bounds(self):
        """Test min and max bounds."""
        with pytest.raises(ValidationError, match=">= 1"):
            validate_positive_integer(0)
        with pytest.raises(ValidationError, match="<= 10"):
            validate_positive_integer(11, max_value=10)

    def test_positive_float_rejects_nan(self):
        """Test that NaN never passes float validation."""
        with pytest.raises(ValidationError, match="NaN"):
            validate_positive_float(float("nan"), field_name="alerts.system.warning")

    def test_validation_error_carries_field(self):
        """Test that the dotted field name and value are kept on the error."""
        with pytest.raises(ValidationError) as exc_info:
            validate_fraction(1.5, field_name="alerts.system.warning")
        assert exc_info.value.field_name == "alerts.system.warning"
        assert exc_info.value.value == 1.5

    def test_validate_bool_is_strict(self):
        """Test that only real booleans are accepted."""
        assert validate_bool(False) is False
        with pytest.raises(ValidationError):
            validate_bool("true", field_name="alerts.auto_gc")

    def test_enum_choice_normalises_case(self):
        """Test case-insensitive matching returns the canonical spelling."""
        assert validate_enum_choice("JSON", ["json", "csv"], case_sensitive=False) == "json"
        with pytest.raises(ValidationError):
            validate_enum_choice("JSON", ["json", "csv"])

    def test_ascending_thresholds(self):
        """Test tiered thresholds must be strictly increasing."""
        validate_ascending([0.1, 0.2, 0.3], ["warning", "critical", "emergency"], "alerts.heap")
        with pytest.raises(ValidationError) as exc_info:
            validate_ascending([0.5, 0.5, 0.9], ["warning", "critical", "emergency"], "alerts.heap")
        assert exc_info.value.field_name == "alerts.heap.critical"


@pytest.mark.unit
class TestExceptionTaxonomy:
    """Test cases for the exception hierarchy."""

    def test_hierarchy(self):
        """Test that every error derives from MonitorError."""
        assert issubclass(ValidationError, ConfigurationError)
        assert issubclass(ConfigurationError, MonitorError)
        assert issubclass(IngestionError, MonitorError)
        assert issubclass(PersistenceError, MonitorError)
        assert issubclass(SessionNotFoundError, KeyError)

    def test_session_not_found_message(self):
        """Test the message names the session."""
        error = SessionNotFoundError("s-42")
        assert "s-42" in str(error)

    def test_handle_error_reraises(self):
        """Test handle_error logs and re-raises by default."""
        log = Mock(spec=logging.Logger)
        with pytest.raises(ValueError):
            handle_error(ValueError("boom"), "unit test", logger=log)
        log.error.assert_called_once()

    def test_handle_error_without_reraise(self):
        """Test handle_error can just log."""
        log = Mock(spec=logging.Logger)
        handle_error(ValueError("boom"), "unit test", severity="warning", reraise=False, logger=log)
        log.warning.assert_called_once()


@pytest.mark.unit
class TestRetryHelpers:
    """Test cases for simple_retry and retry_async."""

    def test_simple_retry_eventually_succeeds(self):
        """Test that a flaky function succeeds on a later attempt."""
        func = Mock(side_effect=[OSError("busy"), "ok"])
        assert simple_retry(func, max_attempts=3, delay=0) == "ok"
        assert func.call_count == 2

    def test_simple_retry_raises_last_error(self):
        """Test that the last error propagates once attempts run out."""
        func = Mock(side_effect=OSError("down"))
        with pytest.raises(OSError, match="down"):
            simple_retry(func, max_attempts=2, delay=0)
        assert func.call_count == 2

    def test_backoff_delay_doubles(self):
        """Test exponential growth and cap."""
        assert backoff_delay(0, 0.5) == 0.5
        assert backoff_delay(2, 0.5) == 2.0
        assert backoff_delay(5, 0.5, cap=3.0) == 3.0

    @pytest.mark.asyncio
    async def test_retry_async_retries_then_succeeds(self):
        """Test retry_async awaits fresh attempts until one succeeds."""
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise OSError("transient")
            return "done"

        failures = []
        result = await retry_async(
            operation, max_attempts=3, backoff_base=0, on_failure=lambda n, e: failures.append(n)
        )
        assert result == "done"
        assert failures == [1, 2]

    @pytest.mark.asyncio
    async def test_retry_async_stops_on_non_retryable(self):
        """Test that should_retry=False ends retries immediately."""
        calls = []

        async def operation():
            calls.append(1)
            raise PersistenceError("conflict", retryable=False)

        with pytest.raises(PersistenceError):
            await retry_async(
                operation, max_attempts=5, backoff_base=0,
                should_retry=lambda e: getattr(e, "retryable", True),
            )
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_retry_async_times_out_each_attempt(self):
        """Test that each attempt is bounded by the timeout."""

        async def operation():
            await asyncio.sleep(1.0)

        with pytest.raises(asyncio.TimeoutError):
            await retry_async(operation, max_attempts=2, backoff_base=0, timeout=0.01)


@pytest.mark.unit
class TestEventReporter:
    """Test cases for the structured event channel."""

    def test_report_records_and_counts(self):
        """Test that events are kept in history and counted per type."""
        reporter = EventReporter(clock=lambda: 123.0)
        event = reporter.report(
            EventType.INGESTION_ERROR, "orchestrator", "ingest",
            message="bad sample", session_id="s1", field="rss",
        )

        assert event.timestamp == 123.0
        assert event.details == {"field": "rss"}
        summary = reporter.get_summary()
        assert summary["total_events"] == 1
        assert summary["event_counts"] == {"ingestion_error": 1}

    def test_report_error_uses_exception(self):
        """Test the message and exception type come from the error."""
        reporter = EventReporter()
        event = reporter.report_error(
            PersistenceError("disk full"), "persistence", "write", EventType.PERSISTENCE_ERROR
        )
        assert event.message == "disk full"
        assert event.exception_type == "PersistenceError"
        assert event.severity == ErrorSeverity.ERROR

    def test_failing_listener_does_not_block_others(self):
        """Test that one bad listener cannot silence the rest."""
        reporter = EventReporter()
        received = []
        reporter.add_listener(Mock(side_effect=RuntimeError("listener down")))
        reporter.add_listener(received.append)

        reporter.report(EventType.SINK_ERROR, "alert_manager", "deliver")

        assert len(received) == 1

    def test_history_is_bounded(self):
        """Test that history keeps only the most recent events."""
        reporter = EventReporter(max_history_size=3)
        for _ in range(5):
            reporter.report(EventType.ANALYSIS_WARNING, "analyzer", "analyze")
        assert len(reporter.get_recent()) == 3
        assert reporter.get_summary()["total_events"] == 5

    def test_get_recent_filters_by_type(self):
        """Test filtering recent events by type."""
        reporter = EventReporter()
        reporter.report(EventType.ANALYSIS_WARNING, "analyzer", "analyze")
        reporter.report(EventType.LEAK_DETECTED, "leak_detector", "observe")
        recent = reporter.get_recent(event_type=EventType.LEAK_DETECTED)
        assert [e.event_type for e in recent] == [EventType.LEAK_DETECTED]
