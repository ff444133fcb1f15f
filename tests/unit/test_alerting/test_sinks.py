"""
Unit tests for the alert sinks.
"""

import json
import logging
from unittest.mock import Mock

import pytest

from memwatch.alerting import CallbackAlertSink, JsonlAlertSink, LoggingAlertSink
from memwatch.models import Alert, AlertLevel, AlertType


def make_alert(index=0, level=AlertLevel.CRITICAL):
    return Alert(
        id=f"alert-{index}",
        type=AlertType.SYSTEM_MEMORY,
        level=level,
        timestamp=1_700_000_000.0 + index,
        payload={"message": f"crossing {index}"},
        session_id="s1",
    )


@pytest.mark.unit
class TestJsonlAlertSink:
    """Test cases for the JSON lines sink."""

    def test_lines_written_in_order(self, temp_dir):
        """Test each alert becomes one JSON line, in emission order."""
        path = temp_dir / "logs" / "alerts.jsonl"
        sink = JsonlAlertSink(path)
        for i in range(5):
            sink.deliver(make_alert(i))
        sink.flush()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["id"] for line in lines] == [f"alert-{i}" for i in range(5)]
        sink.close()
        assert sink.written == 5
        assert sink.failed == 0

    def test_deliver_after_close_is_dropped(self, temp_dir):
        """Test alerts delivered after close are not written."""
        path = temp_dir / "alerts.jsonl"
        sink = JsonlAlertSink(path)
        sink.close()
        sink.close()
        sink.deliver(make_alert())
        sink.flush()
        assert not path.exists()

    def test_unwritable_path_counts_failure(self, temp_dir):
        """Test a write that keeps failing is counted, not raised."""
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("x")
        sink = JsonlAlertSink(blocker / "alerts.jsonl", max_attempts=2, retry_delay=0.0)
        sink.deliver(make_alert())
        sink.close()
        assert sink.failed == 1
        assert sink.written == 0


@pytest.mark.unit
class TestOtherSinks:
    """Test cases for the logging and callback sinks."""

    def test_callback_sink(self):
        """Test the callback receives the alert object."""
        callback = Mock()
        alert = make_alert()
        CallbackAlertSink(callback).deliver(alert)
        callback.assert_called_once_with(alert)

    @pytest.mark.parametrize(
        "level,log_level",
        [
            (AlertLevel.WARNING, logging.WARNING),
            (AlertLevel.CRITICAL, logging.ERROR),
            (AlertLevel.EMERGENCY, logging.CRITICAL),
        ],
    )
    def test_logging_sink_levels(self, level, log_level):
        """Test alert levels map onto logging levels."""
        target = Mock(spec=logging.Logger)
        LoggingAlertSink(target).deliver(make_alert(level=level))

        logged_level, message = target.log.call_args[0]
        assert logged_level == log_level
        assert "system_memory" in message
        assert "[session s1]" in message
