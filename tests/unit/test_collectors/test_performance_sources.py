"""
Unit tests for the performance data sources.
"""

import json

import pytest

from memwatch.collectors import (
    NO_PERFORMANCE_DATA,
    InMemoryPerformanceSource,
    JsonFilePerformanceSource,
)


@pytest.mark.unit
class TestInMemoryPerformanceSource:
    """Test cases for InMemoryPerformanceSource."""

    def test_empty(self):
        """Test a session without series reports no data."""
        assert InMemoryPerformanceSource().load("s1") == NO_PERFORMANCE_DATA

    def test_points_and_series(self):
        """Test pushed points and whole series are returned per session."""
        source = InMemoryPerformanceSource()
        source.add_point("s1", "cpuUsage", 1.0, 0.5)
        source.add_point("s1", "cpuUsage", 2, 1)
        source.set_series("s1", "taskCompletion", [3.0, 4.0])

        data = source.load("s1")
        assert data["cpuUsage"] == [
            {"timestamp": 1.0, "value": 0.5},
            {"timestamp": 2.0, "value": 1.0},
        ]
        assert data["taskCompletion"] == [3.0, 4.0]
        assert source.load("s2") == NO_PERFORMANCE_DATA

    def test_clear(self):
        """Test clearing one session or all."""
        source = InMemoryPerformanceSource()
        source.set_series("s1", "a", [1.0])
        source.set_series("s2", "a", [1.0])
        source.clear("s1")
        assert source.load("s1") == NO_PERFORMANCE_DATA
        source.clear()
        assert source.load("s2") == NO_PERFORMANCE_DATA


@pytest.mark.unit
class TestJsonFilePerformanceSource:
    """Test cases for JsonFilePerformanceSource."""

    def test_missing_files(self, temp_dir):
        """Test a directory without metrics reports no data."""
        assert JsonFilePerformanceSource(temp_dir).load("s1") == NO_PERFORMANCE_DATA

    def test_shared_files(self, temp_dir):
        """Test both files are read from the shared directory."""
        (temp_dir / "performance.json").write_text(json.dumps({"completionTimes": [1.5, 2.5]}))
        (temp_dir / "system-metrics.json").write_text(json.dumps([
            {"timestamp": 10.0, "cpuLoad": 0.3},
            {"timestamp": 20.0, "cpuLoad": 0.6},
        ]))

        data = JsonFilePerformanceSource(temp_dir).load("s1")

        assert data["taskCompletion"] == [1.5, 2.5]
        assert data["cpuUsage"] == [
            {"timestamp": 10.0, "value": 0.3},
            {"timestamp": 20.0, "value": 0.6},
        ]

    def test_session_directory_takes_precedence(self, temp_dir):
        """Test a per-session directory overrides the shared files."""
        (temp_dir / "performance.json").write_text(json.dumps({"completionTimes": [1.0]}))
        (temp_dir / "s1").mkdir()
        (temp_dir / "s1" / "performance.json").write_text(json.dumps({"completionTimes": [9.0]}))

        source = JsonFilePerformanceSource(temp_dir)
        assert source.load("s1")["taskCompletion"] == [9.0]
        assert source.load("s2")["taskCompletion"] == [1.0]

    def test_untimed_cpu_entries_are_positional(self, temp_dir):
        """Test cpu entries without timestamps become a bare series."""
        (temp_dir / "system-metrics.json").write_text(json.dumps([{"cpuLoad": 0.1}, {"cpuLoad": 0.2}]))
        assert JsonFilePerformanceSource(temp_dir).load("s1")["cpuUsage"] == [0.1, 0.2]

    def test_malformed_file_ignored(self, temp_dir):
        """Test an unreadable file is skipped rather than raised."""
        (temp_dir / "performance.json").write_text("{not json")
        assert JsonFilePerformanceSource(temp_dir).load("s1") == NO_PERFORMANCE_DATA
