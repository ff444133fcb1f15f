"""
Unit tests for session, phase, checkpoint and alert data structures.
"""

import json

import pytest

from memwatch.models import (
    AlertLevel,
    Checkpoint,
    GrowthPhase,
    Session,
    SessionSnapshot,
    SessionStatus,
)


@pytest.mark.unit
class TestGrowthPhase:
    """Test cases for GrowthPhase."""

    def test_close_fixes_duration_once(self):
        """Test that duration and delta are set once and never changed."""
        phase = GrowthPhase(start_time=100.0, start_memory=1000.0, rate=0.2, type="normal")
        assert phase.is_open

        phase.close(160.0, 1300.0)
        phase.close(500.0, 9999.0)

        assert not phase.is_open
        assert phase.duration == 60.0
        assert phase.memory_delta == 300.0

    def test_round_trip(self):
        """Test the JSON form round-trips."""
        phase = GrowthPhase(100.0, 1000.0, 0.6, "critical", leak_suspected=True)
        assert GrowthPhase.from_dict(phase.to_dict()) == phase


@pytest.mark.unit
class TestSession:
    """Test cases for Session."""

    def test_snapshot_buffer_is_bounded(self, make_sample):
        """Test that the oldest snapshots are evicted beyond max_snapshots."""
        session = Session(id="s1", start_time=0.0, max_snapshots=3)
        for i in range(5):
            session.snapshots.append(SessionSnapshot(make_sample(timestamp=float(i)), 0.5))

        assert session.snapshot_count == 3
        assert session.snapshots[0].timestamp == 2.0
        assert session.latest.timestamp == 4.0

    def test_duration_follows_last_activity(self):
        """Test duration is last activity minus start."""
        session = Session(id="s1", start_time=100.0)
        assert session.duration == 0.0
        session.last_activity = 160.0
        assert session.duration == 60.0

    def test_json_round_trip_preserves_growth(self, make_sample):
        """Test that snapshot count, total growth and peak survive JSON."""
        session = Session(id="s1", start_time=0.0, metadata={"job": "build"})
        for i, rss in enumerate([100.0, 120.0, 150.0]):
            session.snapshots.append(
                SessionSnapshot(make_sample(timestamp=float(i), rss_mb=rss), 0.4, 0.2, "normal")
            )
        session.growth.initial_memory = 100.0
        session.growth.total_growth = 0.5
        session.growth.peak_memory = 150.0
        session.growth.phases.append(GrowthPhase(1.0, 120.0, 0.2, "normal"))
        session.checkpoints.append(
            Checkpoint("c1", "s1", 2.0, "manual", None, session.growth.to_dict(), 2.0, 3)
        )
        session.status = SessionStatus.INACTIVE

        restored = Session.from_dict(json.loads(json.dumps(session.to_dict())))

        assert restored.snapshot_count == session.snapshot_count
        assert restored.growth.total_growth == session.growth.total_growth
        assert restored.growth.peak_memory == session.growth.peak_memory
        assert restored.growth.phases == session.growth.phases
        assert restored.status == SessionStatus.INACTIVE
        assert restored.metadata == {"job": "build"}
        assert restored.checkpoints[0].id == "c1"
        assert restored.latest.sample == session.latest.sample


@pytest.mark.unit
class TestAlertLevel:
    """Test cases for alert level ordering."""

    def test_rank_order(self):
        """Test warning < critical < emergency."""
        assert AlertLevel.WARNING.rank < AlertLevel.CRITICAL.rank < AlertLevel.EMERGENCY.rank

    def test_escalation_respects_ceiling(self):
        """Test escalation moves one level up and never past the ceiling."""
        assert AlertLevel.WARNING.escalated(AlertLevel.EMERGENCY) == AlertLevel.CRITICAL
        assert AlertLevel.CRITICAL.escalated(AlertLevel.CRITICAL) == AlertLevel.CRITICAL
        assert AlertLevel.EMERGENCY.escalated(AlertLevel.EMERGENCY) == AlertLevel.EMERGENCY
