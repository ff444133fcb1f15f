"""
Unit tests for the session registry and session analyzer.
"""

import pytest

from memwatch.analysis import SessionAnalyzer, SessionRegistry, memory_efficiency
from memwatch.models import GrowthThresholds, SessionConfig, SessionStatus
from memwatch.validation import IngestionError, SessionNotFoundError

MB = 1024 * 1024
START = 1_700_000_000.0


@pytest.fixture
def analyzer(clock):
    """Session analyzer with default thresholds on a fake clock."""
    return SessionAnalyzer(SessionConfig(), GrowthThresholds(), clock=clock)


def feed(analyzer, session_id, samples):
    for sample in samples:
        analyzer.add_snapshot(session_id, sample)
    return analyzer.registry.get(session_id)


@pytest.mark.unit
class TestSessionRegistry:
    """Test cases for SessionRegistry."""

    def test_get_unknown_raises(self):
        """Test unknown ids raise SessionNotFoundError."""
        registry = SessionRegistry()
        with pytest.raises(SessionNotFoundError):
            registry.get("missing")
        assert registry.find("missing") is None

    def test_get_or_create_is_idempotent(self):
        """Test that a second call returns the same session."""
        registry = SessionRegistry()
        first, created = registry.get_or_create("s1", START)
        second, created_again = registry.get_or_create("s1", START + 10)
        assert created and not created_again
        assert first is second
        assert len(registry) == 1 and "s1" in registry

    def test_cap_evicts_oldest_inactive(self):
        """Test the session cap evicts the oldest non-active session."""
        registry = SessionRegistry(max_sessions=2)
        old, _ = registry.get_or_create("old", START)
        registry.get_or_create("busy", START + 5)
        old.status = SessionStatus.INACTIVE

        registry.get_or_create("new", START + 10)

        assert "old" not in registry
        assert {"busy", "new"} == {s.id for s in registry.sessions()}

    def test_cap_with_all_active_rejects(self):
        """Test that a full registry of active sessions rejects new ones."""
        registry = SessionRegistry(max_sessions=1)
        registry.get_or_create("busy", START)
        with pytest.raises(IngestionError) as exc_info:
            registry.get_or_create("another", START)
        assert exc_info.value.session_id == "another"

    def test_eviction_notifies_callback(self):
        """Test on_evict receives the id of each evicted session."""
        evicted = []
        registry = SessionRegistry(max_sessions=1, on_evict=evicted.append)
        first, _ = registry.get_or_create("first", START)
        first.status = SessionStatus.INACTIVE

        registry.get_or_create("second", START + 10)

        assert evicted == ["first"]

    def test_analyzer_uses_injected_empty_registry(self, clock):
        """Test an empty injected registry is shared rather than replaced."""
        registry = SessionRegistry()
        analyzer = SessionAnalyzer(SessionConfig(), GrowthThresholds(), registry, clock)
        analyzer.register_session("s1")
        assert analyzer.registry is registry
        assert "s1" in registry


@pytest.mark.unit
class TestGrowthTracking:
    """Test cases for snapshot ingestion, growth rates and phases."""

    def test_growth_rate_is_per_rate_period(self, analyzer, make_sample):
        """Test 10% over 75 seconds is 4.8 per hour."""
        rate = analyzer.growth_rate(
            make_sample(timestamp=START, rss_mb=100.0),
            make_sample(timestamp=START + 75.0, rss_mb=110.0),
        )
        assert rate == pytest.approx(4.8)

    def test_growth_rate_without_elapsed_time(self, analyzer, make_sample):
        """Test the per-sample fraction is used when no time elapsed."""
        rate = analyzer.growth_rate(
            make_sample(timestamp=START, rss_mb=100.0), make_sample(timestamp=START, rss_mb=110.0)
        )
        assert rate == pytest.approx(0.1)

    def test_growing_session_has_critical_phase(self, analyzer, growing_samples):
        """Test the 100 -> 146 MB scenario produces a critical phase."""
        session = feed(analyzer, "s1", growing_samples)

        phase_types = [p.type for p in session.growth.phases]
        assert "critical" in phase_types
        assert session.growth.total_growth == pytest.approx(0.46)
        assert session.growth.peak_memory == 146.0 * MB
        assert session.snapshots[0].growth_rate is None
        assert session.snapshots[1].growth_phase == "critical"

    def test_constant_rate_keeps_one_phase(self, analyzer, make_sample):
        """Test that a steady rate never opens another phase."""
        samples = [make_sample(timestamp=START + i * 60.0) for i in range(6)]
        session = feed(analyzer, "s1", samples)

        assert len(session.growth.phases) == 1
        assert session.growth.phases[0].type == "stable"
        assert session.growth.phases[0].is_open

    def test_rate_change_closes_previous_phase(self, analyzer, make_sample):
        """Test the old phase is closed where the new one starts."""
        samples = [
            make_sample(timestamp=START, rss_mb=100.0),
            make_sample(timestamp=START + 60.0, rss_mb=100.0),
            make_sample(timestamp=START + 120.0, rss_mb=100.0),
            make_sample(timestamp=START + 180.0, rss_mb=110.0),
        ]
        session = feed(analyzer, "s1", samples)

        stable, critical = session.growth.phases
        assert stable.duration == 120.0
        assert stable.memory_delta == 10.0 * MB
        assert critical.start_time == START + 180.0
        assert critical.start_memory == 110.0 * MB
        assert critical.is_open

    def test_out_of_order_sample_rejected(self, analyzer, make_sample):
        """Test a sample older than the latest raises IngestionError."""
        analyzer.add_snapshot("s1", make_sample(timestamp=START + 10))
        with pytest.raises(IngestionError):
            analyzer.check_order("s1", make_sample(timestamp=START))
        with pytest.raises(IngestionError):
            analyzer.add_snapshot("s1", make_sample(timestamp=START))
        assert analyzer.registry.get("s1").snapshot_count == 1

    def test_leak_marks_phase(self, analyzer, make_sample):
        """Test a detected leak flags the current phase."""

        class Leak:
            detected = True

        analyzer.add_snapshot("s1", make_sample(timestamp=START))
        analyzer.add_snapshot("s1", make_sample(timestamp=START + 60), Leak())
        assert analyzer.registry.get("s1").growth.phases[-1].leak_suspected

    def test_memory_efficiency(self, make_sample):
        """Test efficiency is headroom minus fragmentation, floored at 0."""
        sample = make_sample(heap_ratio=0.9, system_utilization=0.5)
        # heap util 0.45, system 0.5, fragmentation 0.1
        assert memory_efficiency(sample) == pytest.approx(((0.55 + 0.5) / 2) - 0.1)
        crowded = make_sample(heap_ratio=0.25, heap_total_mb=25.0, system_utilization=1.0)
        assert memory_efficiency(crowded) == 0.0


@pytest.mark.unit
class TestSessionLifecycle:
    """Test cases for registration, timeouts, retention and checkpoints."""

    def test_register_merges_metadata(self, analyzer):
        """Test re-registering merges metadata into the existing session."""
        analyzer.register_session("s1", {"job": "build"})
        session = analyzer.register_session("s1", {"branch": "main"})
        assert session.metadata == {"job": "build", "branch": "main"}

    def test_timeout_marks_inactive_and_sample_reactivates(self, analyzer, clock, make_sample):
        """Test the timeout sweep and reactivation by a new sample."""
        analyzer.add_snapshot("s1", make_sample(timestamp=clock.now))
        assert analyzer.sweep_timeouts(clock.now + 1799) == []
        assert analyzer.sweep_timeouts(clock.now + 1801) == ["s1"]
        assert analyzer.registry.get("s1").status == SessionStatus.INACTIVE

        analyzer.add_snapshot("s1", make_sample(timestamp=clock.now + 1900))
        assert analyzer.registry.get("s1").status == SessionStatus.ACTIVE

    def test_remove_expired_keeps_active(self, analyzer, clock, make_sample):
        """Test retention removes only old non-active sessions."""
        analyzer.add_snapshot("old", make_sample(timestamp=clock.now))
        analyzer.add_snapshot("live", make_sample(timestamp=clock.now))
        analyzer.registry.get("old").status = SessionStatus.ANALYZED

        removed = analyzer.remove_expired(retention_days=1, now=clock.now + 2 * 86400)

        assert removed == ["old"]
        assert "live" in analyzer.registry

    def test_checkpoint_captures_state(self, analyzer, clock, growing_samples):
        """Test a checkpoint records the latest sample and growth analysis."""
        feed(analyzer, "s1", growing_samples)
        clock.advance(5)
        checkpoint = analyzer.create_checkpoint("s1", "leak_detected")

        assert checkpoint.reason == "leak_detected"
        assert checkpoint.snapshot_count == 5
        assert checkpoint.timestamp == clock.now
        assert checkpoint.memory_state["process"]["rss"] == 146.0 * MB
        assert checkpoint.growth_analysis["totalGrowth"] == pytest.approx(0.46)
        assert analyzer.registry.get("s1").checkpoints == [checkpoint]

    def test_checkpoint_unknown_session(self, analyzer):
        """Test checkpoints require a known session."""
        with pytest.raises(SessionNotFoundError):
            analyzer.create_checkpoint("nope")


@pytest.mark.unit
class TestSessionAnalysis:
    """Test cases for reports, health scores and correlation."""

    def test_empty_session_report(self, analyzer):
        """Test a registered session with no samples analyses cleanly."""
        analyzer.register_session("s1")
        report = analyzer.analyze_session("s1")

        assert report.snapshot_count == 0
        assert report.health_score == 1.0
        assert report.insufficient_data
        assert report.memory == {}

    def test_unknown_session(self, analyzer):
        """Test analysis of an unknown session raises."""
        with pytest.raises(SessionNotFoundError):
            analyzer.analyze_session("missing")

    def test_growing_session_report(self, analyzer, growing_samples):
        """Test the report sections for the growth scenario."""
        feed(analyzer, "s1", growing_samples)
        report = analyzer.analyze_session("s1")

        assert 0.0 <= report.health_score < 1.0
        assert report.memory["max"] == 146.0 * MB
        assert report.memory["trend"]["direction"] == "increasing"
        assert report.growth["problematicPhaseRatio"] == 1.0
        assert report.correlations == {"no_performance_data": True}
        types = {r["type"] for r in report.recommendations}
        assert {"concerning_growth", "unstable_memory"} <= types
        assert analyzer.registry.get("s1").last_report == report.to_dict()

    def test_mark_analyzed(self, analyzer, clock, growing_samples):
        """Test inactive sessions move to analyzed when requested."""
        feed(analyzer, "s1", growing_samples)
        analyzer.sweep_timeouts(clock.now + 10_000)
        report = analyzer.analyze_session("s1", mark_analyzed=True)
        assert report.status == "analyzed"

    def test_health_score_bounds(self, analyzer, make_sample):
        """Test the health score stays in [0, 1] under heavy fragmentation and growth."""
        samples = [
            make_sample(timestamp=START + i, rss_mb=100.0 * (2 ** i), heap_ratio=0.1) for i in range(5)
        ]
        session = feed(analyzer, "s1", samples)
        assert 0.0 <= analyzer.health_score(session) <= 1.0

    def test_correlation_aligned_by_timestamp(self, analyzer, growing_samples):
        """Test timestamped series are aligned with nearest-timestamp joins."""
        feed(analyzer, "s1", growing_samples)
        performance = {
            "cpuUsage": [
                {"timestamp": s.timestamp + 3.0, "value": float(i)} for i, s in enumerate(growing_samples)
            ]
        }
        report = analyzer.analyze_session("s1", performance)
        cpu = report.correlations["cpuUsage"]

        assert cpu["alignment"] == "asof"
        assert cpu["sample_count"] == 5
        assert cpu["coefficient"] > 0.9
        assert cpu["strength"] == "strong"

    def test_positional_correlation(self, analyzer, growing_samples):
        """Test bare numeric series are paired by position."""
        feed(analyzer, "s1", growing_samples)
        correlations = analyzer.correlate(
            list(analyzer.registry.get("s1").snapshots),
            {"taskCompletion": [5.0, 4.0, 3.0, 2.0, 1.0], "short": [1.0, 2.0]},
        )
        assert correlations["taskCompletion"]["alignment"] == "positional"
        assert correlations["taskCompletion"]["coefficient"] < -0.9
        assert correlations["short"]["insufficient_data"] is True

    def test_unusable_performance_points_skipped(self, analyzer, growing_samples):
        """Test null, text and NaN values are skipped instead of raising."""
        feed(analyzer, "s1", growing_samples)
        values = [0.1, None, 0.3, "n/a", 0.5]
        snapshots = list(analyzer.registry.get("s1").snapshots)
        correlations = analyzer.correlate(
            snapshots,
            {
                "cpuUsage": [
                    {"timestamp": s.timestamp, "value": v} for s, v in zip(growing_samples, values)
                ],
                "positional": values,
                "empty": [{"timestamp": s.timestamp, "value": None} for s in growing_samples],
                "nan": [float("nan")] * 5,
            },
        )

        assert correlations["cpuUsage"]["sample_count"] == 5
        assert correlations["cpuUsage"]["coefficient"] > 0.9
        assert correlations["positional"]["sample_count"] == 3
        assert correlations["positional"]["coefficient"] > 0.9
        assert correlations["empty"]["reason"] == "invalid_values"
        assert correlations["nan"]["reason"] == "invalid_values"

    def test_summary(self, analyzer, growing_samples):
        """Test the session summary fields."""
        feed(analyzer, "s1", growing_samples)
        summary = analyzer.get_session_summary("s1")
        assert summary["snapshotCount"] == 5
        assert summary["currentPhase"] == "critical"
        assert summary["latestSample"]["process"]["rss"] == 146.0 * MB


@pytest.mark.unit
class TestCrossSessionAnalysis:
    """Test cases for cross-session analysis."""

    def test_requires_two_completed_sessions(self, analyzer, clock, growing_samples):
        """Test fewer than two completed sessions is insufficient."""
        feed(analyzer, "s1", growing_samples)
        result = analyzer.cross_session_analysis()
        assert result.insufficient_data
        assert result.session_count == 0

    def test_patterns_across_sessions(self, analyzer, clock, make_sample, growing_samples):
        """Test averages, phase presence and efficiency distribution."""
        feed(analyzer, "grow", growing_samples)
        feed(analyzer, "flat", [make_sample(timestamp=START + i * 60.0) for i in range(4)])
        analyzer.sweep_timeouts(clock.now + 10_000)

        result = analyzer.cross_session_analysis()

        assert not result.insufficient_data
        assert result.session_count == 2
        assert result.average_growth == pytest.approx(0.23)
        assert result.common_growth_patterns["critical"] == 0.5
        assert result.common_growth_patterns["stable"] == 0.5
        assert sum(result.efficiency["distribution"].values()) == 2
