"""
Unit tests for memory samples and the fragmentation formula.
"""

import pytest

from memwatch.models import MemorySample, fragmentation_level, fragmentation_score
from memwatch.validation import IngestionError

MB = 1024 * 1024


@pytest.mark.unit
class TestFragmentation:
    """Test cases for fragmentation score and level."""

    def test_score_is_unowned_share_of_rss(self):
        """Test score = (rss - heapUsed) / rss."""
        assert fragmentation_score(100.0, 75.0) == pytest.approx(0.25)

    def test_score_is_clamped(self):
        """Test the score stays within [0, 1]."""
        assert fragmentation_score(100.0, 150.0) == 0.0
        assert fragmentation_score(0.0, 10.0) == 0.0
        assert 0.0 <= fragmentation_score(100.0, -50.0) <= 1.0

    def test_score_is_monotonic_in_gap(self):
        """Test that a larger gap never yields a lower score."""
        scores = [fragmentation_score(100.0, used) for used in (90.0, 70.0, 50.0, 10.0)]
        assert scores == sorted(scores)

    def test_levels(self):
        """Test high above the threshold, medium above half of it."""
        assert fragmentation_level(0.31) == "high"
        assert fragmentation_level(0.2) == "medium"
        assert fragmentation_level(0.15) == "low"
        assert fragmentation_level(0.5, threshold=0.6) == "medium"


@pytest.mark.unit
class TestMemorySample:
    """Test cases for building and parsing samples."""

    def test_build_derives_ratios(self):
        """Test that utilization ratios and fragmentation are derived."""
        sample = MemorySample.build(
            timestamp=10, rss=100 * MB, heap_used=80 * MB, heap_total=160 * MB,
            system_total=1000 * MB, system_used=250 * MB,
        )
        assert sample.process.heap_utilization == pytest.approx(0.5)
        assert sample.system.utilization == pytest.approx(0.25)
        assert sample.system.available == 750 * MB
        assert sample.fragmentation.score == pytest.approx(0.2)
        assert sample.fragmentation.level == "medium"
        assert sample.rss == 100 * MB

    def test_build_handles_zero_totals(self):
        """Test that zero denominators give zero utilization, not an error."""
        sample = MemorySample.build(
            timestamp=0, rss=0, heap_used=0, heap_total=0, system_total=0, system_used=0
        )
        assert sample.process.heap_utilization == 0.0
        assert sample.system.utilization == 0.0

    def test_from_dict_derives_missing_fields(self, sample_payload):
        """Test that optional fields are derived from the required ones."""
        sample = MemorySample.from_dict(sample_payload)

        assert sample.process.heap_utilization == pytest.approx(0.5)
        assert sample.system.utilization == pytest.approx(0.5)
        assert sample.fragmentation.score == pytest.approx(0.2)

    def test_round_trip(self, sample_payload):
        """Test to_dict output is accepted by from_dict unchanged."""
        sample = MemorySample.from_dict(sample_payload)
        assert MemorySample.from_dict(sample.to_dict()) == sample

    def test_explicit_fragmentation_is_kept(self, sample_payload):
        """Test that a supplied fragmentation block is used as given."""
        sample_payload["fragmentation"] = {"score": 0.6, "level": "high"}
        sample = MemorySample.from_dict(sample_payload)
        assert sample.fragmentation.score == 0.6
        assert sample.fragmentation.level == "high"

    @pytest.mark.parametrize(
        "mutate, message",
        [
            (lambda d: d.pop("timestamp"), "timestamp"),
            (lambda d: d.pop("system"), "system"),
            (lambda d: d["process"].update(rss="lots"), "numeric"),
            (lambda d: d["process"].update(rss=-1), "non-negative"),
            (lambda d: d["process"].update(heapUtilization=1.5), r"\[0, 1\]"),
            (lambda d: d["system"].update(used=d["system"]["total"] * 2), "exceeds"),
            (lambda d: d.update(fragmentation={"score": 0.2, "level": "extreme"}), "fragmentation.level"),
            (lambda d: d["process"].update(rss=float("nan")), "finite"),
        ],
    )
    def test_from_dict_rejects_malformed(self, sample_payload, mutate, message):
        """Test that malformed samples raise IngestionError."""
        mutate(sample_payload)
        with pytest.raises(IngestionError, match=message):
            MemorySample.from_dict(sample_payload)

    def test_from_dict_rejects_non_mapping(self):
        """Test that a non-mapping payload is rejected."""
        with pytest.raises(IngestionError):
            MemorySample.from_dict([1, 2, 3])
