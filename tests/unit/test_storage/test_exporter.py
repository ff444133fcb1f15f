"""
Unit tests for session exports.
"""

import polars as pl
import pytest

from memwatch.analysis import SessionAnalyzer
from memwatch.models import GrowthThresholds, SessionConfig
from memwatch.storage import SNAPSHOT_COLUMNS, FileStorage, SessionExporter, safe_file_stem
from memwatch.validation import ValidationError


@pytest.fixture
def session(clock, growing_samples):
    """A session holding the growth scenario."""
    analyzer = SessionAnalyzer(SessionConfig(), GrowthThresholds(), clock=clock)
    for sample in growing_samples:
        analyzer.add_snapshot("build-42", sample)
    analyzer.create_checkpoint("build-42", "manual")
    return analyzer.registry.get("build-42")


@pytest.fixture
def exporter(temp_dir):
    storage = FileStorage(temp_dir)
    return SessionExporter(storage, storage.exports_dir)


@pytest.mark.unit
class TestSessionExporter:
    """Test cases for SessionExporter."""

    def test_frame_columns(self, session):
        """Test one row per snapshot with the documented columns."""
        df = SessionExporter.to_frame(session)
        assert tuple(df.columns) == SNAPSHOT_COLUMNS
        assert len(df) == 5
        assert df["growthRate"][0] is None
        assert df["growthPhase"][1] == "critical"

    def test_csv_export(self, exporter, session):
        """Test the default CSV export location and content."""
        path = exporter.export(session, "csv")
        assert path == exporter.export_dir / "build-42.csv"
        df = pl.read_csv(path)
        assert df["rss"].to_list() == [s.sample.process.rss for s in session.snapshots]

    def test_parquet_export(self, exporter, session, temp_dir):
        """Test Parquet export to an explicit path."""
        path = exporter.export(session, "PARQUET", temp_dir / "out" / "session")
        assert path.suffix == ".parquet"
        assert pl.read_parquet(path).equals(SessionExporter.to_frame(session))

    def test_json_round_trip(self, exporter, session):
        """Test the JSON export loads back without recomputation."""
        path = exporter.export(session)
        restored = exporter.load_session(path)

        assert restored.id == session.id
        assert restored.snapshot_count == session.snapshot_count
        assert restored.growth.total_growth == session.growth.total_growth
        assert [p.type for p in restored.growth.phases] == [p.type for p in session.growth.phases]
        assert len(restored.checkpoints) == 1

    def test_unknown_format(self, exporter, session):
        """Test unsupported formats are rejected."""
        with pytest.raises(ValidationError):
            exporter.export(session, "xlsx")

    def test_session_id_cannot_escape_export_dir(self, exporter, clock, make_sample):
        """Test path separators and leading dots in the id stay inside the export directory."""
        analyzer = SessionAnalyzer(SessionConfig(), GrowthThresholds(), clock=clock)
        analyzer.add_snapshot("../../escaped", make_sample())
        session = analyzer.registry.get("../../escaped")

        path = exporter.export(session)

        assert path.parent == exporter.export_dir
        assert path.name == "escaped.json"
        assert exporter.load_session(path).id == "../../escaped"

    @pytest.mark.parametrize("session_id,stem", [
        ("build-42", "build-42"),
        ("team/job 7", "team_job_7"),
        ("..", "session"),
    ])
    def test_safe_file_stem(self, session_id, stem):
        """Test ids are reduced to a single safe path component."""
        assert safe_file_stem(session_id) == stem
