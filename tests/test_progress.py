"""Tests for ralph.runner.progress module."""

import json

import pytest

from ralph.lib.validate import SchemaValidationError
from ralph.runner.progress import (
    PROGRESS_HEADER,
    IterationRecord,
    ProgressTracker,
    ensure_progress_file,
    load_records,
)


@pytest.fixture
def tracker(tmp_path):
    return ProgressTracker(tmp_path / ".ralph" / "iterations.jsonl", run_id="run1")


class TestProgressTracker:
    """Tests for the append-only iteration log."""

    def test_record_appends_json_line(self, tracker):
        tracker.record(1, "a", "success", ["features[a].status"], new_status="complete", duration=1.23456)
        lines = tracker.log_path.read_text().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["version"] == 1
        assert data["run_id"] == "run1"
        assert data["feature_id"] == "a"
        assert data["outcome"] == "success"
        assert data["changed_paths"] == ["features[a].status"]
        assert data["new_status"] == "complete"
        assert data["duration_seconds"] == 1.235
        assert "detail" not in data

    def test_changed_paths_sorted(self, tracker):
        rec = tracker.record(1, "a", "validation_error", ["z.path", "a.path"])
        assert rec.changed_paths == ("a.path", "z.path")

    def test_records_accumulate(self, tracker):
        tracker.record(1, "a", "timeout", detail="slow")
        tracker.record(2, "a", "success")
        assert [r.iteration for r in tracker.records] == [1, 2]
        assert len(tracker.log_path.read_text().splitlines()) == 2

    def test_invalid_record_never_written(self, tracker):
        with pytest.raises(SchemaValidationError):
            tracker.record(1, "a", "exploded")
        assert not tracker.log_path.exists()
        assert tracker.records == ()

    def test_iteration_must_be_positive(self, tracker):
        with pytest.raises(SchemaValidationError):
            tracker.record(0, "a", "success")

    def test_completed_features(self, tracker):
        tracker.record(1, "a", "success", new_status="in-progress")
        tracker.record(2, "a", "success", new_status="complete")
        tracker.record(3, "b", "no_op")
        assert tracker.completed_features() == ["a"]

    def test_summary_shows_last_n(self, tracker):
        for i in range(1, 8):
            tracker.record(i, "a", "process_error", detail=f"Agent exited with code {i}")
        summary = tracker.summary(5)
        assert summary.startswith("Last 5 of 7 iteration(s):")
        assert "#3" in summary and "#7" in summary
        assert "#2 " not in summary
        assert "Agent exited with code 7" in summary

    def test_summary_empty(self, tracker):
        assert tracker.summary() == "No iterations recorded."

    def test_load_records_round_trip(self, tracker):
        tracker.record(1, None, "cancelled", detail="Cancelled (received SIGINT)")
        tracker.record(2, "a", "success", ["features[a].status"], new_status="complete")
        assert load_records(tracker.log_path) == list(tracker.records)

    def test_load_records_skips_corrupted_lines(self, tracker, caplog):
        tracker.record(1, "a", "success")
        with open(tracker.log_path, "a") as f:
            f.write("{not json\n")
        assert len(load_records(tracker.log_path)) == 1
        assert "Skipping corrupted record line 2" in caplog.text

    def test_load_records_missing_file(self, tmp_path):
        assert load_records(tmp_path / "nope.jsonl") == []


class TestIterationRecord:
    def test_to_dict_omits_unset_optionals(self):
        rec = IterationRecord("r", 1, "a", "no_op", "2024-01-01T00:00:00+00:00")
        assert set(rec.to_dict()) == {
            "version", "run_id", "iteration", "feature_id", "outcome", "timestamp", "changed_paths",
        }


class TestEnsureProgressFile:
    def test_creates_with_header(self, tmp_path):
        path = tmp_path / "progress.txt"
        assert ensure_progress_file(path) is True
        assert path.read_text() == PROGRESS_HEADER

    def test_leaves_existing_file(self, tmp_path):
        path = tmp_path / "progress.txt"
        path.write_text("## Session 1\n")
        assert ensure_progress_file(path) is False
        assert path.read_text() == "## Session 1\n"
