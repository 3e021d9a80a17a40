"""Tests for the JSONL log service."""

import csv
import json
from datetime import UTC, datetime
from pathlib import Path

from pin_upload.services.job_source import JobRejection
from pin_upload.services.log_service import LogService, get_log_service, reset_log_service
from pin_upload.services.upload_manager import UploadOutcome, UploadRun, UploadStatus

COMPLETED_AT = datetime(2026, 2, 8, 14, 30, 5, tzinfo=UTC)


def _find_event_files(log_dir: Path) -> list[Path]:
    """Find all events.jsonl files under the hive-partitioned json/ directory."""
    json_dir = log_dir / "json"
    if not json_dir.exists():
        return []
    return list(json_dir.rglob("events.jsonl"))


def _finished_run() -> UploadRun:
    run = UploadRun(run_id="abcdef12-3456-7890", directory="/data/images")
    run.add_outcome(UploadOutcome(2, "2.png", 20, UploadStatus.FAILED, error="timeout"))
    run.add_outcome(
        UploadOutcome(
            1, "1.png", 10, UploadStatus.COMPLETED, cid="QmOne", metadata_path="/m/1.json"
        )
    )
    run.results.record(1, "QmOne")
    run.rejections.append(
        JobRejection(Path("/data/images/x.png"), "x.png: name is not a number")
    )
    run.results.freeze()
    run.completed_at = COMPLETED_AT
    return run


class TestLogServiceWrite:
    """Tests for writing log entries."""

    def test_log_creates_file(self, logs: LogService, log_dir: Path) -> None:
        """Test that log() creates a JSONL file in hive-partitioned structure."""
        logs.log("INFO", "run", "test_event", "Test message")

        files = _find_event_files(log_dir)
        assert len(files) == 1
        assert "year=" in str(files[0])
        assert "month=" in str(files[0])
        assert "day=" in str(files[0])

    def test_log_entry_format(self, logs: LogService, log_dir: Path) -> None:
        """Test that log entries have the correct JSON schema."""
        logs.log(
            "info", "upload", "file_upload_completed", "Uploaded 1.png", {"cid": "QmOne"}
        )

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())

        assert "timestamp" in entry
        assert entry["level"] == "INFO"
        assert entry["category"] == "upload"
        assert entry["event"] == "file_upload_completed"
        assert entry["message"] == "Uploaded 1.png"
        assert entry["metadata"]["cid"] == "QmOne"

    def test_no_metadata_key_when_empty(self, logs: LogService, log_dir: Path) -> None:
        """Test that metadata is omitted when not given."""
        logs.info("run", "test", "No metadata")

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())
        assert "metadata" not in entry

    def test_level_convenience_methods(self, logs: LogService, log_dir: Path) -> None:
        """Test info(), warning() and error() set the level."""
        logs.info("run", "a", "Info")
        logs.warning("scan", "b", "Warning")
        logs.error("upload", "c", "Error")

        lines = _find_event_files(log_dir)[0].read_text().splitlines()
        assert [json.loads(line)["level"] for line in lines] == ["INFO", "WARNING", "ERROR"]

    def test_singleton_uses_settings(self, log_dir: Path) -> None:
        """Test that the shared instance writes to the configured directory."""
        reset_log_service()
        svc = get_log_service()
        assert get_log_service() is svc

        svc.info("run", "test", "Configured directory")

        assert len(_find_event_files(log_dir)) == 1


class TestRunSummaries:
    """Tests for per-run summary files."""

    def test_save_run_jsonl(self, logs: LogService, log_dir: Path) -> None:
        """Test that the run summary lands in the completion day's partition."""
        run = _finished_run()

        path = logs.save_run_jsonl(run.run_id, run.to_dict(), COMPLETED_AT)

        assert path.parent == log_dir / "json" / "year=2026" / "month=02" / "day=08"
        data = json.loads(path.read_text())
        assert data["run_id"] == run.run_id
        assert [f["index"] for f in data["files"]] == [1, 2]

    def test_save_run_csv(self, logs: LogService, log_dir: Path) -> None:
        """Test the CSV result table: outcomes by index, then rejections."""
        run = _finished_run()

        path = logs.save_run_csv(run.run_id, run, COMPLETED_AT)

        assert path.name == "upload-summary-143005-abcdef12.csv"
        assert path.parent == log_dir / "csv" / "year=2026" / "month=02" / "day=08"
        with open(path, encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [(r["index"], r["status"], r["cid"]) for r in rows] == [
            ("1", "completed", "QmOne"),
            ("2", "failed", ""),
            ("", "rejected", ""),
        ]
        assert rows[0]["metadata_path"] == "/m/1.json"
        assert rows[1]["error_message"] == "timeout"
        assert rows[2]["error_message"] == "x.png: name is not a number"
