"""JSONL logging service for upload run events.

Writes one JSON object per line to hive-partitioned daily .jsonl files.
DuckDB-compatible: SELECT * FROM read_json_auto('logs/json/**/events.jsonl', hive_partitioning=true)
"""

import csv
import io
import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pin_upload.config import get_settings


class LogService:
    """JSONL log service with thread-safe file writes."""

    def __init__(self, log_dir: Path | None = None) -> None:
        """Initialize the log service.

        Args:
            log_dir: Directory for log files; defaults to the configured log_directory
        """
        self._log_dir = log_dir
        self._write_lock = threading.Lock()

    def _get_log_dir(self) -> Path:
        """Get the log directory, creating it if needed."""
        log_dir = self._log_dir if self._log_dir is not None else get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir(self, subdir: str, dt: datetime) -> Path:
        """Build a hive-partitioned directory path and create it.

        Args:
            subdir: Top-level subdirectory ('json' or 'csv')
            dt: Datetime to partition by

        Returns:
            Path like logs/json/year=2026/month=02/day=08/
        """
        log_dir = self._get_log_dir()
        hive_dir = (
            log_dir
            / subdir
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    def _get_current_log_file(self) -> Path:
        """Get the path to today's events log file (hive-partitioned)."""
        now = datetime.now(UTC)
        hive_dir = self._get_hive_dir("json", now)
        return hive_dir / "events.jsonl"

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry to the current day's JSONL file.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category (run, upload, scan, metadata)
            event: Machine-readable event name (snake_case)
            message: Human-readable message
            metadata: Optional additional data
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        line = json.dumps(entry, default=str)

        with self._write_lock:
            log_file = self._get_current_log_file()
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def info(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an INFO-level event."""
        self.log("INFO", category, event, message, metadata)

    def warning(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log a WARNING-level event."""
        self.log("WARNING", category, event, message, metadata)

    def error(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an ERROR-level event."""
        self.log("ERROR", category, event, message, metadata)

    def save_run_jsonl(
        self,
        run_id: str,
        run_dict: dict[str, Any],
        completed_at: datetime,
    ) -> Path:
        """Write a per-run JSONL summary file.

        Args:
            run_id: The upload run ID
            run_dict: Full run completion summary dict
            completed_at: When the run completed

        Returns:
            Path to the written file
        """
        hive_dir = self._get_hive_dir("json", completed_at)
        out_path = hive_dir / f"{run_id}.jsonl"
        line = json.dumps(run_dict, default=str)
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        return out_path

    def save_run_csv(
        self,
        run_id: str,
        run: Any,
        completed_at: datetime,
    ) -> Path:
        """Write the run's result table as CSV, one row per index.

        Args:
            run_id: The upload run ID
            run: Finished UploadRun (its result table must be frozen)
            completed_at: When the run completed

        Returns:
            Path to the written CSV file
        """
        hive_dir = self._get_hive_dir("csv", completed_at)
        time_str = completed_at.strftime("%H%M%S")
        short_id = run_id[:8]
        out_path = hive_dir / f"upload-summary-{time_str}-{short_id}.csv"

        columns = [
            "run_id",
            "index",
            "filename",
            "status",
            "cid",
            "file_size_bytes",
            "upload_duration_seconds",
            "metadata_path",
            "error_message",
        ]

        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(columns)

        for outcome in sorted(run.outcomes, key=lambda o: o.index):
            writer.writerow([
                run_id,
                outcome.index,
                outcome.filename,
                outcome.status.value,
                run.results.get(outcome.index),
                outcome.file_size,
                outcome.upload_duration_seconds,
                outcome.metadata_path or "",
                outcome.error,
            ])

        for rejection in run.rejections:
            writer.writerow([
                run_id,
                "",
                rejection.filename,
                "rejected",
                "",
                "",
                "",
                "",
                rejection.reason,
            ])

        with self._write_lock:
            with open(out_path, "w", encoding="utf-8", newline="") as fh:
                fh.write(buf.getvalue())

        return out_path


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service


def reset_log_service() -> None:
    """Drop the singleton so the next call re-reads the settings."""
    global _log_service
    _log_service = None
