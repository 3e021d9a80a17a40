"""Upload manager for pushing a directory of numbered files to the gateway."""

import logging
import sys
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

import httpx

from pin_upload.services import gateway_service, job_source, metadata_service
from pin_upload.services.job_source import JobRejection, UploadJob
from pin_upload.services.log_service import LogService, get_log_service
from pin_upload.services.task_pool import (
    DEFAULT_CAPACITY,
    BoundedTaskPool,
    CancellationToken,
    CancelledError,
    CompletionCounter,
    PoolStats,
)
from pin_upload.services.utils import format_file_size

logger = logging.getLogger(__name__)

UploadFn = Callable[[UploadJob, CancellationToken], str]


class UploadStatus(Enum):
    """Final status of a single file."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class UploadOutcome:
    """Result of one dispatched job. Created once by its worker, never changed."""

    index: int
    filename: str
    file_size: int
    status: UploadStatus
    cid: str = ""
    error: str = ""
    metadata_path: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == UploadStatus.COMPLETED

    @property
    def upload_duration_seconds(self) -> float | None:
        """Calculate upload duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "index": self.index,
            "filename": self.filename,
            "file_size": self.file_size,
            "file_size_formatted": format_file_size(self.file_size),
            "status": self.status.value,
            "cid": self.cid,
            "error": self.error,
            "metadata_path": self.metadata_path,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "upload_duration_seconds": self.upload_duration_seconds,
        }


class ResultTable:
    """Index-addressed CIDs, written by workers and read after the run.

    Each index is written at most once. Reads are refused until freeze()
    has been called, which happens once every worker has finished.
    """

    def __init__(self) -> None:
        self._cids: dict[int, str] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def record(self, index: int, cid: str) -> None:
        """Store the CID for a 1-based index.

        Raises:
            ValueError: If the index is not positive or was already written
            RuntimeError: If the table is frozen
        """
        if index < 1:
            raise ValueError(f"index must be positive, got {index}")
        with self._lock:
            if self._frozen:
                raise RuntimeError("result table is frozen")
            if index in self._cids:
                raise ValueError(f"index {index} already has a result")
            self._cids[index] = cid

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_readable(self) -> None:
        if not self._frozen:
            raise RuntimeError("result table cannot be read while uploads are running")

    def get(self, index: int) -> str:
        """CID at an index, or "" when nothing was uploaded there."""
        self._check_readable()
        return self._cids.get(index, "")

    def items(self) -> list[tuple[int, str]]:
        """Populated (index, cid) pairs in index order."""
        self._check_readable()
        return sorted(self._cids.items())

    def slots(self) -> list[str]:
        """Dense 0-based view: slot k-1 holds the CID of index k, "" if empty."""
        self._check_readable()
        if not self._cids:
            return []
        table = [""] * max(self._cids)
        for index, cid in self._cids.items():
            table[index - 1] = cid
        return table

    def __len__(self) -> int:
        with self._lock:
            return len(self._cids)


@dataclass
class UploadRun:
    """One invocation over a directory."""

    run_id: str
    directory: str
    pin: bool = True
    capacity: int = DEFAULT_CAPACITY
    rejections: list[JobRejection] = field(default_factory=list)
    outcomes: list[UploadOutcome] = field(default_factory=list)
    results: ResultTable = field(default_factory=ResultTable)
    stats: PoolStats = field(default_factory=PoolStats)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    cancelled: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add_outcome(self, outcome: UploadOutcome) -> None:
        with self.lock:
            self.outcomes.append(outcome)

    def _count(self, status: UploadStatus) -> int:
        with self.lock:
            return sum(1 for o in self.outcomes if o.status == status)

    @property
    def files_uploaded(self) -> int:
        return self._count(UploadStatus.COMPLETED)

    @property
    def files_failed(self) -> int:
        return self._count(UploadStatus.FAILED)

    @property
    def files_cancelled(self) -> int:
        return self._count(UploadStatus.CANCELLED)

    @property
    def files_rejected(self) -> int:
        return len(self.rejections)

    @property
    def has_errors(self) -> bool:
        """True if any entry was rejected or any upload did not complete."""
        return bool(self.rejections) or any(not o.succeeded for o in self.outcomes)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def uploaded_bytes(self) -> int:
        """Total bytes from successfully uploaded files."""
        with self.lock:
            return sum(o.file_size for o in self.outcomes if o.succeeded)

    def summary_line(self) -> str:
        return (
            f"uploaded {self.files_uploaded}, failed {self.files_failed}, "
            f"cancelled {self.files_cancelled}, rejected {self.files_rejected}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        with self.lock:
            outcomes = sorted(self.outcomes, key=lambda o: o.index)
        return {
            "run_id": self.run_id,
            "directory": self.directory,
            "pin": self.pin,
            "capacity": self.capacity,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "cancelled": self.cancelled,
            "files_uploaded": self.files_uploaded,
            "files_failed": self.files_failed,
            "files_cancelled": self.files_cancelled,
            "files_rejected": self.files_rejected,
            "uploaded_bytes": self.uploaded_bytes,
            "uploaded_bytes_formatted": format_file_size(self.uploaded_bytes),
            "pool": self.stats.to_dict(),
            "files": [o.to_dict() for o in outcomes],
            "rejections": [{"filename": r.filename, "reason": r.reason} for r in self.rejections],
        }


class UploadManager:
    """Uploads every numbered file of a directory with bounded concurrency."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        pin: bool = True,
        url_prefix: str = "",
        output_dir: str | Path | None = None,
        max_workers: int = DEFAULT_CAPACITY,
        upload_fn: UploadFn | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        log_service: LogService | None = None,
    ) -> None:
        """Create a manager.

        Args:
            client: Gateway client from gateway_service.create_gateway_client()
            pin: Whether uploaded content is pinned
            url_prefix: Prefix for the "image" URL in metadata files
            output_dir: Directory for metadata files; None disables them
            max_workers: Admission gate capacity
            upload_fn: Replaces the gateway call, ``upload_fn(job, token) -> cid``
            stdout: Stream for progress lines (default sys.stdout)
            stderr: Stream for error reports (default sys.stderr)
            log_service: JSONL event log (default: the shared instance)
        """
        if client is None and upload_fn is None:
            raise ValueError("either a gateway client or an upload_fn is required")
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.client = client
        self.pin = pin
        self.url_prefix = url_prefix
        self.output_dir = Path(output_dir) if output_dir else None
        self.max_workers = max_workers
        self._upload_fn = upload_fn
        self._stdout = stdout
        self._stderr = stderr
        self._log = log_service
        self._output_lock = threading.Lock()
        self.counter = CompletionCounter()

    @property
    def log(self) -> LogService:
        if self._log is None:
            self._log = get_log_service()
        return self._log

    def _echo(self, message: str, *, error: bool = False) -> None:
        stream = (self._stderr or sys.stderr) if error else (self._stdout or sys.stdout)
        with self._output_lock:
            print(message, file=stream, flush=True)

    def _echo_progress(self, job: UploadJob, cid: str) -> None:
        """Print "<count> <index> <cid>"; counts appear on stdout in increasing order."""
        with self._output_lock:
            count = self.counter.increment()
            print(f"{count} {job.index} {cid}", file=self._stdout or sys.stdout, flush=True)

    def _log_event(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Write to the JSONL log; a log write failure never affects an upload."""
        try:
            getattr(self.log, level)(category, event, message, metadata)
        except Exception:
            logger.warning("Failed to write %s event to JSONL log", event, exc_info=True)

    def run(self, directory: str | Path, token: CancellationToken | None = None) -> UploadRun:
        """Upload every eligible file in ``directory`` and wait for all of them.

        Args:
            directory: Directory of files named ``<index>.<ext>``
            token: Cancellation token; cancelling it stops admission and
                aborts in-flight uploads

        Returns:
            The finished UploadRun; its result table is frozen

        Raises:
            OSError: If the directory cannot be read
        """
        token = token or CancellationToken()
        run = UploadRun(
            run_id=str(uuid.uuid4()),
            directory=str(directory),
            pin=self.pin,
            capacity=self.max_workers,
        )

        jobs, rejections = job_source.collect_jobs(directory)
        run.rejections.extend(rejections)
        for rejection in rejections:
            self._echo(rejection.reason, error=True)
            self._log_event(
                "warning",
                "scan",
                "job_rejected",
                f"Skipped {rejection.filename}: {rejection.reason}",
                {"run_id": run.run_id, "filename": rejection.filename, "reason": rejection.reason},
            )

        self._log_event(
            "info",
            "run",
            "run_started",
            f"Uploading {len(jobs)} files from {directory}",
            {
                "run_id": run.run_id,
                "directory": str(directory),
                "total_files": len(jobs),
                "rejected": len(rejections),
                "pin": self.pin,
                "capacity": self.max_workers,
            },
        )

        pool: BoundedTaskPool[UploadJob] = BoundedTaskPool(self.max_workers, token)
        run.stats = pool.run(
            jobs,
            lambda job, tok: self.upload_job(job, tok, run),
            on_cancelled=lambda job: self._cancel_job(job, run),
        )

        # Every worker has signalled the barrier; the table is now safe to read.
        run.results.freeze()
        run.completed_at = datetime.now(UTC)
        run.cancelled = token.cancelled
        self._finish_run(run)
        return run

    def _upload(self, job: UploadJob, token: CancellationToken) -> str:
        if self._upload_fn is not None:
            return self._upload_fn(job, token)
        if self.client is None:
            raise RuntimeError("no gateway client configured")
        return gateway_service.add_file(self.client, job.path, pin=self.pin, token=token)

    def upload_job(self, job: UploadJob, token: CancellationToken, run: UploadRun) -> UploadOutcome:
        """Upload one job and record its outcome. Never raises.

        On success the CID goes into the result table, the metadata file is
        written if configured and a progress line is printed. On failure the
        error is printed to stderr and nothing else is written.
        """
        started_at = datetime.now(UTC)
        try:
            token.raise_if_cancelled()
            cid = self._upload(job, token)
        except (gateway_service.UploadCancelledError, CancelledError) as e:
            outcome = self._failed(job, run, UploadStatus.CANCELLED, str(e), started_at)
        except Exception as e:
            outcome = self._failed(job, run, UploadStatus.FAILED, str(e), started_at)
        else:
            try:
                run.results.record(job.index, cid)
            except ValueError as e:
                outcome = self._failed(job, run, UploadStatus.FAILED, str(e), started_at)
            else:
                outcome = self._completed(job, cid, run, started_at)

        run.add_outcome(outcome)
        return outcome

    def _completed(
        self, job: UploadJob, cid: str, run: UploadRun, started_at: datetime
    ) -> UploadOutcome:
        metadata_path: str | None = None
        error = ""
        if self.output_dir is not None:
            image_url = metadata_service.build_image_url(self.url_prefix, cid)
            try:
                metadata_path = str(
                    metadata_service.write_metadata(self.output_dir, job.stem, image_url)
                )
            except OSError as e:
                error = f"{job.filename}: cannot write metadata: {e}"
                self._echo(error, error=True)
                self._log_event(
                    "error",
                    "metadata",
                    "metadata_write_failed",
                    f"Failed to write metadata for {job.filename}: {e}",
                    {"run_id": run.run_id, "filename": job.filename, "error": str(e)},
                )

        self._echo_progress(job, cid)

        outcome = UploadOutcome(
            index=job.index,
            filename=job.filename,
            file_size=job.file_size,
            status=UploadStatus.COMPLETED,
            cid=cid,
            error=error,
            metadata_path=metadata_path,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )
        self._log_event(
            "info",
            "upload",
            "file_upload_completed",
            f"Uploaded {job.filename}",
            {
                "run_id": run.run_id,
                "index": job.index,
                "filename": job.filename,
                "cid": cid,
                "file_size": job.file_size,
                "upload_duration_seconds": outcome.upload_duration_seconds,
            },
        )
        return outcome

    def _failed(
        self,
        job: UploadJob,
        run: UploadRun,
        status: UploadStatus,
        message: str,
        started_at: datetime | None,
    ) -> UploadOutcome:
        self._echo(f"{job.filename}: {message}", error=True)
        cancelled = status == UploadStatus.CANCELLED
        event = "file_upload_cancelled" if cancelled else "file_upload_failed"
        self._log_event(
            "error",
            "upload",
            event,
            f"Failed to upload {job.filename}: {message}",
            {"run_id": run.run_id, "index": job.index, "filename": job.filename, "error": message},
        )
        return UploadOutcome(
            index=job.index,
            filename=job.filename,
            file_size=job.file_size,
            status=status,
            error=message,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )

    def _cancel_job(self, job: UploadJob, run: UploadRun) -> None:
        run.add_outcome(
            self._failed(job, run, UploadStatus.CANCELLED, "cancelled before upload started", None)
        )

    def _finish_run(self, run: UploadRun) -> None:
        """Log the run summary and persist it; failures here never fail the run."""
        completed_at = run.completed_at or datetime.now(UTC)

        self._log_event(
            "info",
            "run",
            "run_completed",
            f"Run completed: {run.summary_line()}",
            {
                "run_id": run.run_id,
                "uploaded": run.files_uploaded,
                "failed": run.files_failed,
                "cancelled": run.files_cancelled,
                "rejected": run.files_rejected,
                "duration_seconds": run.duration_seconds,
                "peak_in_flight": run.stats.peak_in_flight,
            },
        )

        try:
            self.log.save_run_jsonl(run.run_id, run.to_dict(), completed_at)
        except Exception:
            logger.warning("Failed to save run JSONL summary", exc_info=True)

        try:
            self.log.save_run_csv(run.run_id, run, completed_at)
        except Exception:
            logger.warning("Failed to save run CSV summary", exc_info=True)
