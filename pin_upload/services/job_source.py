"""Job source: turns a directory of numbered files into upload jobs."""

import os
import re
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path

from pin_upload.services.utils import file_name_without_ext

# Optional sign and ASCII digits only (no "1_0", no surrounding spaces)
_INDEX_PATTERN = re.compile(r"[+-]?[0-9]+")


class JobValidationError(Exception):
    """An entry cannot become an upload job."""


@dataclass(frozen=True)
class UploadJob:
    """A single file scheduled for upload.

    The file is not opened here; the worker streams it at upload time.
    """

    path: Path
    index: int
    stat: os.stat_result

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def stem(self) -> str:
        return file_name_without_ext(self.path.name)

    @property
    def file_size(self) -> int:
        return self.stat.st_size


@dataclass(frozen=True)
class JobRejection:
    """An entry that was skipped, with the reason it was reported."""

    path: Path
    reason: str

    @property
    def filename(self) -> str:
        return self.path.name


def list_entries(directory: str | Path) -> list[os.DirEntry[str]]:
    """List a directory's entries sorted by name.

    Raises:
        OSError: If the directory cannot be read
    """
    with os.scandir(directory) as it:
        return sorted(it, key=lambda entry: entry.name)


def parse_index(filename: str) -> int:
    """Derive the 1-based logical index from a file name ("7.png" -> 7).

    Raises:
        JobValidationError: If the stem is not a positive base-10 integer
    """
    stem = file_name_without_ext(filename)
    if not _INDEX_PATTERN.fullmatch(stem):
        raise JobValidationError(f"{filename}: name is not a number")
    index = int(stem, 10)
    if index < 1:
        raise JobValidationError(f"{filename}: index must be a positive integer, got {index}")
    return index


def build_job(path: str | Path) -> UploadJob:
    """Stat a file and package it as an UploadJob.

    Raises:
        JobValidationError: If the entry cannot be stat'ed, is not a regular
            file, or its name does not parse as an index
    """
    path = Path(path)
    try:
        # Follows symlinks: a link to a regular file is uploaded as that file
        st = os.stat(path)
    except OSError as e:
        raise JobValidationError(f"{path.name}: {e.strerror or e}") from e

    if stat_module.S_ISDIR(st.st_mode):
        raise JobValidationError(f"{path.name}: is a directory")
    if not stat_module.S_ISREG(st.st_mode):
        raise JobValidationError(f"{path.name}: not a regular file")

    return UploadJob(path=path, index=parse_index(path.name), stat=st)


def collect_jobs(directory: str | Path) -> tuple[list[UploadJob], list[JobRejection]]:
    """Build upload jobs for every eligible entry of a directory.

    Sub-directories and links to them are skipped without a report. Any
    other entry that cannot become a job is returned as a rejection; one bad
    entry never affects its siblings. When two entries map to the same index
    ("1.png" and "1.jpg"), the first in name order keeps it.

    Raises:
        OSError: If the directory itself cannot be read
    """
    jobs: list[UploadJob] = []
    rejections: list[JobRejection] = []
    claimed: dict[int, str] = {}

    for entry in list_entries(directory):
        try:
            if entry.is_dir():
                continue
        except OSError:
            pass  # build_job reports it

        path = Path(entry.path)
        try:
            job = build_job(path)
        except JobValidationError as e:
            rejections.append(JobRejection(path=path, reason=str(e)))
            continue

        owner = claimed.get(job.index)
        if owner is not None:
            rejections.append(
                JobRejection(
                    path=path,
                    reason=f"{path.name}: index {job.index} already used by {owner}",
                )
            )
            continue

        claimed[job.index] = path.name
        jobs.append(job)

    return jobs, rejections
