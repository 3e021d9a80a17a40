"""Bounded task pool: admission gate, completion barrier and cancellation token.

The pool knows nothing about uploads. It takes a list of jobs and a worker
callable, admits at most ``capacity`` workers at a time, and returns once
every job has either run or been turned away because the run was cancelled.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CAPACITY = 8


class CancelledError(Exception):
    """Raised by blocking calls that observed a cancelled token."""


class CancellationToken:
    """One-shot cancellation flag shared by every job of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Mark the token cancelled. Later calls have no further effect."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError("operation cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or until timeout; returns True if cancelled."""
        return self._event.wait(timeout)


class WaitGroup:
    """Counting barrier: add() before dispatch, done() once per job, wait() for zero."""

    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def add(self, delta: int = 1) -> None:
        with self._cond:
            if self._count + delta < 0:
                raise ValueError("WaitGroup counter would go negative")
            self._count += delta
            if self._count == 0:
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the counter reaches zero; returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)


class CompletionCounter:
    """Thread-safe monotonic counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        """Increment and return the new value."""
        with self._lock:
            self._value += 1
            return self._value


@dataclass
class PoolStats:
    """Counts collected while a pool run was dispatching."""

    submitted: int = 0
    dispatched: int = 0
    not_admitted: int = 0
    worker_errors: int = 0
    peak_in_flight: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "dispatched": self.dispatched,
            "not_admitted": self.not_admitted,
            "worker_errors": self.worker_errors,
            "peak_in_flight": self.peak_in_flight,
        }


class BoundedTaskPool(Generic[T]):
    """Runs one worker per job with at most ``capacity`` in flight.

    The dispatch loop is single-threaded: it reserves a gate slot before
    launching each worker and blocks while the gate is full. Each worker
    releases its slot and signals the barrier exactly once, whatever the
    outcome. Once the token is cancelled no further jobs are admitted;
    the remaining ones are handed to ``on_cancelled`` instead.
    """

    def __init__(
        self, capacity: int = DEFAULT_CAPACITY, token: CancellationToken | None = None
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.token = token or CancellationToken()
        self._gate = threading.BoundedSemaphore(capacity)
        self._barrier = WaitGroup()
        self._lock = threading.Lock()
        self._in_flight = 0
        self._stats = PoolStats()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def run(
        self,
        jobs: Sequence[T],
        worker: Callable[[T, CancellationToken], None],
        on_cancelled: Callable[[T], None] | None = None,
    ) -> PoolStats:
        """Dispatch every job and block until all of them have finished.

        Args:
            jobs: Work items; each is handed to exactly one worker call
            worker: Called as ``worker(job, token)`` on a pool thread
            on_cancelled: Called on the dispatch thread for each job that
                was not admitted because the token was cancelled

        Returns:
            PoolStats for this run
        """
        self._stats = PoolStats(submitted=len(jobs))
        self._barrier.add(len(jobs))

        with ThreadPoolExecutor(
            max_workers=self.capacity, thread_name_prefix="pool-worker"
        ) as executor:
            for job in jobs:
                self._gate.acquire()
                if self.token.cancelled:
                    self._gate.release()
                    self._turn_away(job, on_cancelled)
                    continue

                with self._lock:
                    self._stats.dispatched += 1
                try:
                    executor.submit(self._run_one, job, worker)
                except RuntimeError:
                    # Executor refused the job; account for it here.
                    logger.exception("Failed to submit job to pool")
                    self._gate.release()
                    with self._lock:
                        self._stats.worker_errors += 1
                    self._barrier.done()

            self._barrier.wait()

        return self._stats

    def _turn_away(self, job: T, on_cancelled: Callable[[T], None] | None) -> None:
        with self._lock:
            self._stats.not_admitted += 1
        try:
            if on_cancelled is not None:
                on_cancelled(job)
        except Exception:
            logger.exception("on_cancelled callback failed")
        finally:
            self._barrier.done()

    def _run_one(self, job: T, worker: Callable[[T, CancellationToken], None]) -> None:
        with self._lock:
            self._in_flight += 1
            self._stats.peak_in_flight = max(self._stats.peak_in_flight, self._in_flight)
        try:
            worker(job, self.token)
        except Exception:
            logger.exception("Worker raised an unhandled exception")
            with self._lock:
                self._stats.worker_errors += 1
        finally:
            with self._lock:
                self._in_flight -= 1
            self._gate.release()
            self._barrier.done()
