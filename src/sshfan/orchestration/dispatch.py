"""Bounded worker pool draining a shared job queue.

One :class:`Job` is created per host and put on a FIFO queue in host-list
order.  A fixed number of worker threads pull jobs until the queue is
empty, run each one through the executor, and hand the result to the
reporter.  At most ``concurrency`` sessions are ever open at once because
each worker runs exactly one job at a time.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable

from sshfan.orchestration.report import Reporter
from sshfan.orchestration.scripts import ScriptBody
from sshfan.orchestration.ssh import (
    DEFAULT_CONNECT_TIMEOUT,
    ExecutionResult,
    FailureKind,
    run_remote_script,
)

logger = logging.getLogger(__name__)

# (host, script, jumpbox=..., connect_timeout=..., timeout=..., cancel_event=..., **ssh_kwargs)
ExecuteFn = Callable[..., ExecutionResult]


class InvalidConcurrency(ValueError):
    """Raised when the worker count is not a positive integer."""

    pass


class InvalidTimeout(ValueError):
    """Raised when a timeout is not a positive integer."""

    pass


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


@dataclass(frozen=True)
class Job:
    """One host's share of the run."""

    host: str
    script: ScriptBody
    jumpbox: str | None = None


@dataclass(frozen=True)
class WorkerPoolConfig:
    """Limits applied to a run, validated before any job starts."""

    concurrency: int
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    timeout: int | None = None

    def validate(self) -> None:
        if not _is_positive_int(self.concurrency):
            raise InvalidConcurrency(
                "Number of parallel processes must be a positive integer, got %r"
                % (self.concurrency,)
            )
        if not _is_positive_int(self.connect_timeout):
            raise InvalidTimeout(
                "Connect timeout must be a positive integer, got %r" % (self.connect_timeout,)
            )
        if self.timeout is not None and not _is_positive_int(self.timeout):
            raise InvalidTimeout(
                "Execution timeout must be a positive integer, got %r" % (self.timeout,)
            )


@dataclass
class DispatchSummary:
    """Outcome of a run.  ``results`` is in completion order."""

    total: int
    results: list[ExecutionResult] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def skipped(self) -> int:
        """Hosts that never started because the run was cancelled."""
        return self.total - len(self.results)

    @property
    def failures(self) -> list[ExecutionResult]:
        return [r for r in self.results if not r.success]


class JobQueue:
    """Thread-safe FIFO of pending jobs shared by all workers."""

    def __init__(self, jobs: list[Job] | None = None):
        self._queue: queue.Queue[Job] = queue.Queue()
        for job in jobs or []:
            self._queue.put(job)

    def put(self, job: Job) -> None:
        self._queue.put(job)

    def next(self) -> Job | None:
        """Take the next job, or None once the queue is exhausted."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()


class Dispatcher:
    """Runs jobs from a :class:`JobQueue` on a fixed pool of workers."""

    def __init__(
            self,
            pool_config: WorkerPoolConfig,
            execute: ExecuteFn | None = None,
            reporter: Reporter | None = None,
            cancel_event: threading.Event | None = None,
            ssh_kwargs: dict[str, Any] | None = None,
    ):
        pool_config.validate()
        self.pool_config = pool_config
        self.execute = execute or run_remote_script
        self.reporter = reporter
        self.cancel_event = cancel_event or threading.Event()
        self.ssh_kwargs = dict(ssh_kwargs or {})
        self._lock = threading.Lock()
        self._results: list[ExecutionResult] = []

    def _run_job(self, job: Job) -> ExecutionResult:
        try:
            return self.execute(
                job.host,
                job.script,
                jumpbox=job.jumpbox,
                connect_timeout=self.pool_config.connect_timeout,
                timeout=self.pool_config.timeout,
                cancel_event=self.cancel_event,
                **self.ssh_kwargs,
            )
        except Exception as e:
            # A broken executor still owes this host a report line
            logger.exception("Executor raised for %s", job.host)
            return ExecutionResult(
                host=job.host,
                output="",
                failure=FailureKind.SCRIPT_EXECUTION_ERROR,
                error="executor error: %s" % e,
            )

    def _record(self, result: ExecutionResult) -> None:
        with self._lock:
            self._results.append(result)
            if self.reporter is not None:
                self.reporter.report(result)

    def _worker(self, job_queue: JobQueue, worker_id: int) -> int:
        handled = 0
        while not self.cancel_event.is_set():
            job = job_queue.next()
            if job is None:
                break
            self._record(self._run_job(job))
            handled += 1
        logger.debug("Worker %d exiting after %d jobs", worker_id, handled)
        return handled

    def run(self, jobs: list[Job]) -> DispatchSummary:
        """Run every job and block until all workers have exited.

        On ``KeyboardInterrupt`` the cancellation signal is raised, in-flight
        sessions are abandoned, and the partial summary is returned with
        ``cancelled=True``.  If a worker itself fails (for instance the
        reporter cannot write), the run is cancelled and that error is
        re-raised once every worker has exited.
        """
        summary = DispatchSummary(total=len(jobs))
        if not jobs:
            return summary

        job_queue = JobQueue(jobs)
        workers = min(self.pool_config.concurrency, len(jobs))
        logger.info("Running %s on %d hosts with %d workers",
                    jobs[0].script.name, len(jobs), workers)

        t0 = time.monotonic()
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sshfan-worker")
        try:
            futures = [pool.submit(self._worker, job_queue, i) for i in range(workers)]
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception:
                    # A dead worker (e.g. report stream closed) stops the whole run
                    logger.error("Worker failed; cancelling remaining hosts")
                    self.cancel_event.set()
                    raise
        except KeyboardInterrupt:
            logger.warning("Interrupted; abandoning in-flight sessions")
            self.cancel_event.set()
        finally:
            pool.shutdown(wait=True)

        summary.elapsed = time.monotonic() - t0
        with self._lock:
            summary.results = list(self._results)
        summary.cancelled = self.cancel_event.is_set()

        logger.info("Done: %d/%d hosts OK (%.1fs total)",
                    summary.succeeded, summary.total, summary.elapsed)
        if summary.skipped:
            logger.warning("%d hosts were not attempted", summary.skipped)
        return summary


def dispatch(
        hosts: list[str],
        script: ScriptBody,
        jumpbox: str | None,
        concurrency: int,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        timeout: int | None = None,
        reporter: Reporter | None = None,
        execute: ExecuteFn | None = None,
        cancel_event: threading.Event | None = None,
        ssh_kwargs: dict[str, Any] | None = None,
) -> DispatchSummary:
    """Run *script* on every host with at most *concurrency* open sessions.

    Args:
        hosts: Hostnames in dispatch order (duplicates run twice).
        script: Script snapshot shared by every job.
        jumpbox: Optional bastion host used for every connection.
        concurrency: Number of parallel workers.
        connect_timeout: Per-connection timeout in seconds.
        timeout: Optional per-host overall execution timeout in seconds.
        reporter: Receives each result as soon as it completes.
        execute: Executor callable; defaults to :func:`run_remote_script`.
        cancel_event: Shared cancellation signal.
        ssh_kwargs: Extra keyword arguments for the executor (user, key, ...).

    Returns:
        DispatchSummary with one result per attempted host.

    Raises:
        InvalidConcurrency: If *concurrency* is not a positive integer.
            Raised before any executor call.
        InvalidTimeout: If a timeout is not a positive integer.
    """
    dispatcher = Dispatcher(
        WorkerPoolConfig(concurrency=concurrency, connect_timeout=connect_timeout, timeout=timeout),
        execute=execute,
        reporter=reporter,
        cancel_event=cancel_event,
        ssh_kwargs=ssh_kwargs,
    )
    jobs = [Job(host=host, script=script, jumpbox=jumpbox) for host in hosts]
    return dispatcher.run(jobs)
