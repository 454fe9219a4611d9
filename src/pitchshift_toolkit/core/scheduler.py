"""Bounded FIFO scheduling of jobs onto a worker pool."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from .base import ConflictError, ErrorKind, JobError, JobState, NotFoundError, ProcessingError
from .capacity import get_safe_worker_count
from .job import Job, JobSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from .job import JobRequest

LOG = logging.getLogger(__name__)


class JobScheduler:
    """
    Accept job submissions and run at most ``max_concurrent`` of them at once.

    Jobs are dispatched in submission order. A job is marked Running when it
    is handed a slot; when it reaches a terminal state its slot is freed and
    the oldest queued job is promoted immediately. Terminal jobs stay
    queryable until acknowledged or until ``retention_seconds`` have passed.
    """

    def __init__(
        self,
        execute: Callable[[Job], object],
        *,
        max_concurrent: int | None = None,
        retention_seconds: float = 600.0,
        on_terminal: Callable[[Job], None] | None = None,
    ) -> None:
        self._execute = execute
        self._on_terminal = on_terminal
        self._limit = get_safe_worker_count(max_concurrent)
        self._retention = retention_seconds
        self._executor = ThreadPoolExecutor(max_workers=self._limit, thread_name_prefix="pitchshift-job")
        self._jobs: dict[str, Job] = {}
        self._pending: deque[Job] = deque()
        self._running: set[str] = set()
        self._outputs: dict[Path, str] = {}
        self._lock = threading.Lock()
        self._closed = False
        LOG.debug("Scheduler ready with %d slots", self._limit)

    @property
    def max_concurrent(self) -> int:
        return self._limit

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, request: JobRequest) -> str:
        """
        Queue ``request`` and return its job id.

        Raises:
            ConflictError: Another queued or running job writes the same output path
            ProcessingError: The scheduler has been shut down

        """
        with self._lock:
            if self._closed:
                msg = "Scheduler is shut down"
                raise ProcessingError(msg)
            self._evict_expired_locked()

            output_key = request.output_key
            if output_key is not None:
                holder = self._outputs.get(output_key)
                if holder is not None:
                    msg = f"Output {output_key} is already claimed by job {holder}"
                    raise ConflictError(msg, file_path=output_key)
                self._outputs[output_key] = request.id

            job = Job(request)
            self._jobs[job.id] = job
            self._pending.append(job)
            LOG.info("Queued %s job %s (%d waiting)", request.kind.value, job.id, len(self._pending))
            self._dispatch_locked()
        return job.id

    def cancel(self, job_id: str) -> None:
        """
        Cancel a job.

        A queued job becomes Cancelled at once without ever starting. A
        running job has its process tree terminated and becomes Cancelled
        when the worker unwinds. Cancelling a finished job does nothing.

        Raises:
            NotFoundError: Unknown job id

        """
        cancelled_queued = False
        with self._lock:
            job = self._get_locked(job_id)
            state = job.state
            if state is JobState.QUEUED and job in self._pending:
                self._pending.remove(job)
                cancelled_queued = job.cancel("Cancelled before start")
                self._release_output_locked(job)
            elif state is JobState.RUNNING:
                LOG.info("Cancelling running job %s", job_id)
                job.request_cancel()
            else:
                LOG.debug("Job %s is already %s", job_id, state.value)

        if cancelled_queued:
            LOG.info("Cancelled queued job %s", job_id)
            self._notify_terminal(job)
            job.done.set()

    def status(self, job_id: str) -> JobSnapshot:
        """
        Snapshot of a tracked job.

        Raises:
            NotFoundError: Unknown or evicted job id

        """
        with self._lock:
            self._evict_expired_locked()
            job = self._get_locked(job_id)
        return job.snapshot()

    def jobs(self) -> list[JobSnapshot]:
        """Snapshots of all tracked jobs in submission order."""
        with self._lock:
            self._evict_expired_locked()
            tracked = list(self._jobs.values())
        return [job.snapshot() for job in tracked]

    def acknowledge(self, job_id: str) -> bool:
        """
        Stop tracking a finished job.

        Returns:
            True if the job was removed, False if it has not finished yet

        Raises:
            NotFoundError: Unknown job id

        """
        with self._lock:
            job = self._get_locked(job_id)
            if not job.state.is_terminal:
                return False
            del self._jobs[job_id]
        LOG.debug("Job %s acknowledged", job_id)
        return True

    def wait(self, job_id: str, timeout: float | None = None) -> JobSnapshot:
        """Block until the job is terminal or ``timeout`` elapses, then return a snapshot."""
        with self._lock:
            job = self._get_locked(job_id)
        job.done.wait(timeout)
        return job.snapshot()

    def shutdown(self, *, wait: bool = True, cancel_running: bool = True) -> None:
        """
        Stop accepting work and cancel everything still queued.

        Args:
            wait: Block until running jobs have finished
            cancel_running: Also cancel jobs that are already running

        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending)
            self._pending.clear()
            for job in pending:
                job.cancel("Scheduler shut down")
                self._release_output_locked(job)
            running = [self._jobs[job_id] for job_id in self._running if job_id in self._jobs]

        LOG.info("Shutting down scheduler: %d queued cancelled, %d running", len(pending), len(running))
        for job in pending:
            self._notify_terminal(job)
            job.done.set()
        if cancel_running:
            for job in running:
                job.request_cancel()
        self._executor.shutdown(wait=wait)

    def _get_locked(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            msg = f"Unknown job: {job_id}"
            raise NotFoundError(msg)
        return job

    def _dispatch_locked(self) -> None:
        """Promote queued jobs into free slots, oldest first."""
        while not self._closed and self._pending and len(self._running) < self._limit:
            job = self._pending.popleft()
            if not job.start():
                continue
            self._running.add(job.id)
            LOG.debug("Dispatching job %s (%d/%d slots busy)", job.id, len(self._running), self._limit)
            self._executor.submit(self._run_job, job)

    def _run_job(self, job: Job) -> None:
        try:
            self._execute(job)
        except Exception as e:
            LOG.exception("Job %s raised out of its worker", job.id)
            job.fail(JobError(kind=ErrorKind.PROCESS_FAILURE, message=f"Unexpected error: {e}"))
        finally:
            if not job.state.is_terminal:
                job.fail(JobError(kind=ErrorKind.PROCESS_FAILURE, message="Job finished without a result"))
            with self._lock:
                self._running.discard(job.id)
                self._release_output_locked(job)
                self._dispatch_locked()
            self._notify_terminal(job)
            job.done.set()

    def _release_output_locked(self, job: Job) -> None:
        output_key = job.request.output_key
        if output_key is not None and self._outputs.get(output_key) == job.id:
            del self._outputs[output_key]

    def _evict_expired_locked(self) -> None:
        if self._retention < 0:
            return
        cutoff = time.time() - self._retention
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.state.is_terminal and (job.finished_at or 0.0) < cutoff
        ]
        for job_id in expired:
            LOG.debug("Evicting job %s after retention window", job_id)
            del self._jobs[job_id]

    def _notify_terminal(self, job: Job) -> None:
        if self._on_terminal is None:
            return
        try:
            self._on_terminal(job)
        except Exception:
            LOG.exception("Completion callback failed for job %s", job.id)
