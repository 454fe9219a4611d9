"""Test job scheduling: slot limits, FIFO order, cancellation and conflicts."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from conftest import wait_for

from pitchshift_toolkit.core.base import ConflictError, ErrorKind, JobKind, JobState, NotFoundError
from pitchshift_toolkit.core.job import DownloadParams, Job, JobRequest, PitchShiftParams
from pitchshift_toolkit.core.scheduler import JobScheduler


def _request(output: Path) -> JobRequest:
    return JobRequest(
        kind=JobKind.PITCH_SHIFT,
        input="in.wav",
        parameters=PitchShiftParams(semitone_shift=1, output_format="mp3", output_path=output),
    )


class RecordingExecutor:
    """Fake job body that tracks concurrency and can be held open."""

    def __init__(self, hold: float = 0.0) -> None:
        self.hold = hold
        self.started: list[str] = []
        self.active = 0
        self.peak = 0
        self.release = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, job: Job) -> None:
        with self._lock:
            self.started.append(job.id)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.hold:
                time.sleep(self.hold)
            else:
                self.release.wait(5.0)
            if job.cancel_event.is_set():
                job.cancel()
            else:
                job.succeed(Path(job.request.input))
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def scheduler_factory():
    schedulers: list[JobScheduler] = []

    def _make(execute, **kwargs) -> JobScheduler:
        scheduler = JobScheduler(execute, **kwargs)
        schedulers.append(scheduler)
        return scheduler

    yield _make

    for scheduler in schedulers:
        scheduler.shutdown()


def test_running_jobs_never_exceed_limit(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor(hold=0.05)
    scheduler = scheduler_factory(executor, max_concurrent=3)

    job_ids = [scheduler.submit(_request(tmp_path / f"out{i}.mp3")) for i in range(10)]
    snapshots = [scheduler.wait(job_id, timeout=10.0) for job_id in job_ids]

    assert all(s.state is JobState.SUCCEEDED for s in snapshots)
    assert executor.peak <= 3
    assert executor.peak > 1
    assert scheduler.running_count == 0
    assert scheduler.queued_count == 0


def test_jobs_dispatch_in_submission_order(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor(hold=0.01)
    scheduler = scheduler_factory(executor, max_concurrent=1)

    job_ids = [scheduler.submit(_request(tmp_path / f"out{i}.mp3")) for i in range(5)]
    for job_id in job_ids:
        scheduler.wait(job_id, timeout=5.0)

    assert executor.started == job_ids


def test_next_queued_job_starts_when_slot_frees(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor()
    scheduler = scheduler_factory(executor, max_concurrent=1)

    first = scheduler.submit(_request(tmp_path / "a.mp3"))
    second = scheduler.submit(_request(tmp_path / "b.mp3"))
    assert wait_for(lambda: executor.started == [first])
    assert scheduler.status(second).state is JobState.QUEUED

    executor.release.set()

    assert scheduler.wait(second, timeout=5.0).state is JobState.SUCCEEDED
    assert executor.started == [first, second]


def test_cancel_queued_job_skips_execution(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor()
    completed: list[str] = []
    scheduler = scheduler_factory(executor, max_concurrent=1, on_terminal=lambda job: completed.append(job.id))

    first = scheduler.submit(_request(tmp_path / "a.mp3"))
    queued = scheduler.submit(_request(tmp_path / "b.mp3"))
    scheduler.cancel(queued)

    snapshot = scheduler.status(queued)
    assert snapshot.state is JobState.CANCELLED
    assert snapshot.started_at is None
    assert snapshot.error is not None
    assert snapshot.error.kind is ErrorKind.CANCELLED
    assert completed == [queued]

    executor.release.set()
    scheduler.wait(first, timeout=5.0)
    assert queued not in executor.started


def test_cancel_running_job_signals_worker(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor()
    scheduler = scheduler_factory(executor, max_concurrent=1)

    job_id = scheduler.submit(_request(tmp_path / "a.mp3"))
    assert wait_for(lambda: scheduler.status(job_id).state is JobState.RUNNING)

    scheduler.cancel(job_id)
    executor.release.set()

    assert scheduler.wait(job_id, timeout=5.0).state is JobState.CANCELLED


def test_cancel_finished_job_is_a_no_op(scheduler_factory, tmp_path: Path) -> None:
    scheduler = scheduler_factory(RecordingExecutor(hold=0.01), max_concurrent=1)

    job_id = scheduler.submit(_request(tmp_path / "a.mp3"))
    scheduler.wait(job_id, timeout=5.0)
    scheduler.cancel(job_id)

    assert scheduler.status(job_id).state is JobState.SUCCEEDED


def test_output_path_conflict_while_in_flight(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor()
    scheduler = scheduler_factory(executor, max_concurrent=1)
    output = tmp_path / "shared.mp3"

    first = scheduler.submit(_request(output))
    with pytest.raises(ConflictError):
        scheduler.submit(_request(output))

    executor.release.set()
    scheduler.wait(first, timeout=5.0)
    second = scheduler.submit(_request(output))
    assert scheduler.wait(second, timeout=5.0).state is JobState.SUCCEEDED


def test_downloads_do_not_claim_output_paths(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor(hold=0.01)
    scheduler = scheduler_factory(executor, max_concurrent=1)

    def download() -> JobRequest:
        return JobRequest(
            kind=JobKind.DOWNLOAD,
            input="https://youtu.be/abc",
            parameters=DownloadParams(output_dir=tmp_path, audio_format="mp3"),
        )

    ids = [scheduler.submit(download()), scheduler.submit(download())]

    assert all(scheduler.wait(job_id, timeout=5.0).state is JobState.SUCCEEDED for job_id in ids)


def test_worker_exception_fails_job(scheduler_factory, tmp_path: Path) -> None:
    def explode(job: Job) -> None:
        msg = "boom"
        raise RuntimeError(msg)

    scheduler = scheduler_factory(explode, max_concurrent=1)

    job_id = scheduler.submit(_request(tmp_path / "a.mp3"))
    snapshot = scheduler.wait(job_id, timeout=5.0)

    assert snapshot.state is JobState.FAILED
    assert snapshot.error is not None
    assert "boom" in snapshot.error.message


def test_worker_that_leaves_job_running_fails_it(scheduler_factory, tmp_path: Path) -> None:
    scheduler = scheduler_factory(lambda job: None, max_concurrent=1)

    job_id = scheduler.submit(_request(tmp_path / "a.mp3"))

    assert scheduler.wait(job_id, timeout=5.0).state is JobState.FAILED


def test_unknown_job_ids(scheduler_factory) -> None:
    scheduler = scheduler_factory(RecordingExecutor(), max_concurrent=1)

    with pytest.raises(NotFoundError):
        scheduler.status("missing")
    with pytest.raises(NotFoundError):
        scheduler.cancel("missing")
    with pytest.raises(NotFoundError):
        scheduler.acknowledge("missing")


def test_acknowledge_evicts_only_finished_jobs(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor()
    scheduler = scheduler_factory(executor, max_concurrent=1)

    job_id = scheduler.submit(_request(tmp_path / "a.mp3"))
    assert scheduler.acknowledge(job_id) is False

    executor.release.set()
    scheduler.wait(job_id, timeout=5.0)
    assert scheduler.acknowledge(job_id) is True
    with pytest.raises(NotFoundError):
        scheduler.status(job_id)


def test_finished_jobs_expire_after_retention(scheduler_factory, tmp_path: Path) -> None:
    scheduler = scheduler_factory(RecordingExecutor(hold=0.01), max_concurrent=1, retention_seconds=0.05)

    job_id = scheduler.submit(_request(tmp_path / "a.mp3"))
    scheduler.wait(job_id, timeout=5.0)
    time.sleep(0.1)

    assert scheduler.jobs() == []
    with pytest.raises(NotFoundError):
        scheduler.status(job_id)


def test_shutdown_cancels_queued_jobs(scheduler_factory, tmp_path: Path) -> None:
    executor = RecordingExecutor()
    scheduler = scheduler_factory(executor, max_concurrent=1)

    running = scheduler.submit(_request(tmp_path / "a.mp3"))
    queued = scheduler.submit(_request(tmp_path / "b.mp3"))
    assert wait_for(lambda: executor.started == [running])

    scheduler.shutdown(wait=False)
    executor.release.set()

    assert scheduler.status(queued).state is JobState.CANCELLED
    assert scheduler.wait(running, timeout=5.0).state is JobState.CANCELLED
    assert executor.started == [running]


def test_default_limit_is_at_least_one(scheduler_factory) -> None:
    scheduler = scheduler_factory(RecordingExecutor())

    assert scheduler.max_concurrent >= 1
