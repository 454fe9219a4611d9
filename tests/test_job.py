"""Test request validation, the job state machine and ConversionJob cleanup."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from pitchshift_toolkit.config import PitchShiftConfig
from pitchshift_toolkit.core.base import (
    ErrorKind,
    FailureSubtype,
    InvalidInputError,
    JobError,
    JobKind,
    JobState,
    OutputIntegrityError,
    ToolNotFoundError,
)
from pitchshift_toolkit.core.file_manager import FileManager
from pitchshift_toolkit.core.job import ConversionJob, Job, JobRequest, PitchShiftParams
from pitchshift_toolkit.core.process import STDOUT, ExitResult
from pitchshift_toolkit.core.tools import ToolName, ToolSpec

ALLOWED = ["youtube.com"]


class TestPitchShiftRequest:
    """Validation performed before a pitch-shift job is queued."""

    def test_default_output_path(self, input_file: Path) -> None:
        request = JobRequest.pitch_shift(input_file, 3, ".MP3")

        assert request.kind is JobKind.PITCH_SHIFT
        assert request.input == str(input_file.resolve())
        assert request.parameters == PitchShiftParams(3, "mp3", input_file.resolve().with_name("song_pitch+3.mp3"))
        assert request.output_key == request.parameters.output_path

    def test_negative_shift_in_default_name(self, input_file: Path) -> None:
        request = JobRequest.pitch_shift(input_file, -5, "wav")

        assert request.output_key.name == "song_pitch-5.wav"

    @pytest.mark.parametrize("shift", [13, -13, 1.5, True, "3"])
    def test_rejects_bad_shift(self, input_file: Path, shift: Any) -> None:
        with pytest.raises(InvalidInputError):
            JobRequest.pitch_shift(input_file, shift, "mp3")

    def test_rejects_unknown_format(self, input_file: Path) -> None:
        with pytest.raises(InvalidInputError, match="Unsupported output format"):
            JobRequest.pitch_shift(input_file, 1, "ogg")

    def test_rejects_missing_input(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidInputError, match="does not exist"):
            JobRequest.pitch_shift(tmp_path / "absent.wav", 1, "mp3")

    def test_rejects_output_equal_to_input(self, input_file: Path) -> None:
        with pytest.raises(InvalidInputError, match="must differ"):
            JobRequest.pitch_shift(input_file, 1, "wav", output_path=input_file)

    def test_rejects_directory_output(self, input_file: Path, tmp_path: Path) -> None:
        with pytest.raises(InvalidInputError, match="is a directory"):
            JobRequest.pitch_shift(input_file, 1, "wav", output_path=tmp_path)

    def test_requests_get_distinct_ids(self, input_file: Path) -> None:
        assert JobRequest.pitch_shift(input_file, 1, "mp3").id != JobRequest.pitch_shift(input_file, 1, "mp3").id


class TestDownloadRequest:
    """Validation performed before a download job is queued."""

    def test_valid_request(self, tmp_path: Path) -> None:
        request = JobRequest.download("https://youtu.be/abc", tmp_path / "new", allowed_hosts=["youtu.be"])

        assert request.kind is JobKind.DOWNLOAD
        assert request.parameters.output_dir == (tmp_path / "new").resolve()
        assert request.parameters.audio_format == "mp3"
        assert request.output_key is None

    def test_rejects_file_as_output_dir(self, input_file: Path) -> None:
        with pytest.raises(InvalidInputError, match="not a directory"):
            JobRequest.download("https://youtube.com/watch?v=1", input_file, allowed_hosts=ALLOWED)

    def test_rejects_host(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidInputError):
            JobRequest.download("https://example.com/a", tmp_path, allowed_hosts=ALLOWED)


class TestJobStateMachine:
    """Transitions of the job lifecycle."""

    @pytest.fixture
    def job(self, input_file: Path) -> Job:
        return Job(JobRequest.pitch_shift(input_file, 2, "mp3"))

    def test_success_path(self, job: Job, tmp_path: Path) -> None:
        assert job.state is JobState.QUEUED
        assert job.start()
        job.set_pid(4242)
        assert job.snapshot().pid == 4242

        assert job.succeed(tmp_path / "out.mp3")

        snapshot = job.snapshot()
        assert snapshot.state is JobState.SUCCEEDED
        assert snapshot.progress == 1.0
        assert snapshot.pid is None
        assert snapshot.started_at is not None
        assert snapshot.finished_at is not None
        assert snapshot.is_terminal

    def test_terminal_states_are_final(self, job: Job, tmp_path: Path) -> None:
        job.start()
        job.fail(JobError(kind=ErrorKind.PROCESS_FAILURE, message="boom"))

        assert not job.succeed(tmp_path / "out.mp3")
        assert not job.cancel()
        assert not job.start()
        assert job.state is JobState.FAILED
        assert job.snapshot().error.message == "boom"

    def test_queued_job_cannot_finish_without_running(self, job: Job, tmp_path: Path) -> None:
        assert not job.succeed(tmp_path / "out.mp3")
        assert not job.fail(JobError(kind=ErrorKind.PROCESS_FAILURE, message="x"))
        assert job.state is JobState.QUEUED

    def test_cancel_queued(self, job: Job) -> None:
        assert job.cancel()

        snapshot = job.snapshot()
        assert snapshot.state is JobState.CANCELLED
        assert snapshot.error.kind is ErrorKind.CANCELLED
        assert snapshot.started_at is None
        assert job.cancel_event.is_set()
        assert not job.start()

    def test_progress_only_moves_forward_while_running(self, job: Job) -> None:
        assert not job.update_progress(0.1)
        job.start()

        assert job.update_progress(0.3)
        assert not job.update_progress(0.2)
        assert not job.update_progress(0.3)
        assert job.update_progress(0.9)
        assert job.snapshot().progress == 0.9

    def test_set_pid_ignored_when_not_running(self, job: Job) -> None:
        job.set_pid(99)

        assert job.snapshot().pid is None

    def test_snapshot_to_dict(self, job: Job) -> None:
        job.cancel("stopped by user")

        data = job.snapshot().to_dict()

        assert data["state"] == "cancelled"
        assert data["kind"] == "pitch_shift"
        assert data["error"]["kind"] == "cancelled"
        assert data["error"]["message"] == "stopped by user"
        assert data["result"] is None


def _exit(code: int = 0, stdout: str = "", stderr: str = "") -> ExitResult:
    return ExitResult(command=["ffmpeg"], return_code=code, stdout_tail=stdout, stderr_tail=stderr, duration=0.1)


@pytest.fixture
def locator() -> Mock:
    mock = Mock()
    mock.resolve.side_effect = lambda tool: ToolSpec(name=tool, resolved_path=Path(f"/stub/{tool.executable}"))
    return mock


@pytest.fixture
def make_conversion(locator: Mock, prober: Mock, input_file: Path):
    def _make(runner: Mock, semitones: int = 2, output_format: str = "mp3") -> tuple[ConversionJob, list[float]]:
        job = Job(JobRequest.pitch_shift(input_file, semitones, output_format))
        emitted: list[float] = []
        conversion = ConversionJob(
            job,
            locator=locator,
            runner=runner,
            prober=prober,
            file_manager=FileManager(),
            config=PitchShiftConfig(),
            on_progress=lambda _job_id, value: emitted.append(value),
        )
        return conversion, emitted

    return _make


def _leftovers(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if p.name.startswith(".pitchshift-"))


class TestConversionJob:
    """Work performed by a single running job."""

    def test_success_writes_output_and_reports_progress(self, make_conversion, tmp_path: Path) -> None:
        def fake_run(_executable, args, **kwargs):
            kwargs["on_spawn"](1234)
            kwargs["on_output_line"](STDOUT, "out_time_us=500000")
            Path(args[-1]).write_bytes(b"pitched")
            return _exit()

        runner = Mock()
        runner.run.side_effect = fake_run
        conversion, emitted = make_conversion(runner)

        snapshot = conversion.run()

        assert snapshot.state is JobState.SUCCEEDED
        assert snapshot.result.read_bytes() == b"pitched"
        assert emitted == [0.5]
        assert runner.run.call_args.args[0] == Path("/stub/ffmpeg")
        assert runner.run.call_args.kwargs["cancel_event"] is conversion.job.cancel_event
        assert _leftovers(tmp_path) == []

    def test_nonzero_exit_fails_and_cleans_up(self, make_conversion, tmp_path: Path) -> None:
        def fake_run(_executable, args, **_kwargs):
            Path(args[-1]).write_bytes(b"half")
            return _exit(1, stderr="Unknown encoder 'libmp3lame'")

        runner = Mock()
        runner.run.side_effect = fake_run
        conversion, _ = make_conversion(runner)

        snapshot = conversion.run()

        assert snapshot.state is JobState.FAILED
        assert snapshot.error.kind is ErrorKind.PROCESS_FAILURE
        assert snapshot.error.subtype is FailureSubtype.UNSUPPORTED_FORMAT
        assert snapshot.error.return_code == 1
        assert "libmp3lame" in snapshot.error.stderr_tail
        assert not (tmp_path / "song_pitch+2.mp3").exists()
        assert _leftovers(tmp_path) == []

    def test_empty_output_is_integrity_error(self, make_conversion) -> None:
        def fake_run(_executable, args, **_kwargs):
            Path(args[-1]).touch()
            return _exit()

        runner = Mock()
        runner.run.side_effect = fake_run
        conversion, _ = make_conversion(runner)

        snapshot = conversion.run()

        assert snapshot.state is JobState.FAILED
        assert snapshot.error.kind is ErrorKind.OUTPUT_INTEGRITY

    def test_cancel_during_run_is_cancelled_not_failed(self, make_conversion, tmp_path: Path) -> None:
        conversion = None

        def fake_run(_executable, args, **_kwargs):
            Path(args[-1]).write_bytes(b"partial")
            conversion.job.request_cancel()
            return _exit(255, stderr="Exiting normally, received signal 15.")

        runner = Mock()
        runner.run.side_effect = fake_run
        conversion, _ = make_conversion(runner)

        snapshot = conversion.run()

        assert snapshot.state is JobState.CANCELLED
        assert snapshot.error.kind is ErrorKind.CANCELLED
        assert _leftovers(tmp_path) == []

    def test_missing_transcoder(self, make_conversion, locator: Mock) -> None:
        locator.resolve.side_effect = ToolNotFoundError("transcoder")
        runner = Mock()
        conversion, _ = make_conversion(runner)

        snapshot = conversion.run()

        assert snapshot.state is JobState.FAILED
        assert snapshot.error.kind is ErrorKind.TOOL_NOT_FOUND
        runner.run.assert_not_called()

    def test_unexpected_exception_becomes_failure(self, make_conversion, tmp_path: Path) -> None:
        def fake_run(_executable, args, **_kwargs):
            Path(args[-1]).write_bytes(b"partial")
            msg = "disk on fire"
            raise RuntimeError(msg)

        runner = Mock()
        runner.run.side_effect = fake_run
        conversion, _ = make_conversion(runner)

        snapshot = conversion.run()

        assert snapshot.state is JobState.FAILED
        assert "disk on fire" in snapshot.error.message
        assert _leftovers(tmp_path) == []

    def test_already_cancelled_job_does_nothing(self, make_conversion) -> None:
        runner = Mock()
        conversion, _ = make_conversion(runner)
        conversion.job.cancel()

        snapshot = conversion.run()

        assert snapshot.state is JobState.CANCELLED
        runner.run.assert_not_called()

    def test_copy_when_nothing_changes(self, make_conversion, input_file: Path) -> None:
        runner = Mock()
        conversion, _ = make_conversion(runner, semitones=0, output_format="wav")

        snapshot = conversion.run()

        assert snapshot.state is JobState.SUCCEEDED
        assert snapshot.result.read_bytes() == input_file.read_bytes()
        runner.run.assert_not_called()


class TestFileManager:
    """Staging and finalization helpers."""

    def test_verify_artifact(self, tmp_path: Path) -> None:
        manager = FileManager()
        full = tmp_path / "full.mp3"
        full.write_bytes(b"abc")
        empty = tmp_path / "empty.mp3"
        empty.touch()

        assert manager.verify_artifact(full) == 3
        with pytest.raises(OutputIntegrityError, match="empty"):
            manager.verify_artifact(empty)
        with pytest.raises(OutputIntegrityError, match="not created"):
            manager.verify_artifact(tmp_path / "absent.mp3")

    def test_finalize_replaces_target(self, tmp_path: Path) -> None:
        manager = FileManager()
        staging = manager.staging_path(tmp_path / "out" / "song.mp3", "abc")
        staging.parent.mkdir()
        staging.write_bytes(b"new")
        target = tmp_path / "out" / "song.mp3"
        target.write_bytes(b"old")

        manager.finalize(staging, target)

        assert target.read_bytes() == b"new"
        assert not staging.exists()
        assert manager.get_session_summary()["outputs_written"] == 1

    def test_reserve_unique_path(self, tmp_path: Path) -> None:
        manager = FileManager()
        (tmp_path / "Song.mp3").write_bytes(b"keep")
        (tmp_path / "Song (1).mp3").touch()

        assert manager.reserve_unique_path(tmp_path / "Other.mp3") == tmp_path / "Other.mp3"
        assert manager.reserve_unique_path(tmp_path / "Song.mp3") == tmp_path / "Song (2).mp3"
        # Reserved names exist on disk, so the next caller skips them
        assert manager.reserve_unique_path(tmp_path / "Other.mp3") == tmp_path / "Other (1).mp3"
        assert (tmp_path / "Song.mp3").read_bytes() == b"keep"

    def test_concurrent_reservations_never_share_a_name(self, tmp_path: Path) -> None:
        manager = FileManager()
        barrier = threading.Barrier(8)

        def reserve() -> Path:
            barrier.wait(timeout=5)
            return manager.reserve_unique_path(tmp_path / "Title.mp3")

        with ThreadPoolExecutor(max_workers=8) as executor:
            names = list(executor.map(lambda _: reserve(), range(8)))

        assert len(set(names)) == 8
        assert sorted(p.name for p in tmp_path.iterdir()) == sorted(p.name for p in names)

    def test_session_log_is_bounded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("pitchshift_toolkit.core.file_manager.SESSION_LOG_LIMIT", 3)
        manager = FileManager()
        source = tmp_path / "a.wav"
        source.write_bytes(b"x")

        for n in range(5):
            manager.copy_to_staging(source, tmp_path / f"copy{n}.part")

        summary = manager.get_session_summary()
        assert summary["total_operations"] == 5
        assert summary["successful_operations"] == 5
        assert [op.target_path.name for op in summary["recent_operations"]] == ["copy2.part", "copy3.part", "copy4.part"]

    def test_discard_file_and_directory(self, tmp_path: Path) -> None:
        manager = FileManager()
        staging_dir = manager.staging_dir(tmp_path, "job1")
        staging_dir.mkdir()
        (staging_dir / "partial.webm").write_bytes(b"x")
        loose = tmp_path / "loose.part"
        loose.write_bytes(b"x")

        manager.discard(staging_dir)
        manager.discard(loose)
        manager.discard(tmp_path / "never-existed")

        assert list(tmp_path.iterdir()) == []
