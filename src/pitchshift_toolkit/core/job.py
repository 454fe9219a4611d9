"""Job requests, the job state machine and the work a single job performs."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union, cast

from ..config.constants import SEMITONE_MAX, SEMITONE_MIN, SUPPORTED_OUTPUT_FORMATS
from .base import (
    ErrorKind,
    InvalidInputError,
    JobCancelledError,
    JobError,
    JobKind,
    JobState,
    OutputIntegrityError,
    ProcessFailureError,
    ProcessingError,
    ToolNotFoundError,
)
from .diagnostics import classify_stderr, truncate_tail
from .downloader import build_download_args, find_artifact, sanitize_filename, validate_download_url
from .ffmpeg import FFmpegCommandBuilder
from .progress import DownloaderProgressParser, ProgressReporter, TranscoderProgressParser
from .tools import ToolName

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from ..config import PitchShiftConfig
    from .ffmpeg import FFmpegProbe
    from .file_manager import FileManager
    from .process import ExitResult, ProcessRunner
    from .tools import ToolLocator, ToolSpec

LOG = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.QUEUED: {JobState.RUNNING, JobState.CANCELLED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED},
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
    JobState.CANCELLED: set(),
}


@dataclass(frozen=True)
class PitchShiftParams:
    """Parameters of a pitch-shift job."""

    semitone_shift: int
    output_format: str
    output_path: Path


@dataclass(frozen=True)
class DownloadParams:
    """Parameters of a download job."""

    output_dir: Path
    audio_format: str


JobParams = Union[PitchShiftParams, DownloadParams]


def validate_semitone_shift(value: object) -> int:
    """Check that ``value`` is a whole number of semitones within one octave."""
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Semitone shift must be an integer, got {value!r}"
        raise InvalidInputError(msg)
    if not SEMITONE_MIN <= value <= SEMITONE_MAX:
        msg = f"Semitone shift must be between {SEMITONE_MIN} and {SEMITONE_MAX}, got {value}"
        raise InvalidInputError(msg)
    return value


def validate_output_format(value: str) -> str:
    """Normalize an output format name and check it is supported."""
    fmt = str(value).strip().lower().lstrip(".")
    if fmt not in SUPPORTED_OUTPUT_FORMATS:
        msg = f"Unsupported output format '{value}'. Valid options: {', '.join(SUPPORTED_OUTPUT_FORMATS)}"
        raise InvalidInputError(msg)
    return fmt


def default_output_path(input_path: Path, semitone_shift: int, output_format: str) -> Path:
    """Output path next to the input, e.g. ``song_pitch+3.mp3``."""
    return input_path.with_name(f"{input_path.stem}_pitch{semitone_shift:+d}.{output_format}")


@dataclass(frozen=True)
class JobRequest:
    """
    An immutable unit of work submitted by the caller.

    Use the ``pitch_shift`` and ``download`` constructors, which validate the
    parameters before anything is queued.
    """

    kind: JobKind
    input: str
    parameters: JobParams
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def pitch_shift(
        cls,
        input_path: str | Path,
        semitone_shift: int,
        output_format: str,
        output_path: str | Path | None = None,
    ) -> JobRequest:
        """
        Build a validated pitch-shift request.

        Raises:
            InvalidInputError: Bad shift, unknown format, missing input, or an
                output path that would overwrite the input

        """
        shift = validate_semitone_shift(semitone_shift)
        fmt = validate_output_format(output_format)

        source = Path(input_path).expanduser()
        if not source.is_file():
            msg = f"Input file does not exist: {source}"
            raise InvalidInputError(msg, file_path=source)
        source = source.resolve()

        target = Path(output_path).expanduser() if output_path else default_output_path(source, shift, fmt)
        target = target.resolve()
        if target == source:
            msg = f"Output path must differ from the input: {target}"
            raise InvalidInputError(msg, file_path=target)
        if target.is_dir():
            msg = f"Output path is a directory: {target}"
            raise InvalidInputError(msg, file_path=target)

        return cls(
            kind=JobKind.PITCH_SHIFT,
            input=str(source),
            parameters=PitchShiftParams(semitone_shift=shift, output_format=fmt, output_path=target),
        )

    @classmethod
    def download(
        cls,
        url: str,
        output_dir: str | Path,
        *,
        allowed_hosts: Iterable[str],
        audio_format: str = "mp3",
    ) -> JobRequest:
        """
        Build a validated download request.

        Raises:
            InvalidInputError: The URL is not allowed or ``output_dir`` is not a directory

        """
        checked_url = validate_download_url(url, allowed_hosts)
        fmt = validate_output_format(audio_format)

        directory = Path(output_dir).expanduser().resolve()
        if directory.exists() and not directory.is_dir():
            msg = f"Output directory is not a directory: {directory}"
            raise InvalidInputError(msg, file_path=directory)

        return cls(
            kind=JobKind.DOWNLOAD,
            input=checked_url,
            parameters=DownloadParams(output_dir=directory, audio_format=fmt),
        )

    @property
    def output_key(self) -> Path | None:
        """Resolved output path claimed by this request, if it names one up front."""
        if isinstance(self.parameters, PitchShiftParams):
            return self.parameters.output_path
        return None


@dataclass(frozen=True)
class JobSnapshot:
    """Point-in-time view of a job, safe to hand across threads."""

    id: str
    kind: JobKind
    input: str
    state: JobState
    progress: float | None
    result: Path | None
    error: JobError | None
    pid: int | None
    created_at: float
    started_at: float | None
    finished_at: float | None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "input": self.input,
            "state": self.state.value,
            "progress": self.progress,
            "result": str(self.result) if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class Job:
    """
    Mutable lifecycle record of one request.

    All transitions go through ``_transition`` and follow
    Queued -> Running -> {Succeeded, Failed, Cancelled}, plus
    Queued -> Cancelled. The scheduler sets ``done`` once a terminal job has
    released its slot and its output path.
    """

    def __init__(self, request: JobRequest) -> None:
        self.request = request
        self.cancel_event = threading.Event()
        self.done = threading.Event()
        self._state = JobState.QUEUED
        self._progress: float | None = None
        self._result: Path | None = None
        self._error: JobError | None = None
        self._pid: int | None = None
        self._created_at = time.time()
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._lock = threading.Lock()

    @property
    def id(self) -> str:
        return self.request.id

    @property
    def state(self) -> JobState:
        with self._lock:
            return self._state

    @property
    def finished_at(self) -> float | None:
        with self._lock:
            return self._finished_at

    def _transition(self, new_state: JobState) -> bool:
        """Move to ``new_state`` if allowed; caller holds the lock."""
        if new_state not in _ALLOWED_TRANSITIONS[self._state]:
            LOG.debug("Job %s: ignoring transition %s -> %s", self.id, self._state.value, new_state.value)
            return False
        LOG.debug("Job %s: %s -> %s", self.id, self._state.value, new_state.value)
        self._state = new_state
        if new_state is JobState.RUNNING:
            self._started_at = time.time()
        elif new_state.is_terminal:
            self._finished_at = time.time()
            self._pid = None
        return True

    def start(self) -> bool:
        """Queued -> Running. False if the job was cancelled first."""
        with self._lock:
            return self._transition(JobState.RUNNING)

    def set_pid(self, pid: int) -> None:
        """Record the process currently driven by this job."""
        with self._lock:
            if self._state is JobState.RUNNING:
                self._pid = pid

    def update_progress(self, value: float) -> bool:
        """Store ``value`` if the job is running and it advances progress."""
        with self._lock:
            if self._state is not JobState.RUNNING:
                return False
            if self._progress is not None and value <= self._progress:
                return False
            self._progress = value
            return True

    def succeed(self, result: Path) -> bool:
        with self._lock:
            if not self._transition(JobState.SUCCEEDED):
                return False
            self._result = result
            self._progress = 1.0
        return True

    def fail(self, error: JobError) -> bool:
        with self._lock:
            if not self._transition(JobState.FAILED):
                return False
            self._error = error
        return True

    def cancel(self, message: str = "Job was cancelled") -> bool:
        """Move to Cancelled from Queued or Running."""
        self.cancel_event.set()
        with self._lock:
            if not self._transition(JobState.CANCELLED):
                return False
            self._error = JobError(kind=ErrorKind.CANCELLED, message=message)
        return True

    def request_cancel(self) -> None:
        """Ask the running work to stop; the worker performs the transition."""
        self.cancel_event.set()

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return JobSnapshot(
                id=self.id,
                kind=self.request.kind,
                input=self.request.input,
                state=self._state,
                progress=self._progress,
                result=self._result,
                error=self._error,
                pid=self._pid,
                created_at=self._created_at,
                started_at=self._started_at,
                finished_at=self._finished_at,
            )


class ConversionJob:
    """
    Perform the work of one Running job and record its terminal state.

    Every path that does not succeed removes the job's staging files, so a
    failed or cancelled job leaves nothing behind.
    """

    def __init__(
        self,
        job: Job,
        *,
        locator: ToolLocator,
        runner: ProcessRunner,
        prober: FFmpegProbe,
        file_manager: FileManager,
        config: PitchShiftConfig,
        on_progress: Callable[[str, float], None] | None = None,
    ) -> None:
        self.job = job
        self.locator = locator
        self.runner = runner
        self.prober = prober
        self.file_manager = file_manager
        self.config = config
        self.on_progress = on_progress
        self._cleanup: list[Path] = []

    def run(self) -> JobSnapshot:
        """Execute the job; never raises for job-level failures."""
        job = self.job
        request = job.request
        if job.state is JobState.QUEUED:
            job.start()
        if job.state is not JobState.RUNNING:
            return job.snapshot()
        LOG.info("Starting %s job %s for %s", request.kind.value, job.id, request.input)

        try:
            self._check_cancelled()
            if request.kind is JobKind.PITCH_SHIFT:
                result = self._run_pitch_shift()
            else:
                result = self._run_download()
        except JobCancelledError as e:
            self._discard_partial()
            job.cancel(e.message)
            LOG.info("Job %s cancelled", job.id)
        except ProcessingError as e:
            self._discard_partial()
            job.fail(e.to_job_error())
            LOG.error("Job %s failed: %s", job.id, e.message)
        except Exception as e:
            LOG.exception("Unexpected error in job %s", job.id)
            self._discard_partial()
            job.fail(JobError(kind=ErrorKind.PROCESS_FAILURE, message=f"Unexpected error: {e}"))
        else:
            if job.succeed(result):
                LOG.info("Job %s succeeded: %s", job.id, result)
        return job.snapshot()

    def _check_cancelled(self) -> None:
        if self.job.cancel_event.is_set():
            msg = "Job was cancelled"
            raise JobCancelledError(msg)

    def _emit_progress(self, job_id: str, value: float) -> None:
        if self.job.update_progress(value) and self.on_progress is not None:
            self.on_progress(job_id, value)

    def _discard_partial(self) -> None:
        for path in reversed(self._cleanup):
            self.file_manager.discard(path)
        self._cleanup.clear()

    def _run_pitch_shift(self) -> Path:
        params = cast("PitchShiftParams", self.job.request.parameters)
        source = Path(self.job.request.input)
        target = params.output_path

        _ensure_directory(target.parent)
        staging = self.file_manager.staging_path(target, self.job.id)
        self._cleanup.append(staging)

        if params.semitone_shift == 0 and source.suffix.lower().lstrip(".") == params.output_format:
            # Nothing to transform: the output is a copy of the input
            LOG.info("Job %s: no shift and same format, copying %s", self.job.id, source.name)
            self.file_manager.copy_to_staging(source, staging)
        else:
            transcoder = self.locator.resolve(ToolName.TRANSCODER)
            sample_rate, duration = self._probe_source(source)
            builder = FFmpegCommandBuilder(self.config)
            args = builder.build_pitch_shift_args(
                source,
                staging,
                semitones=params.semitone_shift,
                output_format=params.output_format,
                sample_rate=sample_rate,
            )
            reporter = ProgressReporter(self.job.id, TranscoderProgressParser(duration), self._emit_progress)
            self._run_tool(transcoder, args, reporter, timeout=self.config.conversion.timeout)

        self._check_cancelled()
        self.file_manager.verify_artifact(staging)
        self.file_manager.finalize(staging, target)
        self._cleanup.remove(staging)
        return target

    def _run_download(self) -> Path:
        params = cast("DownloadParams", self.job.request.parameters)
        download_config = self.config.download

        downloader = self.locator.resolve(ToolName.DOWNLOADER)
        ffmpeg_path: Path | None = None
        try:
            ffmpeg_path = self.locator.resolve(ToolName.TRANSCODER).resolved_path
        except ToolNotFoundError:
            LOG.warning("ffmpeg not found; yt-dlp will search for it on its own")

        _ensure_directory(params.output_dir)
        staging = self.file_manager.staging_dir(params.output_dir, self.job.id)
        self._cleanup.append(staging)
        _ensure_directory(staging)

        args = build_download_args(
            self.job.request.input,
            staging,
            title_template=download_config.title_template,
            audio_format=params.audio_format,
            ffmpeg_path=ffmpeg_path,
        )
        reporter = ProgressReporter(self.job.id, DownloaderProgressParser(), self._emit_progress)
        result = self._run_tool(downloader, args, reporter, timeout=download_config.timeout)

        self._check_cancelled()
        artifact = find_artifact(staging, result.stdout_tail)
        if artifact is None:
            msg = f"yt-dlp reported success but left no file in {staging}"
            raise OutputIntegrityError(msg, file_path=staging)
        self.file_manager.verify_artifact(artifact)

        target = self.file_manager.reserve_unique_path(params.output_dir / sanitize_filename(artifact.name))
        self._cleanup.append(target)
        self.file_manager.finalize(artifact, target)
        self._cleanup.remove(target)
        self._discard_partial()
        return target

    def _probe_source(self, source: Path) -> tuple[int, float | None]:
        """Sample rate and duration of ``source``; probing failures fall back to defaults."""
        default_rate = self.config.conversion.default_sample_rate
        try:
            info = self.prober.get_audio_info(source)
        except ProcessingError as e:
            LOG.warning("Could not probe %s (%s); assuming %d Hz", source.name, e.message, default_rate)
            return default_rate, None
        return info.get("sample_rate") or default_rate, info.get("duration")

    def _run_tool(
        self,
        tool: ToolSpec,
        args: Sequence[str],
        reporter: ProgressReporter,
        *,
        timeout: float | None,
    ) -> ExitResult:
        result = self.runner.run(
            tool.resolved_path or tool.name.executable,
            args,
            timeout=timeout,
            on_output_line=reporter.on_line,
            cancel_event=self.job.cancel_event,
            on_spawn=self.job.set_pid,
        )
        if result.succeeded:
            return result

        # A tool killed by our own cancellation may exit non-zero before the runner notices
        self._check_cancelled()
        stderr = truncate_tail(result.stderr_tail, self.config.conversion.stderr_tail_chars)
        last_line = stderr.splitlines()[-1] if stderr else "no error output"
        msg = f"{tool.name.executable} exited with code {result.return_code}: {last_line}"
        raise ProcessFailureError(
            msg,
            command=result.command,
            return_code=result.return_code,
            stderr=stderr or None,
            subtype=classify_stderr(result.stderr_tail),
        )


def _ensure_directory(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        msg = f"Cannot create directory {path}: {e}"
        raise ProcessingError(msg, file_path=path, cause=e) from e
