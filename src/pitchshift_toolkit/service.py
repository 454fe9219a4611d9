"""Command surface used by front ends (desktop shell, CLI)."""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import get_config
from .core.base import NotFoundError, ProcessingError
from .core.events import EventBus, JobCompletedEvent, JobProgressEvent
from .core.ffmpeg import FFmpegProbe
from .core.file_manager import FileManager
from .core.job import ConversionJob, JobRequest
from .core.process import ProcessRunner
from .core.scheduler import JobScheduler
from .core.tools import ToolLocator, ToolName, platform_dir_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from .config import PitchShiftConfig
    from .core.events import JobEvent
    from .core.job import Job, JobSnapshot

LOG = logging.getLogger(__name__)

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
}


@dataclass(frozen=True)
class SystemInfo:
    """Host platform and external tool availability."""

    platform: str
    architecture: str
    transcoder_available: bool
    downloader_available: bool
    tool_versions: dict[str, str | None] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "architecture": self.architecture,
            "transcoder_available": self.transcoder_available,
            "downloader_available": self.downloader_available,
            "tool_versions": dict(self.tool_versions),
        }


@dataclass(frozen=True)
class AudioFileInfo:
    """Basic facts about a local audio file."""

    name: str
    path: Path
    size_bytes: int
    duration_seconds: float | None
    format: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "duration_seconds": self.duration_seconds,
            "format": self.format,
        }


class PitchShiftService:
    """
    Boundary between a front end and the job engine.

    Every method returns quickly: work runs on the scheduler's worker pool
    and its outcome is observed through ``get_job_status``, ``subscribe`` or
    ``poll_events``. Collaborators may be injected for testing.
    """

    def __init__(
        self,
        config: PitchShiftConfig | None = None,
        *,
        locator: ToolLocator | None = None,
        runner: ProcessRunner | None = None,
        prober: FFmpegProbe | None = None,
        file_manager: FileManager | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config or get_config()
        scheduler_config = self.config.scheduler

        self.locator = locator or ToolLocator(self.config.tools)
        self.runner = runner or ProcessRunner(
            terminate_grace=scheduler_config.terminate_grace_seconds,
            kill_timeout=scheduler_config.kill_timeout_seconds,
        )
        self.prober = prober or FFmpegProbe(self.locator, timeout=self.config.conversion.probe_timeout)
        self.file_manager = file_manager or FileManager()
        self.events = events or EventBus()
        self.scheduler = JobScheduler(
            self._execute,
            max_concurrent=scheduler_config.max_concurrent,
            retention_seconds=scheduler_config.retention_seconds,
            on_terminal=self._publish_completed,
        )

    def __enter__(self) -> PitchShiftService:
        return self

    def __exit__(self, _exc_type: object, _exc_val: object, _exc_tb: object) -> None:
        self.shutdown()

    def get_system_info(self) -> SystemInfo:
        """Report the host platform and which external tools can be used."""
        versions: dict[str, str | None] = {}
        available: dict[ToolName, bool] = {}
        for tool in ToolName:
            try:
                spec = self.locator.resolve(tool)
            except ProcessingError:
                available[tool] = False
                continue
            available[tool] = True
            versions[tool.value] = spec.version

        machine = platform.machine().lower()
        return SystemInfo(
            platform=platform_dir_name(),
            architecture=_ARCH_ALIASES.get(machine, machine or "unknown"),
            transcoder_available=available[ToolName.TRANSCODER],
            downloader_available=available[ToolName.DOWNLOADER],
            tool_versions=versions,
        )

    def get_audio_info(self, path: str | Path) -> AudioFileInfo:
        """
        Describe a local audio file.

        The duration is filled in when the prober can read the file and is
        None otherwise.

        Raises:
            NotFoundError: ``path`` does not exist or is not a file

        """
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            msg = f"File not found: {file_path}"
            raise NotFoundError(msg, file_path=file_path)

        duration: float | None = None
        try:
            duration = self.prober.get_audio_info(file_path).get("duration")
        except ProcessingError as e:
            LOG.info("Duration unavailable for %s: %s", file_path.name, e.message)

        return AudioFileInfo(
            name=file_path.name,
            path=file_path.resolve(),
            size_bytes=file_path.stat().st_size,
            duration_seconds=duration,
            format=file_path.suffix.lstrip(".").lower() or None,
        )

    def submit_pitch_shift(
        self,
        path: str | Path,
        semitone_shift: int,
        output_format: str,
        output_path: str | Path | None = None,
    ) -> str:
        """
        Queue a pitch-shift job and return its id.

        Without ``output_path`` the result is written next to the input.

        Raises:
            InvalidInputError: Invalid parameters
            ConflictError: Another in-flight job already writes ``output_path``

        """
        request = JobRequest.pitch_shift(path, semitone_shift, output_format, output_path)
        return self.scheduler.submit(request)

    def submit_download(self, url: str, output_dir: str | Path, audio_format: str | None = None) -> str:
        """
        Queue an audio download and return its id.

        Raises:
            InvalidInputError: The URL's host is not on the allow-list

        """
        request = JobRequest.download(
            url,
            output_dir,
            allowed_hosts=self.config.download.allowed_hosts,
            audio_format=audio_format or self.config.download.audio_format,
        )
        return self.scheduler.submit(request)

    def get_job_status(self, job_id: str) -> JobSnapshot:
        return self.scheduler.status(job_id)

    def cancel_job(self, job_id: str) -> None:
        self.scheduler.cancel(job_id)

    def acknowledge_job(self, job_id: str) -> bool:
        return self.scheduler.acknowledge(job_id)

    def wait_for_job(self, job_id: str, timeout: float | None = None) -> JobSnapshot:
        return self.scheduler.wait(job_id, timeout)

    def list_jobs(self) -> list[JobSnapshot]:
        return self.scheduler.jobs()

    def subscribe(self, callback: Callable[[JobEvent], None]) -> Callable[[], None]:
        """Receive every job event; returns a function that unsubscribes."""
        return self.events.subscribe(callback)

    def poll_events(self, max_events: int | None = None) -> list[JobEvent]:
        """Drain buffered job events, oldest first."""
        return self.events.poll(max_events)

    def shutdown(self, *, wait: bool = True) -> None:
        """Cancel outstanding work and stop the worker pool."""
        self.scheduler.shutdown(wait=wait)

    def _execute(self, job: Job) -> None:
        ConversionJob(
            job,
            locator=self.locator,
            runner=self.runner,
            prober=self.prober,
            file_manager=self.file_manager,
            config=self.config,
            on_progress=self._publish_progress,
        ).run()

    def _publish_progress(self, job_id: str, progress: float) -> None:
        self.events.publish(JobProgressEvent(job_id=job_id, progress=progress))

    def _publish_completed(self, job: Job) -> None:
        snapshot = job.snapshot()
        self.events.publish(
            JobCompletedEvent(
                job_id=snapshot.id,
                state=snapshot.state,
                result=snapshot.result,
                error=snapshot.error,
            )
        )
