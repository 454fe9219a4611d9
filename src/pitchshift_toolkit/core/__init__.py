"""Core job engine for the pitch shift toolkit."""

from .base import (
    ConflictError,
    ErrorKind,
    FailureSubtype,
    InvalidInputError,
    JobCancelledError,
    JobError,
    JobKind,
    JobState,
    NotFoundError,
    OutputIntegrityError,
    ProcessFailureError,
    ProcessingError,
    ProcessTimeoutError,
    SpawnError,
    ToolNotFoundError,
)
from .config import ConfigManager, RunOptions, with_config_overrides
from .events import EventBus, JobCompletedEvent, JobEvent, JobProgressEvent
from .ffmpeg import FFmpegCommandBuilder, FFmpegError, FFmpegProbe, build_pitch_filter, pitch_rate
from .file_manager import FileManager
from .job import ConversionJob, Job, JobRequest, JobSnapshot
from .process import ExitResult, ProcessRunner
from .progress import DownloaderProgressParser, ProgressReporter, TranscoderProgressParser
from .scheduler import JobScheduler
from .tools import ToolLocator, ToolName, ToolSpec

__all__ = [
    "ConfigManager",
    "ConflictError",
    "ConversionJob",
    "DownloaderProgressParser",
    "ErrorKind",
    "EventBus",
    "ExitResult",
    "FFmpegCommandBuilder",
    "FFmpegError",
    "FFmpegProbe",
    "FailureSubtype",
    "FileManager",
    "InvalidInputError",
    "Job",
    "JobCancelledError",
    "JobCompletedEvent",
    "JobError",
    "JobEvent",
    "JobKind",
    "JobProgressEvent",
    "JobRequest",
    "JobScheduler",
    "JobSnapshot",
    "JobState",
    "NotFoundError",
    "OutputIntegrityError",
    "ProcessFailureError",
    "ProcessRunner",
    "ProcessTimeoutError",
    "ProcessingError",
    "ProgressReporter",
    "RunOptions",
    "SpawnError",
    "ToolLocator",
    "ToolName",
    "ToolNotFoundError",
    "ToolSpec",
    "TranscoderProgressParser",
    "build_pitch_filter",
    "pitch_rate",
    "with_config_overrides",
]
