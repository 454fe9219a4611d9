"""Base types, job states and the error taxonomy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from pathlib import Path

LOG = logging.getLogger(__name__)


class JobState(Enum):
    """Lifecycle state of a job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are possible."""
        return self in {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED}


class JobKind(Enum):
    """What a job does."""

    PITCH_SHIFT = "pitch_shift"
    DOWNLOAD = "download"


class ErrorKind(Enum):
    """Machine-readable error category."""

    TOOL_NOT_FOUND = "tool_not_found"
    INVALID_INPUT = "invalid_input"
    SPAWN_ERROR = "spawn_error"
    PROCESS_FAILURE = "process_failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    OUTPUT_INTEGRITY = "output_integrity_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


class FailureSubtype(Enum):
    """Refinement of PROCESS_FAILURE, detected from stderr."""

    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT_INPUT = "corrupt_input"
    MISSING_INPUT = "missing_input"
    PERMISSION_DENIED = "permission_denied"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class JobError:
    """Structured error attached to a job's terminal state."""

    kind: ErrorKind
    message: str
    subtype: FailureSubtype | None = None
    return_code: int | None = None
    stderr_tail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "subtype": self.subtype.value if self.subtype else None,
            "return_code": self.return_code,
            "stderr_tail": self.stderr_tail,
        }


class ProcessingError(Exception):
    """Base exception for media processing errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.PROCESS_FAILURE

    def __init__(
        self,
        message: str,
        file_path: Path | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.file_path = file_path
        self.cause = cause

    def to_job_error(self) -> JobError:
        """Convert to the structured form stored on a job."""
        return JobError(kind=self.kind, message=self.message)


class ToolNotFoundError(ProcessingError):
    """A required external executable could not be located."""

    kind = ErrorKind.TOOL_NOT_FOUND

    def __init__(self, tool_name: str, message: str | None = None) -> None:
        super().__init__(message or f"Required tool not found: {tool_name}")
        self.tool_name = tool_name


class InvalidInputError(ProcessingError):
    """Request rejected before any process was spawned."""

    kind = ErrorKind.INVALID_INPUT


class NotFoundError(ProcessingError):
    """Unknown job id or missing file."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(ProcessingError):
    """Another in-flight job already owns the requested output path."""

    kind = ErrorKind.CONFLICT


class SpawnError(ProcessingError):
    """The operating system refused to launch the process."""

    kind = ErrorKind.SPAWN_ERROR


class ProcessFailureError(ProcessingError):
    """External process exited unsuccessfully."""

    kind = ErrorKind.PROCESS_FAILURE

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        return_code: int | None = None,
        stderr: str | None = None,
        subtype: FailureSubtype = FailureSubtype.UNKNOWN,
        file_path: Path | None = None,
    ) -> None:
        """Initialize process failure with detailed context."""
        super().__init__(message, file_path=file_path)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr
        self.subtype = subtype

    def to_job_error(self) -> JobError:
        return JobError(
            kind=self.kind,
            message=self.message,
            subtype=self.subtype,
            return_code=self.return_code,
            stderr_tail=self.stderr,
        )


class ProcessTimeoutError(ProcessingError):
    """External process exceeded its time limit and was terminated."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, timeout: float | None = None, stderr: str | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout
        self.stderr = stderr

    def to_job_error(self) -> JobError:
        return JobError(kind=self.kind, message=self.message, stderr_tail=self.stderr)


class JobCancelledError(ProcessingError):
    """Work stopped because cancellation was requested."""

    kind = ErrorKind.CANCELLED


class OutputIntegrityError(ProcessingError):
    """Process reported success but the output artifact is missing or empty."""

    kind = ErrorKind.OUTPUT_INTEGRITY
