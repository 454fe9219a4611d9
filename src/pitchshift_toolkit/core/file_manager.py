"""Staging, atomic finalization and cleanup of job outputs."""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config.constants import SESSION_LOG_LIMIT, STAGING_PREFIX
from .base import OutputIntegrityError, ProcessingError

LOG = logging.getLogger(__name__)


@dataclass
class FileOperation:
    """Record of a file operation performed for a job."""

    operation_type: str
    source_path: Path
    target_path: Path | None = None
    success: bool = False
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        """Set timestamp if not provided."""
        if self.timestamp == 0.0:
            self.timestamp = time.time()


class FileManager:
    """
    File handling for job outputs.

    Jobs write to a hidden staging location next to the final output and the
    result is moved into place only once it has been verified, so a failed
    or cancelled job never leaves a partial file at the requested path.
    """

    def __init__(self) -> None:
        self.session_operations: deque[FileOperation] = deque(maxlen=SESSION_LOG_LIMIT)
        self._succeeded = 0
        self._failed = 0
        self._outputs_written = 0
        self._lock = threading.Lock()

    def staging_path(self, output_path: Path, job_id: str) -> Path:
        """Temporary file the tool writes to before finalization."""
        return output_path.with_name(f"{STAGING_PREFIX}{job_id}-{output_path.name}.part")

    def staging_dir(self, output_dir: Path, job_id: str) -> Path:
        """Per-job scratch directory inside ``output_dir``."""
        return output_dir / f"{STAGING_PREFIX}{job_id}"

    def verify_artifact(self, path: Path) -> int:
        """
        Check that a declared output exists and is non-empty.

        Returns:
            Size of the artifact in bytes

        Raises:
            OutputIntegrityError: The file is missing or empty

        """
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            msg = f"Output file not created: {path}"
            raise OutputIntegrityError(msg, file_path=path, cause=e) from e
        except OSError as e:
            msg = f"Output file not readable: {path}: {e}"
            raise OutputIntegrityError(msg, file_path=path, cause=e) from e

        if not path.is_file() or size == 0:
            msg = f"Output file is empty: {path}"
            raise OutputIntegrityError(msg, file_path=path)
        return size

    def finalize(self, temp_path: Path, target_path: Path) -> FileOperation:
        """Atomically move a verified temp file to its final location."""
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, target_path)
        except OSError as e:
            # Cross-device staging falls back to a copying move
            try:
                shutil.move(str(temp_path), str(target_path))
            except (OSError, shutil.Error) as move_error:
                self._record(FileOperation("finalize", temp_path, target_path, success=False))
                msg = f"Could not move {temp_path} to {target_path}: {move_error}"
                raise ProcessingError(msg, file_path=target_path, cause=e) from move_error

        operation = FileOperation("finalize", temp_path, target_path, success=True)
        self._record(operation)
        LOG.debug("Finalized %s -> %s", temp_path, target_path)
        return operation

    def copy_to_staging(self, source_path: Path, temp_path: Path) -> FileOperation:
        """Copy ``source_path`` to a staging file, preserving metadata."""
        try:
            temp_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, temp_path)
        except (OSError, shutil.Error) as e:
            self._record(FileOperation("copy", source_path, temp_path, success=False))
            msg = f"Copy failed: {e}"
            raise ProcessingError(msg, file_path=source_path, cause=e) from e

        operation = FileOperation("copy", source_path, temp_path, success=True)
        self._record(operation)
        return operation

    def discard(self, path: Path) -> None:
        """Remove a partial or temporary file if present."""
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
        except OSError as e:
            LOG.warning("Failed to remove %s: %s", path, e)
            return
        LOG.debug("Removed %s", path)

    def reserve_unique_path(self, path: Path) -> Path:
        """
        Claim ``path``, or ``name (n).ext`` if it is taken, by creating an empty placeholder.

        The placeholder is created exclusively, so concurrent callers never
        receive the same name. It is meant to be overwritten by ``finalize``.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        candidates = (path if n == 0 else path.with_name(f"{path.stem} ({n}){path.suffix}") for n in range(10_000))
        for candidate in candidates:
            try:
                fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                continue
            except OSError as e:
                msg = f"Cannot create {candidate}: {e}"
                raise ProcessingError(msg, file_path=candidate, cause=e) from e
            os.close(fd)
            return candidate
        msg = f"No free file name for {path}"
        raise ProcessingError(msg, file_path=path)

    def _record(self, operation: FileOperation) -> None:
        with self._lock:
            self.session_operations.append(operation)
            if operation.success:
                self._succeeded += 1
                if operation.operation_type == "finalize":
                    self._outputs_written += 1
            else:
                self._failed += 1

    def get_session_summary(self) -> dict[str, Any]:
        """Get summary of file operations in this session; only recent operations are listed."""
        with self._lock:
            return {
                "total_operations": self._succeeded + self._failed,
                "successful_operations": self._succeeded,
                "failed_operations": self._failed,
                "outputs_written": self._outputs_written,
                "recent_operations": list(self.session_operations),
            }
