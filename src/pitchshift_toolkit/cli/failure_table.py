"""Shared failure table display utility for CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.job import JobSnapshot

# Constants for table formatting
MAX_INPUT_LENGTH = 37
INPUT_TRUNCATE_LENGTH = 34
MAX_ERROR_MSG_LENGTH = 32
ERROR_MSG_TRUNCATE_LENGTH = 29


def _display_name(snapshot: JobSnapshot) -> str:
    if snapshot.kind.value == "download":
        return snapshot.input
    return Path(snapshot.input).name


def print_failure_table(failed_jobs: list[JobSnapshot], job_type: str = "pitch_shift") -> None:
    """
    Print a simple table showing failed and cancelled jobs.

    Args:
        failed_jobs: Snapshots of jobs that did not succeed
        job_type: Kind of job shown ("pitch_shift" or "download")

    """
    if not failed_jobs:
        return

    print("\n" + "=" * 80)
    print(f"{'FAILED JOBS':^80}")
    print("=" * 80)
    print(f"Total failed: {len(failed_jobs)} jobs\n")

    # Simple table header
    print(f"{'INPUT':<40} | {'ERROR':<35}")
    print("-" * 80)

    for snapshot in failed_jobs:
        name = _display_name(snapshot)
        if len(name) > MAX_INPUT_LENGTH:
            name = name[:INPUT_TRUNCATE_LENGTH] + "..."

        if snapshot.error is None:
            error_msg = snapshot.state.value
        elif snapshot.error.subtype is not None:
            error_msg = f"{snapshot.error.subtype.value}: {snapshot.error.message}"
        else:
            error_msg = f"{snapshot.error.kind.value}: {snapshot.error.message}"
        if len(error_msg) > MAX_ERROR_MSG_LENGTH:
            error_msg = error_msg[:ERROR_MSG_TRUNCATE_LENGTH] + "..."

        print(f"{name:<40} | {error_msg:<35}")

    tips = {
        "pitch_shift": "💡 TIP: Check FFmpeg installation, input file format, or output permissions",
        "download": "💡 TIP: Check the URL, your network connection, or update yt-dlp",
    }

    print(f"\n{tips.get(job_type, tips['pitch_shift'])}\n")
