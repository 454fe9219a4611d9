"""Terminal progress bars for submitted jobs."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from tqdm import tqdm

from ..core.base import JobState
from ..core.events import JobCompletedEvent, JobProgressEvent
from .failure_table import print_failure_table

if TYPE_CHECKING:
    from ..core.job import JobSnapshot
    from ..service import PitchShiftService

LOG = logging.getLogger(__name__)

POLL_INTERVAL = 0.2
MAX_LABEL_LENGTH = 40

_STATE_MARKS = {
    JobState.SUCCEEDED: "✓",
    JobState.FAILED: "✗",
    JobState.CANCELLED: "⏹",
}


def _short_label(label: str) -> str:
    if len(label) > MAX_LABEL_LENGTH:
        return label[: MAX_LABEL_LENGTH - 3] + "..."
    return label


def follow_jobs(
    service: PitchShiftService,
    labels: dict[str, str],
    poll_interval: float = POLL_INTERVAL,
) -> list[JobSnapshot]:
    """
    Show one progress bar per job until every job has finished.

    Args:
        service: Service the jobs were submitted to
        labels: Job id to display label, in display order
        poll_interval: Seconds between event polls

    Returns:
        Final snapshots in the order of ``labels``

    """
    bars = {
        job_id: tqdm(
            total=100,
            desc=_short_label(label),
            position=index,
            leave=True,
            unit="%",
            bar_format="{l_bar}{bar}| {n:.0f}% [{elapsed}]{postfix}",
        )
        for index, (job_id, label) in enumerate(labels.items())
    }
    remaining = set(labels)

    try:
        while remaining:
            for event in service.poll_events():
                bar = bars.get(event.job_id)
                if bar is None:
                    continue
                if isinstance(event, JobProgressEvent):
                    bar.n = round(event.progress * 100, 1)
                    bar.refresh()
                elif isinstance(event, JobCompletedEvent):
                    _finish_bar(bar, event.state)
                    remaining.discard(event.job_id)

            # Completion events can be missed if the backlog overflowed
            for job_id in list(remaining):
                snapshot = service.get_job_status(job_id)
                if snapshot.is_terminal:
                    _finish_bar(bars[job_id], snapshot.state)
                    remaining.discard(job_id)

            if remaining:
                time.sleep(poll_interval)
    finally:
        for bar in bars.values():
            bar.close()

    return [service.get_job_status(job_id) for job_id in labels]


def _finish_bar(bar: tqdm, state: JobState) -> None:
    if state is JobState.SUCCEEDED:
        bar.n = bar.total
    bar.set_postfix_str(f"{_STATE_MARKS.get(state, '')} {state.value}".strip())
    bar.refresh()


def run_batch(service: PitchShiftService, labels: dict[str, str], job_type: str) -> int:
    """
    Follow submitted jobs to completion and report failures.

    Ctrl-C cancels every job that has not finished and re-raises once they
    have stopped.

    Returns:
        0 if every job succeeded, 1 otherwise

    """
    try:
        snapshots = follow_jobs(service, labels)
    except KeyboardInterrupt:
        LOG.warning("Interrupted, cancelling %d jobs", len(labels))
        for job_id in labels:
            service.cancel_job(job_id)
        grace = service.config.scheduler.terminate_grace_seconds + service.config.scheduler.kill_timeout_seconds
        for job_id in labels:
            service.wait_for_job(job_id, timeout=grace + 1.0)
        raise

    succeeded = [s for s in snapshots if s.state is JobState.SUCCEEDED]
    for snapshot in succeeded:
        LOG.info("Wrote %s", snapshot.result)
    LOG.info("Completed %d/%d jobs successfully", len(succeeded), len(snapshots))
    summary = service.file_manager.get_session_summary()
    if summary["failed_operations"]:
        LOG.warning("%d file operations failed this session", summary["failed_operations"])
    LOG.debug("Wrote %d output files this session", summary["outputs_written"])

    print_failure_table([s for s in snapshots if s.state is not JobState.SUCCEEDED], job_type)
    return 0 if len(succeeded) == len(snapshots) else 1
