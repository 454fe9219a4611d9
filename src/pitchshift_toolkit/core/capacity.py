"""Concurrency limits derived from the host's CPU and memory."""

from __future__ import annotations

import logging

import psutil

LOG = logging.getLogger(__name__)

# Memory usage threshold (percentage) above which fewer jobs run in parallel
MEMORY_PRESSURE_THRESHOLD = 85
FALLBACK_WORKERS = 1


def get_safe_worker_count(configured_workers: int | None = None) -> int:
    """
    Get the number of external processes allowed to run at once.

    An explicit positive configuration always wins. Otherwise the value is
    the physical core count (logical if unknown), halved under memory
    pressure, and never below one.

    Args:
        configured_workers: The configured worker count, or None for auto-detection

    Returns:
        Number of concurrent job slots

    """
    if configured_workers is not None:
        return max(1, configured_workers)

    try:
        physical_cores = psutil.cpu_count(logical=False)
        logical_cores = psutil.cpu_count(logical=True) or 1
        max_workers = max(1, physical_cores or logical_cores)

        if _under_memory_pressure():
            max_workers = max(1, max_workers // 2)
            LOG.warning("High memory usage detected, limiting concurrent jobs to %d", max_workers)

        LOG.info(
            "Detected %s physical cores, %d logical cores. Using %d job slots.",
            physical_cores if physical_cores is not None else "?",
            logical_cores,
            max_workers,
        )
    except (OSError, AttributeError, ValueError) as e:
        LOG.warning("Failed to detect system specs with psutil: %s. Using %d job slot.", e, FALLBACK_WORKERS)
        return FALLBACK_WORKERS
    else:
        return max_workers


def _under_memory_pressure() -> bool:
    try:
        return psutil.virtual_memory().percent > MEMORY_PRESSURE_THRESHOLD
    except (AttributeError, OSError):
        return False
