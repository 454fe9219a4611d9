"""Turn tool output lines into normalized progress values."""

from __future__ import annotations

import logging
import math
import re
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

LOG = logging.getLogger(__name__)

_CLOCK = r"(-?\d+):(\d{2}):(\d{2}(?:\.\d+)?)"

# ffmpeg -progress pipe:1 emits key=value lines; out_time_ms is also microseconds
OUT_TIME_US_RE = re.compile(r"^out_time_(?:us|ms)=(\d+)$")
OUT_TIME_RE = re.compile(rf"^out_time={_CLOCK}$")
PROGRESS_END_RE = re.compile(r"^progress=end$")
STATS_TIME_RE = re.compile(rf"\btime={_CLOCK}")
DURATION_RE = re.compile(rf"^\s*Duration:\s*{_CLOCK}")
DOWNLOAD_PERCENT_RE = re.compile(r"^\[download\]\s+(\d+(?:\.\d+)?)%")


def _clock_to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


class ProgressParser(ABC):
    """Extract a completion fraction from one line of tool output."""

    @abstractmethod
    def parse(self, stream: str, line: str) -> float | None:
        """Return progress in [0, 1], or None if the line carries none."""


class TranscoderProgressParser(ProgressParser):
    """Parse FFmpeg progress against the input duration."""

    def __init__(self, duration: float | None = None) -> None:
        self.duration = duration if duration and duration > 0 else None

    def parse(self, stream: str, line: str) -> float | None:  # noqa: ARG002
        if PROGRESS_END_RE.match(line):
            return 1.0

        if self.duration is None:
            # Banner line from the input description, used when probing was skipped
            if match := DURATION_RE.match(line):
                self.duration = _clock_to_seconds(*match.groups()) or None
            return None

        if match := OUT_TIME_US_RE.match(line):
            return _clamp01(int(match.group(1)) / 1_000_000 / self.duration)
        if match := OUT_TIME_RE.match(line):
            return _clamp01(_clock_to_seconds(*match.groups()) / self.duration)
        if match := STATS_TIME_RE.search(line):
            return _clamp01(_clock_to_seconds(*match.groups()) / self.duration)
        return None


class DownloaderProgressParser(ProgressParser):
    """Parse yt-dlp ``[download]  42.3% of ...`` lines."""

    def parse(self, stream: str, line: str) -> float | None:  # noqa: ARG002
        if match := DOWNLOAD_PERCENT_RE.match(line):
            return _clamp01(float(match.group(1)) / 100.0)
        return None


class ProgressReporter:
    """
    Feed output lines through a parser and emit monotonic progress.

    Values that would move progress backwards (multi-stream downloads restart
    at 0% for each stream) are dropped, so consumers only ever see progress
    increase.
    """

    def __init__(self, job_id: str, parser: ProgressParser, emit: Callable[[str, float], None]) -> None:
        self.job_id = job_id
        self.parser = parser
        self._emit = emit
        self._progress: float | None = None
        self._lock = threading.Lock()

    @property
    def progress(self) -> float | None:
        """Latest progress, None while indeterminate."""
        return self._progress

    def on_line(self, stream: str, line: str) -> None:
        """Output callback for ProcessRunner."""
        try:
            value = self.parser.parse(stream, line)
        except (ValueError, ZeroDivisionError) as e:
            LOG.debug("Ignoring unparseable progress line %r: %s", line, e)
            return
        if value is None:
            return
        self.report(value)

    def report(self, value: float) -> None:
        """Emit ``value`` if it advances progress."""
        value = _clamp01(value)
        with self._lock:
            if self._progress is not None and value <= self._progress:
                return
            self._progress = value
        self._emit(self.job_id, value)
