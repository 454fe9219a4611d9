"""FFmpeg integration: probing and pitch-shift command construction."""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from typing import TYPE_CHECKING, Any

from ..config.constants import FORMAT_MUXERS, SEMITONES_PER_OCTAVE
from .base import FailureSubtype, ProcessFailureError
from .diagnostics import classify_stderr
from .tools import ToolName

if TYPE_CHECKING:
    from pathlib import Path

    from ..config import PitchShiftConfig
    from .tools import ToolLocator

LOG = logging.getLogger(__name__)


def pitch_rate(semitones: int) -> float:
    """Playback-rate multiplier for a shift of ``semitones`` (equal temperament)."""
    return 2.0 ** (semitones / SEMITONES_PER_OCTAVE)


def build_pitch_filter(semitones: int, sample_rate: int) -> str:
    """
    Build the audio filter graph for a pitch shift.

    The input is reinterpreted at ``sample_rate * rate`` (raising or lowering
    the pitch) and then resampled back to ``sample_rate`` so the output keeps
    the source rate.
    """
    shifted_rate = round(sample_rate * pitch_rate(semitones))
    return f"asetrate={shifted_rate},aresample={sample_rate}"


class FFmpegError(ProcessFailureError):
    """FFmpeg-specific error."""


class FFmpegProbe:
    """ffprobe wrapper for media file analysis with caching."""

    def __init__(self, locator: ToolLocator, timeout: float = 30.0) -> None:
        self.locator = locator
        self.timeout = timeout
        self._cache: dict[tuple[Path, float], dict[str, Any]] = {}
        self._cache_lock = threading.Lock()

    @staticmethod
    def _get_cache_key(file_path: Path) -> tuple[Path, float] | None:
        """Generate cache key based on file path and modification time."""
        try:
            return (file_path.resolve(), file_path.stat().st_mtime)
        except OSError:
            # File doesn't exist or other error - uncacheable
            return None

    def probe_media(self, file_path: Path) -> dict[str, Any]:
        """Probe media file for metadata with caching."""
        cache_key = self._get_cache_key(file_path)
        if cache_key is not None:
            with self._cache_lock:
                if cache_key in self._cache:
                    return self._cache[cache_key]

        prober = self.locator.resolve(ToolName.PROBER)
        cmd = [
            str(prober.resolved_path),
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            "-select_streams",
            "a:0",
            str(file_path),
        ]

        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
                encoding="utf-8",
                errors="replace",
            )
            probe_data = json.loads(result.stdout)
        except subprocess.CalledProcessError as e:
            error_details = (e.stderr or e.stdout or "No error output").strip()
            msg = f"ffprobe failed for {file_path}: {error_details}"
            raise FFmpegError(
                msg,
                command=cmd,
                return_code=e.returncode,
                stderr=e.stderr,
                subtype=classify_stderr(e.stderr),
                file_path=file_path,
            ) from e
        except subprocess.TimeoutExpired as e:
            msg = f"ffprobe timed out for {file_path}"
            raise FFmpegError(msg, command=cmd, file_path=file_path) from e
        except OSError as e:
            msg = f"Could not run ffprobe: {e}"
            raise FFmpegError(msg, command=cmd, file_path=file_path) from e
        except json.JSONDecodeError as e:
            msg = f"Invalid JSON from ffprobe for {file_path}: {e}"
            raise FFmpegError(msg, command=cmd, subtype=FailureSubtype.CORRUPT_INPUT, file_path=file_path) from e

        if cache_key is not None:
            with self._cache_lock:
                self._cache[cache_key] = probe_data
        return probe_data

    def get_audio_info(self, file_path: Path) -> dict[str, Any]:
        """Get audio stream information."""
        data = self.probe_media(file_path)

        if not data.get("streams"):
            msg = f"No audio streams found in {file_path}"
            raise FFmpegError(msg, subtype=FailureSubtype.UNSUPPORTED_FORMAT, file_path=file_path)

        stream = data["streams"][0]
        format_info = data.get("format", {})
        duration = stream.get("duration") or format_info.get("duration")
        sample_rate = stream.get("sample_rate")

        return {
            "codec": stream.get("codec_name"),
            "format_name": format_info.get("format_name"),
            "bitrate": stream.get("bit_rate") or format_info.get("bit_rate"),
            "duration": float(duration) if duration not in (None, "N/A") else None,
            "channels": stream.get("channels"),
            "sample_rate": int(sample_rate) if sample_rate else None,
        }


class FFmpegCommandBuilder:
    """Build FFmpeg argument lists for pitch-shift jobs."""

    def __init__(self, config: PitchShiftConfig) -> None:
        self.config = config

    def build_pitch_shift_args(
        self,
        input_file: Path,
        output_file: Path,
        *,
        semitones: int,
        output_format: str,
        sample_rate: int,
    ) -> list[str]:
        """
        Build the FFmpeg arguments (without the executable) for a pitch shift.

        Progress goes to stdout as ``key=value`` lines; the muxer is forced
        so the output file name may carry any suffix.
        """
        if output_format not in FORMAT_MUXERS:
            msg = f"Unsupported output format: {output_format}"
            raise ValueError(msg)

        return [
            "-hide_banner",
            "-nostdin",
            "-y",
            "-i",
            str(input_file),
            "-vn",
            "-af",
            build_pitch_filter(semitones, sample_rate),
            "-ar",
            str(sample_rate),
            *self.config.codec_args_for(output_format),
            "-progress",
            "pipe:1",
            "-nostats",
            "-f",
            FORMAT_MUXERS[output_format],
            str(output_file),
        ]
