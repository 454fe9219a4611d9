"""Shared fixtures: stub executables standing in for ffmpeg and yt-dlp."""

from __future__ import annotations

import os
import stat
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import Mock

import psutil
import pytest

# Ensure src/ is on the path for imports in tests
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pitchshift_toolkit.config import (  # noqa: E402
    PitchShiftConfig,
    SchedulerConfig,
    ToolsConfig,
    reset_config,
)
from pitchshift_toolkit.core.ffmpeg import FFmpegProbe  # noqa: E402
from pitchshift_toolkit.service import PitchShiftService  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

TRANSCODER_OK = """\
if [ "$1" = "-version" ]; then echo "ffmpeg version 6.1-stub"; exit 0; fi
for last; do :; done
echo "out_time_us=500000"
echo "progress=continue"
printf '0123456789' > "$last"
echo "progress=end"
exit 0
"""

TRANSCODER_NO_OUTPUT = """\
if [ "$1" = "-version" ]; then echo "ffmpeg version 6.1-stub"; exit 0; fi
echo "progress=end"
exit 0
"""

TRANSCODER_CORRUPT_INPUT = """\
if [ "$1" = "-version" ]; then echo "ffmpeg version 6.1-stub"; exit 0; fi
echo "[mp3 @ 0x1] Header missing" >&2
echo "in.mp3: Invalid data found when processing input" >&2
exit 1
"""

TRANSCODER_HANGS = """\
if [ "$1" = "-version" ]; then echo "ffmpeg version 6.1-stub"; exit 0; fi
sleep 30 &
echo $! > "$STUB_CHILD_PIDFILE"
wait
"""

DOWNLOADER_OK = """\
if [ "$1" = "--version" ]; then echo "2024.12.13"; exit 0; fi
dir=""
while [ $# -gt 0 ]; do
  case "$1" in
    -P) dir="$2"; shift 2 ;;
    *) shift ;;
  esac
done
echo "[download] Destination: $dir/Some Title.webm"
echo "[download]  50.0% of 1.00MiB at 1.00MiB/s ETA 00:01"
echo "[download] 100.0% of 1.00MiB at 1.00MiB/s ETA 00:00"
printf 'audio-bytes' > "$dir/Some Title.mp3"
echo "$dir/Some Title.mp3"
"""

DOWNLOADER_HANGS = """\
if [ "$1" = "--version" ]; then echo "2024.12.13"; exit 0; fi
dir=""
while [ $# -gt 0 ]; do
  case "$1" in
    -P) dir="$2"; shift 2 ;;
    *) shift ;;
  esac
done
printf 'partial' > "$dir/Some Title.webm.part"
echo "[download]  10.0% of 1.00MiB at 1.00MiB/s ETA 00:09"
exec sleep 30
"""

DOWNLOADER_FAILS = """\
if [ "$1" = "--version" ]; then echo "2024.12.13"; exit 0; fi
dir=""
while [ $# -gt 0 ]; do
  case "$1" in
    -P) dir="$2"; shift 2 ;;
    *) shift ;;
  esac
done
printf 'partial' > "$dir/Some Title.webm.part"
echo "ERROR: Unable to download webpage: HTTP Error 403: Forbidden" >&2
exit 1
"""


def process_gone(pid: int) -> bool:
    """Whether ``pid`` has exited (a reparented zombie counts as exited)."""
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture(autouse=True)
def _fresh_global_config() -> Iterator[None]:
    reset_config()
    yield
    reset_config()


@pytest.fixture
def make_stub(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable POSIX shell script into ``tmp_path/bin``."""
    if os.name == "nt":
        pytest.skip("stub executables are POSIX shell scripts")

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def prober() -> Mock:
    """Prober that reports a one-second 48 kHz stream for every file."""
    mock = Mock(spec=FFmpegProbe)
    mock.get_audio_info.return_value = {"sample_rate": 48000, "duration": 1.0, "codec": "pcm_s16le"}
    return mock


@pytest.fixture
def input_file(tmp_path: Path) -> Path:
    path = tmp_path / "song.wav"
    path.write_bytes(b"RIFF" + b"\x00" * 64)
    return path


@pytest.fixture
def make_service(
    tmp_path: Path, make_stub: Callable[[str, str], Path], prober: Mock
) -> Iterator[Callable[..., PitchShiftService]]:
    """Build services wired to stub tools; all are shut down after the test."""
    services: list[PitchShiftService] = []

    def _make(
        transcoder: str = TRANSCODER_OK,
        downloader: str = DOWNLOADER_OK,
        *,
        max_concurrent: int = 2,
        with_prober: bool = True,
    ) -> PitchShiftService:
        config = PitchShiftConfig(
            tools=ToolsConfig(
                paths={
                    "transcoder": str(make_stub("ffmpeg", transcoder)),
                    "downloader": str(make_stub("yt-dlp", downloader)),
                },
                use_system_path=False,
            ),
            scheduler=SchedulerConfig(
                max_concurrent=max_concurrent,
                terminate_grace_seconds=0.5,
                kill_timeout_seconds=0.5,
            ),
        )
        service = PitchShiftService(config, prober=prober if with_prober else None)
        services.append(service)
        return service

    yield _make

    for service in services:
        service.shutdown()
