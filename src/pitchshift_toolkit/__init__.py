"""Pitch Shift Toolkit - job orchestration for FFmpeg pitch shifting and yt-dlp audio downloads."""

from __future__ import annotations

__version__ = "0.1.0"
__description__ = "Pitch shift and download job orchestration around FFmpeg and yt-dlp"

# Public API exports
from .config import PitchShiftConfig, get_config
from .core import (
    ConfigManager,
    ErrorKind,
    JobCompletedEvent,
    JobError,
    JobKind,
    JobProgressEvent,
    JobSnapshot,
    JobState,
    ProcessingError,
    ToolName,
    with_config_overrides,
)
from .service import AudioFileInfo, PitchShiftService, SystemInfo

__all__ = [
    # Configuration
    "PitchShiftConfig",
    "get_config",
    "ConfigManager",
    "with_config_overrides",
    # Boundary
    "PitchShiftService",
    "SystemInfo",
    "AudioFileInfo",
    # Jobs and events
    "JobKind",
    "JobState",
    "JobSnapshot",
    "JobProgressEvent",
    "JobCompletedEvent",
    "ToolName",
    # Errors
    "ErrorKind",
    "JobError",
    "ProcessingError",
]
