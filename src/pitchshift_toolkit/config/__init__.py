"""Configuration management for the pitch shift toolkit."""

from __future__ import annotations

from .constants import *  # noqa: F403, F401
from .settings import (
    ConversionConfig,
    DownloadConfig,
    GlobalConfig,
    PitchShiftConfig,
    SchedulerConfig,
    ToolsConfig,
    get_config,
    reset_config,
)

__all__ = [
    "ConversionConfig",
    "DownloadConfig",
    "GlobalConfig",
    "PitchShiftConfig",
    "SchedulerConfig",
    "ToolsConfig",
    "get_config",
    "reset_config",
]
