"""CLI module for the pitch shift toolkit."""

from .commands import DownloadCommands, ShiftCommands, UtilityCommands
from .main import PitchShiftCLI

__all__ = [
    "DownloadCommands",
    "PitchShiftCLI",
    "ShiftCommands",
    "UtilityCommands",
]
