"""CLI command modules."""

from .download import DownloadCommands
from .shift import ShiftCommands
from .utils import UtilityCommands

__all__ = ["DownloadCommands", "ShiftCommands", "UtilityCommands"]
