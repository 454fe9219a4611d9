"""Utility CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ...core.base import ProcessingError
from ...core.tools import ToolName
from ...service import PitchShiftService

if TYPE_CHECKING:
    import argparse

    from ...core import ConfigManager

LOG = logging.getLogger(__name__)


def _format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "unknown"
    minutes, secs = divmod(round(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}" if hours else f"{minutes:d}:{secs:02d}"


class UtilityCommands:
    """Utility command handlers."""

    def __init__(self, config_manager: ConfigManager) -> None:
        """Initialize utility commands handler."""
        self.config_manager = config_manager

    def add_commands(self, subparsers: argparse._SubParsersAction) -> None:
        """Register the ``info`` and ``probe`` commands."""
        subparsers.add_parser("info", help="Show configuration and system info")

        probe_parser = subparsers.add_parser("probe", help="Show information about an audio file")
        probe_parser.add_argument("path", type=Path, help="Audio file")

    def handle_command(self, args: argparse.Namespace) -> int:
        """Handle utility command execution."""
        if args.command == "info":
            return self._handle_info(args)
        if args.command == "probe":
            return self._handle_probe(args)
        LOG.error("Unknown utility command: %s", args.command)
        return 1

    def _handle_info(self, _args: argparse.Namespace) -> int:
        """Show system info."""
        config = self.config_manager.effective_config()
        with PitchShiftService(config) as service:
            info = service.get_system_info()

        print("Pitch Shift Toolkit - System Info")
        print("=" * 40)
        print(f"Platform:     {info.platform} ({info.architecture})")
        for tool in ToolName:
            version = info.tool_versions.get(tool.value)
            if tool.value in info.tool_versions:
                status = f"✓ {version or 'version unknown'}"
            else:
                status = "✗ not found"
            print(f"{tool.executable + ':':<13} {status}")

        print("\nConfiguration:")
        print(f"  Max concurrent jobs: {config.scheduler.max_concurrent or 'auto'}")
        print(f"  Transcode timeout:   {config.conversion.timeout:g}s")
        print(f"  Download timeout:    {config.download.timeout:g}s")
        print(f"  Allowed hosts:       {', '.join(config.download.allowed_hosts)}")

        return 0 if info.transcoder_available else 1

    def _handle_probe(self, args: argparse.Namespace) -> int:
        """Show audio file info."""
        with PitchShiftService(self.config_manager.effective_config()) as service:
            try:
                info = service.get_audio_info(args.path)
            except ProcessingError as e:
                LOG.error("%s", e.message)
                return 1

        print(f"Name:     {info.name}")
        print(f"Path:     {info.path}")
        print(f"Size:     {info.size_bytes / 1024 / 1024:.2f} MB")
        print(f"Duration: {_format_duration(info.duration_seconds)}")
        print(f"Format:   {info.format or 'unknown'}")
        return 0
