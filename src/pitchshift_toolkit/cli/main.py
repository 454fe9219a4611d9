"""Main CLI interface for the pitch shift toolkit."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from ..config.constants import VERBOSE_LOGGING_THRESHOLD
from ..core import ConfigManager, RunOptions, with_config_overrides
from .commands import DownloadCommands, ShiftCommands, UtilityCommands

LOG = logging.getLogger(__name__)


class PitchShiftCLI:
    """Main CLI interface."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_manager = ConfigManager(config_path)
        self.shift_commands = ShiftCommands(self.config_manager)
        self.download_commands = DownloadCommands(self.config_manager)
        self.utility_commands = UtilityCommands(self.config_manager)

    @staticmethod
    def setup_logging(verbosity: int, base_level: str = "WARNING") -> None:
        """Setup logging based on verbosity level; ``base_level`` applies without -v."""
        level_map = {
            0: logging.getLevelName(base_level.upper()),
            1: logging.INFO,
            2: logging.DEBUG,
        }

        level = level_map.get(verbosity, logging.DEBUG)

        log_format = (
            "%(levelname)s: %(name)s: %(message)s"
            if verbosity >= VERBOSE_LOGGING_THRESHOLD
            else "%(levelname)s: %(message)s"
        )

        logging.basicConfig(level=level, format=log_format, handlers=[logging.StreamHandler(sys.stderr)], force=True)

        # Per-line tool output is only interesting when debugging
        if verbosity < VERBOSE_LOGGING_THRESHOLD:
            logging.getLogger("pitchshift_toolkit.core.process").setLevel(max(level, logging.INFO))

    def build_parser(self) -> argparse.ArgumentParser:
        """Build the argument parser."""
        parser = argparse.ArgumentParser(
            prog="pitchshift-toolkit",
            description="Pitch shift audio files and download audio with FFmpeg and yt-dlp",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Raise a song by three semitones
  pitchshift-toolkit shift song.wav --semitones 3 --format mp3

  # Lower a folder of tracks a whole tone, four at a time
  pitchshift-toolkit shift tracks/*.flac -s -2 --output-dir shifted --workers 4

  # Download the audio of a video
  pitchshift-toolkit download https://www.youtube.com/watch?v=... -o downloads

  # Check that FFmpeg and yt-dlp can be found
  pitchshift-toolkit info
            """,
        )

        # Global options
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Increase verbosity (-v for info, -vv for debug)",
        )

        parser.add_argument("--config", type=Path, help="Path to configuration file")

        # Subcommands
        subparsers = parser.add_subparsers(dest="command", required=True, help="Available commands")
        self.shift_commands.add_command(subparsers)
        self.download_commands.add_command(subparsers)
        self.utility_commands.add_commands(subparsers)

        return parser

    @staticmethod
    def create_run_options(args: argparse.Namespace) -> RunOptions:
        """Create run options from CLI arguments."""
        return RunOptions(
            workers=getattr(args, "workers", None),
            timeout=getattr(args, "timeout", None),
        )

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parser = self.build_parser()
        parsed_args = parser.parse_args(args)

        # Update config manager if custom config provided
        if getattr(parsed_args, "config", None):
            self.config_manager = ConfigManager(parsed_args.config)
            self.shift_commands.config_manager = self.config_manager
            self.download_commands.config_manager = self.config_manager
            self.utility_commands.config_manager = self.config_manager

        self.setup_logging(parsed_args.verbose, self.config_manager.config.global_.log_level)

        run_options = self.create_run_options(parsed_args)

        try:
            # Use configuration context for temporary overrides
            with with_config_overrides(self.config_manager) as config_mgr:
                config_mgr.apply_run_options(run_options)

                if parsed_args.command == "shift":
                    return self.shift_commands.handle_command(parsed_args)
                if parsed_args.command == "download":
                    return self.download_commands.handle_command(parsed_args)
                if parsed_args.command in {"info", "probe"}:
                    return self.utility_commands.handle_command(parsed_args)
                parser.error(f"Unknown command: {parsed_args.command}")

        except KeyboardInterrupt:
            LOG.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT
        except Exception:
            LOG.exception("Unexpected error")
            return 1

        return 0


def main() -> int:
    """Entry point for the CLI."""
    cli = PitchShiftCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
