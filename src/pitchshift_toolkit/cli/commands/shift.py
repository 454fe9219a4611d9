"""Pitch shift CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ...config.constants import SEMITONE_MAX, SEMITONE_MIN, SUPPORTED_OUTPUT_FORMATS
from ...core.base import ProcessingError
from ...core.job import default_output_path
from ...service import PitchShiftService
from ..progress import run_batch

if TYPE_CHECKING:
    import argparse

    from ...core import ConfigManager

LOG = logging.getLogger(__name__)


class ShiftCommands:
    """Pitch shift command handlers."""

    def __init__(self, config_manager: ConfigManager) -> None:
        self.config_manager = config_manager

    def add_command(self, subparsers: argparse._SubParsersAction) -> None:
        """Register the ``shift`` command."""
        parser = subparsers.add_parser("shift", help="Shift the pitch of audio files")
        parser.add_argument("paths", nargs="+", type=Path, help="Audio files to process")
        parser.add_argument(
            "--semitones",
            "-s",
            type=int,
            required=True,
            help=f"Pitch shift in semitones ({SEMITONE_MIN}..{SEMITONE_MAX})",
        )
        parser.add_argument(
            "--format",
            "-f",
            dest="output_format",
            choices=SUPPORTED_OUTPUT_FORMATS,
            default="mp3",
            help="Output format (default: mp3)",
        )
        target = parser.add_mutually_exclusive_group()
        target.add_argument("--output", "-o", type=Path, help="Output file (single input only)")
        target.add_argument("--output-dir", type=Path, help="Directory for output files")
        parser.add_argument("--workers", "-w", type=int, help="Number of jobs to run at once")
        parser.add_argument("--timeout", type=float, help="Per-job timeout in seconds")

    def handle_command(self, args: argparse.Namespace) -> int:
        """Handle the ``shift`` command."""
        if args.output and len(args.paths) > 1:
            LOG.error("--output can only be used with a single input file; use --output-dir instead")
            return 1

        with PitchShiftService(self.config_manager.effective_config()) as service:
            labels: dict[str, str] = {}
            rejected = 0
            for path in args.paths:
                output_path = self._output_path(args, path)
                try:
                    job_id = service.submit_pitch_shift(path, args.semitones, args.output_format, output_path)
                except ProcessingError as e:
                    LOG.error("Skipping %s: %s", path, e.message)
                    rejected += 1
                    continue
                labels[job_id] = path.name

            if not labels:
                return 1
            exit_code = run_batch(service, labels, "pitch_shift")
        return 1 if rejected else exit_code

    @staticmethod
    def _output_path(args: argparse.Namespace, path: Path) -> Path | None:
        if args.output:
            return args.output
        if args.output_dir:
            return args.output_dir / default_output_path(path, args.semitones, args.output_format).name
        return None
