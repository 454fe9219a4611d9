"""Audio download CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ...config.constants import SUPPORTED_OUTPUT_FORMATS
from ...core.base import ProcessingError
from ...service import PitchShiftService
from ..progress import run_batch

if TYPE_CHECKING:
    import argparse

    from ...core import ConfigManager

LOG = logging.getLogger(__name__)


class DownloadCommands:
    """Download command handlers."""

    def __init__(self, config_manager: ConfigManager) -> None:
        self.config_manager = config_manager

    def add_command(self, subparsers: argparse._SubParsersAction) -> None:
        """Register the ``download`` command."""
        parser = subparsers.add_parser("download", help="Download audio from a video site")
        parser.add_argument("urls", nargs="+", help="Video page URLs")
        parser.add_argument("--output-dir", "-o", type=Path, required=True, help="Directory for downloaded files")
        parser.add_argument(
            "--format",
            "-f",
            dest="audio_format",
            choices=SUPPORTED_OUTPUT_FORMATS,
            help="Audio format (default: from config)",
        )
        parser.add_argument("--workers", "-w", type=int, help="Number of downloads to run at once")
        parser.add_argument("--timeout", type=float, help="Per-download timeout in seconds")

    def handle_command(self, args: argparse.Namespace) -> int:
        """Handle the ``download`` command."""
        with PitchShiftService(self.config_manager.effective_config()) as service:
            labels: dict[str, str] = {}
            rejected = 0
            for url in args.urls:
                try:
                    job_id = service.submit_download(url, args.output_dir, args.audio_format)
                except ProcessingError as e:
                    LOG.error("Skipping %s: %s", url, e.message)
                    rejected += 1
                    continue
                labels[job_id] = url

            if not labels:
                return 1
            exit_code = run_batch(service, labels, "download")
        return 1 if rejected else exit_code
