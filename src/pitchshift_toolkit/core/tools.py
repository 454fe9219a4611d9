"""Locate the external executables the toolkit drives."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import ToolsConfig
from ..config.constants import BUNDLED_BINARIES_DIR
from .base import ToolNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator

LOG = logging.getLogger(__name__)


class ToolName(Enum):
    """External tools used by jobs."""

    TRANSCODER = "transcoder"
    PROBER = "prober"
    DOWNLOADER = "downloader"

    @property
    def executable(self) -> str:
        """Base executable name, without platform suffix."""
        return {
            ToolName.TRANSCODER: "ffmpeg",
            ToolName.PROBER: "ffprobe",
            ToolName.DOWNLOADER: "yt-dlp",
        }[self]

    @property
    def version_args(self) -> list[str]:
        """Arguments that make the tool print its version and exit."""
        if self is ToolName.DOWNLOADER:
            return ["--version"]
        return ["-version"]


@dataclass(frozen=True)
class ToolSpec:
    """A resolved external tool."""

    name: ToolName
    resolved_path: Path | None = None
    version: str | None = None

    @property
    def available(self) -> bool:
        return self.resolved_path is not None


def platform_dir_name() -> str:
    """Name of the per-platform bundled binaries directory."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def is_executable(path: Path) -> bool:
    """Check that ``path`` is a regular file we are allowed to execute."""
    return path.is_file() and os.access(path, os.X_OK)


class ToolLocator:
    """
    Resolve tool paths once per process lifetime.

    Resolution order is: the bundle directory shipped with the application
    (and its ``binaries/<platform>`` subdirectory), an explicit override from
    configuration, then the system PATH as a development fallback.
    """

    def __init__(self, tools_config: ToolsConfig | None = None, *, app_dir: Path | None = None) -> None:
        self.config = tools_config or ToolsConfig()
        self._app_dir = app_dir
        self._cache: dict[ToolName, ToolSpec] = {}
        self._lock = threading.Lock()

    @property
    def bundle_dirs(self) -> list[Path]:
        """Directories searched for bundled executables."""
        base: Path | None = None
        if self.config.bundle_dir:
            base = Path(self.config.bundle_dir).expanduser()
        elif self._app_dir is not None:
            base = self._app_dir
        elif getattr(sys, "frozen", False):
            # Packaged application: binaries sit next to the executable
            base = Path(sys.executable).resolve().parent

        if base is None:
            return []
        return [base, base / BUNDLED_BINARIES_DIR / platform_dir_name()]

    def resolve(self, tool: ToolName) -> ToolSpec:
        """
        Resolve a tool, querying its version on first use.

        Raises:
            ToolNotFoundError: If no executable candidate exists

        """
        with self._lock:
            cached = self._cache.get(tool)
            if cached is not None:
                return cached

            for candidate in self._candidates(tool):
                if is_executable(candidate):
                    spec = ToolSpec(name=tool, resolved_path=candidate, version=self._query_version(tool, candidate))
                    LOG.info("Resolved %s: %s (%s)", tool.value, candidate, spec.version or "version unknown")
                    self._cache[tool] = spec
                    return spec

        msg = f"{tool.executable} not found (bundle it, set tools.paths.{tool.value}, or add it to PATH)"
        LOG.warning(msg)
        raise ToolNotFoundError(tool.value, msg)

    def is_available(self, tool: ToolName) -> bool:
        """Whether ``tool`` resolves, without raising."""
        try:
            self.resolve(tool)
        except ToolNotFoundError:
            return False
        return True

    def invalidate(self, tool: ToolName | None = None) -> None:
        """Forget cached resolutions so the next resolve searches again."""
        with self._lock:
            if tool is None:
                self._cache.clear()
            else:
                self._cache.pop(tool, None)

    def _candidates(self, tool: ToolName) -> Iterator[Path]:
        filename = tool.executable + (".exe" if os.name == "nt" else "")

        for directory in self.bundle_dirs:
            yield directory / filename

        override = self.config.paths.get(tool.value)
        if override:
            override_path = Path(override).expanduser()
            if not is_executable(override_path):
                LOG.warning("Configured %s path is not executable: %s", tool.value, override_path)
            yield override_path

        if self.config.use_system_path:
            found = shutil.which(tool.executable)
            if found:
                yield Path(found)

    def _query_version(self, tool: ToolName, path: Path) -> str | None:
        """Ask the tool for its version; failure leaves the version unset."""
        try:
            result = subprocess.run(  # noqa: S603
                [str(path), *tool.version_args],
                capture_output=True,
                text=True,
                timeout=self.config.version_timeout,
                check=True,
                encoding="utf-8",
                errors="replace",
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            LOG.debug("Version query failed for %s: %s", path, e)
            return None

        first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
        return first_line or None
