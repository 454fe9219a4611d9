"""yt-dlp integration: URL validation, filename safety and command construction."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from .base import InvalidInputError

if TYPE_CHECKING:
    from collections.abc import Iterable

LOG = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')
_TEMPLATE_UNSAFE = re.compile(r"[\\/]+")
MAX_FILENAME_LENGTH = 200
PARTIAL_SUFFIXES = {".part", ".ytdl", ".temp", ".tmp"}


def url_host(url: str) -> str:
    """Lower-cased host of ``url`` without a leading ``www.``."""
    host = (urlparse(url.strip()).hostname or "").lower().rstrip(".")
    return host[4:] if host.startswith("www.") else host


def host_allowed(host: str, allowed_hosts: Iterable[str]) -> bool:
    """Whether ``host`` equals an allowed domain or is a subdomain of one."""
    if not host:
        return False
    for allowed in allowed_hosts:
        allowed = allowed.lower().strip(".")
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


def validate_download_url(url: str, allowed_hosts: Iterable[str]) -> str:
    """
    Check a download URL against the host allow-list.

    Returns:
        The stripped URL

    Raises:
        InvalidInputError: Not an http(s) URL, or the host is not allowed

    """
    value = (url or "").strip()
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        msg = f"Not an http(s) URL: {url!r}"
        raise InvalidInputError(msg)

    host = url_host(value)
    if not host_allowed(host, allowed_hosts):
        msg = f"Downloads from '{host}' are not allowed"
        raise InvalidInputError(msg)
    return value


def sanitize_filename(name: str, replacement: str = "_") -> str:
    """Remove path-unsafe characters so ``name`` stays a single path component."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub(replacement, name).strip().strip(".")
    cleaned = cleaned.replace("..", replacement)
    if len(cleaned) > MAX_FILENAME_LENGTH:
        stem, dot, suffix = cleaned.rpartition(".")
        if dot and len(suffix) <= 5:
            cleaned = stem[: MAX_FILENAME_LENGTH - len(suffix) - 1] + "." + suffix
        else:
            cleaned = cleaned[:MAX_FILENAME_LENGTH]
    return cleaned or "download"


def sanitize_template(template: str) -> str:
    """Strip directory separators from an output template so it names a file in the target directory."""
    cleaned = _TEMPLATE_UNSAFE.sub("_", template).replace("..", "_").strip()
    return cleaned or "%(title)s.%(ext)s"


def build_download_args(
    url: str,
    staging_dir: Path,
    *,
    title_template: str,
    audio_format: str,
    ffmpeg_path: Path | None = None,
) -> list[str]:
    """
    Build yt-dlp arguments (without the executable) for an audio download.

    The final file path is printed to stdout after post-processing so the
    caller can find the artifact.
    """
    args = [
        "--newline",
        "--progress",
        "--no-playlist",
        "--no-warnings",
        "--windows-filenames",
        "--trim-filenames",
        str(MAX_FILENAME_LENGTH),
        "-x",
        "--audio-format",
        audio_format,
        "-P",
        str(staging_dir),
        "-o",
        sanitize_template(title_template),
        "--print",
        "after_move:filepath",
        "--no-simulate",
    ]
    if ffmpeg_path is not None:
        args.extend(["--ffmpeg-location", str(ffmpeg_path)])
    args.append(url)
    return args


def find_artifact(staging_dir: Path, stdout_tail: str) -> Path | None:
    """
    Locate the downloaded file inside ``staging_dir``.

    Prefers the path yt-dlp printed; falls back to the largest finished file.
    Paths outside ``staging_dir`` are never returned.
    """
    root = staging_dir.resolve()
    for line in reversed(stdout_tail.splitlines()):
        candidate = Path(line.strip())
        if not line.strip() or not candidate.is_absolute():
            continue
        try:
            resolved = candidate.resolve()
        except OSError:
            continue
        if resolved.is_file() and resolved.parent == root:
            return resolved

    if not root.is_dir():
        return None
    finished = [p for p in root.iterdir() if p.is_file() and p.suffix.lower() not in PARTIAL_SUFFIXES]
    if not finished:
        return None
    LOG.debug("yt-dlp did not report its output; picking largest file in %s", root)
    return max(finished, key=lambda p: p.stat().st_size)
