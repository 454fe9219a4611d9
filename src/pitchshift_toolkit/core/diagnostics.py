"""Classify external tool failures from their stderr output."""

from __future__ import annotations

import re

from .base import FailureSubtype

# Checked in order; the first matching pattern wins.
_STDERR_PATTERNS: list[tuple[FailureSubtype, re.Pattern[str]]] = [
    (
        FailureSubtype.MISSING_INPUT,
        re.compile(r"No such file or directory", re.IGNORECASE),
    ),
    (
        FailureSubtype.PERMISSION_DENIED,
        re.compile(r"Permission denied|Access is denied|Operation not permitted", re.IGNORECASE),
    ),
    (
        FailureSubtype.UNSUPPORTED_FORMAT,
        re.compile(
            r"Unknown encoder|Encoder not found|Unsupported codec|Unknown format|"
            r"Unable to find a suitable output format|not currently supported in container|"
            r"Requested format is not available|Unsupported URL|does not contain any stream",
            re.IGNORECASE,
        ),
    ),
    (
        FailureSubtype.CORRUPT_INPUT,
        re.compile(
            r"Invalid data found when processing input|moov atom not found|Header missing|"
            r"Error while decoding|could not find codec parameters|corrupt",
            re.IGNORECASE,
        ),
    ),
    (
        FailureSubtype.NETWORK_ERROR,
        re.compile(
            r"HTTP Error \d+|Unable to download|Connection (?:refused|reset)|timed out|"
            r"Name or service not known|getaddrinfo failed|Temporary failure in name resolution",
            re.IGNORECASE,
        ),
    ),
]


def classify_stderr(stderr: str | None) -> FailureSubtype:
    """Map a tool's stderr text to a failure subtype."""
    if not stderr:
        return FailureSubtype.UNKNOWN
    for subtype, pattern in _STDERR_PATTERNS:
        if pattern.search(stderr):
            return subtype
    return FailureSubtype.UNKNOWN


def truncate_tail(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters of ``text``, marking the cut."""
    if limit <= 0 or len(text) <= limit:
        return text
    return "..." + text[-limit:]
