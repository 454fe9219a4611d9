"""
System constants that should never change.

These are technical/system limits, not user preferences.
User-configurable values should go in config.yaml instead.
"""

VERBOSE_LOGGING_THRESHOLD = 2  # -vv enables debug output

# Pitch shift limits
SEMITONE_MIN = -12
SEMITONE_MAX = 12
SEMITONES_PER_OCTAVE = 12

# Output formats and the muxer FFmpeg must use for each
SUPPORTED_OUTPUT_FORMATS = ("mp3", "wav", "flac", "aac")
FORMAT_MUXERS = {
    "mp3": "mp3",
    "wav": "wav",
    "flac": "flac",
    "aac": "adts",
}

# Subprocess housekeeping
OUTPUT_TAIL_LINES = 50  # Lines kept from each stream for error reporting
STREAM_POLL_INTERVAL = 0.1  # Seconds between cancellation/timeout checks
READER_JOIN_TIMEOUT = 1.0  # Seconds to wait for stream reader threads

# Bundled binaries live next to the application in binaries/<platform>
BUNDLED_BINARIES_DIR = "binaries"
STAGING_PREFIX = ".pitchshift-"
SESSION_LOG_LIMIT = 500  # Recent file operations kept for the session summary
