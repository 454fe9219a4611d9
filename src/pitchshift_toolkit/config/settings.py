"""Configuration management for the pitch shift toolkit."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .constants import SUPPORTED_OUTPUT_FORMATS

LOG = logging.getLogger(__name__)

TOOL_NAMES = ("transcoder", "prober", "downloader")
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# Configuration singleton
class _ConfigSingleton:
    """Configuration singleton holder."""

    _instance: PitchShiftConfig | None = None

    @classmethod
    def get_instance(cls) -> PitchShiftConfig:
        """Get the configuration instance."""
        if cls._instance is None:
            # Try to load from default config file in the working directory
            config_path = Path.cwd() / "config.yaml"
            if config_path.exists():
                cls._instance = PitchShiftConfig.load_from_file(config_path)
            else:
                cls._instance = PitchShiftConfig()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the configuration instance."""
        cls._instance = None


_config_singleton = _ConfigSingleton()


def _default_codec_args() -> dict[str, list[str]]:
    return {
        "mp3": ["-c:a", "libmp3lame", "-q:a", "2"],
        "wav": ["-c:a", "pcm_s16le"],
        "flac": ["-c:a", "flac"],
        "aac": ["-c:a", "aac", "-b:a", "192k"],
    }


def _default_allowed_hosts() -> list[str]:
    return [
        "youtube.com",
        "youtu.be",
        "youtube-nocookie.com",
        "soundcloud.com",
        "bandcamp.com",
        "vimeo.com",
    ]


@dataclass
class ToolsConfig:
    """Where to find the external executables."""

    bundle_dir: str | None = None  # Directory shipped alongside the application
    paths: dict[str, str] = field(default_factory=dict)  # Explicit per-tool overrides
    use_system_path: bool = True  # Development fallback: search PATH
    version_timeout: float = 5.0


@dataclass
class SchedulerConfig:
    """Job scheduling configuration."""

    max_concurrent: int | None = None  # None derives a value from CPU parallelism
    retention_seconds: float = 600.0
    terminate_grace_seconds: float = 5.0
    kill_timeout_seconds: float = 5.0


@dataclass
class ConversionConfig:
    """Pitch shift (transcoder) configuration."""

    timeout: float = 1800.0
    probe_timeout: float = 30.0
    stderr_tail_chars: int = 4000
    default_sample_rate: int = 44100
    codec_args: dict[str, list[str]] = field(default_factory=_default_codec_args)


@dataclass
class DownloadConfig:
    """Audio download (downloader) configuration."""

    timeout: float = 3600.0
    audio_format: str = "mp3"
    title_template: str = "%(title)s.%(ext)s"
    allowed_hosts: list[str] = field(default_factory=_default_allowed_hosts)


@dataclass
class GlobalConfig:
    """Global settings."""

    log_level: str = "WARNING"


@dataclass
class PitchShiftConfig:
    """Main configuration class."""

    tools: ToolsConfig = field(default_factory=ToolsConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    global_: GlobalConfig = field(default_factory=GlobalConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> PitchShiftConfig:
        """Load configuration from YAML file."""
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                LOG.warning("Ignoring config %s: top level must be a mapping", config_path)
                return cls()
            return cls._from_dict(data)
        except (OSError, yaml.YAMLError) as e:
            LOG.warning("Failed to load config from %s: %s", config_path, e)
            return cls()

    def codec_args_for(self, output_format: str) -> list[str]:
        """Get the encoder arguments for an output format."""
        if output_format not in self.conversion.codec_args:
            available = ", ".join(sorted(self.conversion.codec_args))
            msg = f"Unknown output format '{output_format}'. Available: {available}"
            raise ValueError(msg)
        return list(self.conversion.codec_args[output_format])

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PitchShiftConfig:
        """Create config from dictionary."""
        return cls(
            tools=cls._parse_tools_config(_section(data, "tools")),
            scheduler=cls._parse_scheduler_config(_section(data, "scheduler")),
            conversion=cls._parse_conversion_config(_section(data, "conversion")),
            download=cls._parse_download_config(_section(data, "download")),
            global_=cls._parse_global_config(_section(data, "global")),
        )

    @classmethod
    def _parse_tools_config(cls, tools_data: dict[str, Any]) -> ToolsConfig:
        """Parse tool location configuration."""
        paths = {}
        for name, value in _section(tools_data, "paths", "tools.").items():
            if name not in TOOL_NAMES:
                LOG.warning("Ignoring path override for unknown tool '%s'", name)
                continue
            if value:
                paths[name] = str(value)

        bundle_dir = tools_data.get("bundle_dir")
        return ToolsConfig(
            bundle_dir=str(bundle_dir) if bundle_dir else None,
            paths=paths,
            use_system_path=_bool(tools_data, "use_system_path", default=True),
            version_timeout=_number(tools_data, "version_timeout", 5.0),
        )

    @classmethod
    def _parse_scheduler_config(cls, scheduler_data: dict[str, Any]) -> SchedulerConfig:
        """Parse scheduler configuration."""
        max_concurrent = scheduler_data.get("max_concurrent")
        if max_concurrent is not None:
            try:
                max_concurrent = int(max_concurrent)
            except (TypeError, ValueError, OverflowError):
                LOG.warning("Invalid max_concurrent '%s'. Deriving from CPU count.", max_concurrent)
                max_concurrent = None
            else:
                if max_concurrent < 1:
                    LOG.warning("max_concurrent must be at least 1, got %d. Using 1.", max_concurrent)
                    max_concurrent = 1

        return SchedulerConfig(
            max_concurrent=max_concurrent,
            retention_seconds=_number(scheduler_data, "retention_seconds", 600.0),
            terminate_grace_seconds=_number(scheduler_data, "terminate_grace_seconds", 5.0),
            kill_timeout_seconds=_number(scheduler_data, "kill_timeout_seconds", 5.0),
        )

    @classmethod
    def _parse_conversion_config(cls, conversion_data: dict[str, Any]) -> ConversionConfig:
        """Parse conversion configuration."""
        codec_args = _default_codec_args()
        for fmt, args in _section(conversion_data, "codec_args", "conversion.").items():
            if fmt not in SUPPORTED_OUTPUT_FORMATS:
                LOG.warning("Ignoring codec arguments for unsupported format '%s'", fmt)
                continue
            if not isinstance(args, list) or not all(isinstance(a, (str, int, float)) for a in args):
                LOG.warning("Codec arguments for '%s' must be a list of strings", fmt)
                continue
            codec_args[fmt] = [str(a) for a in args]

        return ConversionConfig(
            timeout=_number(conversion_data, "timeout", 1800.0),
            probe_timeout=_number(conversion_data, "probe_timeout", 30.0),
            stderr_tail_chars=_int(conversion_data, "stderr_tail_chars", 4000),
            default_sample_rate=_int(conversion_data, "default_sample_rate", 44100),
            codec_args=codec_args,
        )

    @classmethod
    def _parse_download_config(cls, download_data: dict[str, Any]) -> DownloadConfig:
        """Parse download configuration."""
        audio_format = str(download_data.get("audio_format", "mp3")).lower()
        if audio_format not in SUPPORTED_OUTPUT_FORMATS:
            LOG.warning(
                "Invalid download audio format '%s'. Using 'mp3'. Valid options: %s",
                audio_format,
                ", ".join(SUPPORTED_OUTPUT_FORMATS),
            )
            audio_format = "mp3"

        allowed_hosts = download_data.get("allowed_hosts")
        if allowed_hosts is None:
            allowed_hosts = _default_allowed_hosts()
        else:
            if isinstance(allowed_hosts, (str, int, float)):
                allowed_hosts = [allowed_hosts]
            elif not isinstance(allowed_hosts, list):
                LOG.warning("Invalid allowed_hosts '%s'. Using the default hosts.", allowed_hosts)
                allowed_hosts = _default_allowed_hosts()
            allowed_hosts = [str(h).strip().lower() for h in allowed_hosts if str(h).strip()]

        title_template = download_data.get("title_template")
        if not isinstance(title_template, str) or not title_template.strip():
            if title_template is not None:
                LOG.warning("Invalid title_template '%s'. Using '%%(title)s.%%(ext)s'.", title_template)
            title_template = "%(title)s.%(ext)s"

        return DownloadConfig(
            timeout=_number(download_data, "timeout", 3600.0),
            audio_format=audio_format,
            title_template=title_template,
            allowed_hosts=allowed_hosts,
        )

    @classmethod
    def _parse_global_config(cls, global_data: dict[str, Any]) -> GlobalConfig:
        """Parse global configuration."""
        log_level = str(global_data.get("log_level", "WARNING")).upper()
        if log_level not in LOG_LEVELS:
            LOG.warning("Invalid log level '%s'. Using 'WARNING'.", log_level)
            log_level = "WARNING"
        return GlobalConfig(log_level=log_level)


def _section(data: dict[str, Any], name: str, prefix: str = "") -> dict[str, Any]:
    """Return the mapping stored under ``name``; anything else is replaced by an empty one."""
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        LOG.warning("Invalid '%s%s' section: expected a mapping, got %s. Using defaults.", prefix, name, value)
        return {}
    return value


def _number(data: dict[str, Any], key: str, default: float) -> float:
    """Read a non-negative number, falling back to ``default`` with a warning."""
    value = data.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        LOG.warning("Invalid %s '%s'. Using %g.", key, value, default)
        return float(default)
    if number < 0 or math.isnan(number):
        LOG.warning("Invalid %s '%s'. Using %g.", key, value, default)
        return float(default)
    return number


def _int(data: dict[str, Any], key: str, default: int) -> int:
    number = _number(data, key, default)
    if math.isinf(number):
        LOG.warning("Invalid %s '%s'. Using %d.", key, number, default)
        return default
    return int(number)


def _bool(data: dict[str, Any], key: str, *, default: bool) -> bool:
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    LOG.warning("Invalid %s '%s'. Using %s.", key, value, default)
    return default


def get_config() -> PitchShiftConfig:
    """Get the global configuration instance."""
    return _config_singleton.get_instance()


def reset_config() -> None:
    """Drop the cached global configuration so the next lookup reloads it."""
    _config_singleton.reset()
