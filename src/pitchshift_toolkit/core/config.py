"""Configuration access with override contexts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from ..config import PitchShiftConfig
from ..config import get_config as _get_global_config

if TYPE_CHECKING:
    from pathlib import Path

LOG = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Command-line options that can override configuration."""

    workers: int | None = None
    timeout: float | None = None


class ConfigManager:
    """Configuration manager with context support."""

    def __init__(self, config_path: Path | None = None, config: PitchShiftConfig | None = None) -> None:
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to config file
            config: Already-built configuration, takes precedence over config_path

        """
        if config is not None:
            self._config = config
        elif config_path is not None:
            self._config = PitchShiftConfig.load_from_file(config_path)
        else:
            self._config = _get_global_config()
        self._overrides: dict[str, Any] = {}
        self._context_stack: list[dict[str, Any]] = []

    @property
    def config(self) -> PitchShiftConfig:
        """Get the base configuration."""
        return self._config

    def set_override(self, key_path: str, value: object) -> None:
        """Set a temporary configuration override."""
        self._overrides[key_path] = value

    def push_context(self, overrides: dict[str, Any]) -> None:
        """Push a new configuration context."""
        self._context_stack.append(self._overrides.copy())
        self._overrides.update(overrides)

    def pop_context(self) -> None:
        """Pop the current configuration context."""
        if self._context_stack:
            self._overrides = self._context_stack.pop()

    def apply_run_options(self, options: RunOptions) -> None:
        """Apply command-line options as configuration overrides."""
        overrides: dict[str, Any] = {}

        if options.workers is not None:
            overrides["scheduler.max_concurrent"] = max(1, options.workers)
        if options.timeout is not None:
            overrides["conversion.timeout"] = options.timeout
            overrides["download.timeout"] = options.timeout

        for key, value in overrides.items():
            LOG.debug("Config override %s = %r", key, value)
            self.set_override(key, value)

    def effective_config(self) -> PitchShiftConfig:
        """Build a configuration object with the active overrides applied."""
        config = PitchShiftConfig(
            tools=self._config.tools,
            scheduler=replace(self._config.scheduler),
            conversion=replace(self._config.conversion),
            download=replace(self._config.download),
            global_=self._config.global_,
        )
        for key_path, value in self._overrides.items():
            section_name, _, attr = key_path.partition(".")
            section = getattr(config, section_name, None)
            if section is None or not hasattr(section, attr):
                LOG.warning("Ignoring unknown config override '%s'", key_path)
                continue
            setattr(section, attr, value)
        return config


class ConfigContext:
    """Context manager for temporary configuration changes."""

    def __init__(self, config_manager: ConfigManager, overrides: dict[str, Any]) -> None:
        self.config_manager = config_manager
        self.overrides = overrides

    def __enter__(self) -> ConfigManager:
        """Enter the configuration context."""
        self.config_manager.push_context(self.overrides)
        return self.config_manager

    def __exit__(self, _exc_type: object, _exc_val: object, _exc_tb: object) -> None:
        """Exit the configuration context."""
        self.config_manager.pop_context()


def with_config_overrides(config_manager: ConfigManager, **overrides: object) -> ConfigContext:
    """Create a context with configuration overrides."""
    return ConfigContext(config_manager, overrides)
