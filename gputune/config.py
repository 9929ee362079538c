"""
GPUTune - Configuration Module

Loads application settings from ~/.config/gputune/config.json.
"""

import json
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Any, Optional

from .device import DEFAULT_HISTORY_LENGTH

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "gputune"
CONFIG_FILE = CONFIG_DIR / "config.json"


@dataclass
class AppConfig:
    """Application configuration."""

    # Monitoring settings
    monitoring_interval_ms: int = 1000  # Refresh cadence for live stats
    history_length: int = DEFAULT_HISTORY_LENGTH  # Samples kept per device

    # Shown when no vendor management API is available
    fallback_device_name: str = "System Default GPU"

    # Temperature thresholds for status indicators
    warning_temp_celsius: int = 70
    critical_temp_celsius: int = 80

    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create config from dictionary."""
        return cls(
            monitoring_interval_ms=data.get("monitoring_interval_ms", 1000),
            history_length=data.get("history_length", DEFAULT_HISTORY_LENGTH),
            fallback_device_name=data.get("fallback_device_name", "System Default GPU"),
            warning_temp_celsius=data.get("warning_temp_celsius", 70),
            critical_temp_celsius=data.get("critical_temp_celsius", 80),
            log_level=data.get("log_level", "INFO"),
        )


class ConfigManager:
    """Reads the application configuration file."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or CONFIG_FILE
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        """Get current configuration, loading from file if needed."""
        if self._config is None:
            self._config = self.load()
        return self._config

    def load(self) -> AppConfig:
        """Load configuration from file."""
        if not self.config_file.exists():
            logger.info("No config file found, using defaults")
            return AppConfig()

        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
            return AppConfig.from_dict(data)
        except (json.JSONDecodeError, IOError, AttributeError, ValueError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
            return AppConfig()


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> AppConfig:
    """Get the current application configuration."""
    return get_config_manager().config
