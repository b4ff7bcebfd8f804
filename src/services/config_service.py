"""
Configuration Service Module

Manages application configuration read/write and hot updates.
"""

from typing import Any, Dict, Optional
from pathlib import Path
import copy
import os
import sys
import yaml
import threading
import logging

logger = logging.getLogger(__name__)


class ConfigService:
    """
    Configuration Service

    Manages application configuration: built-in defaults deep-merged with a
    user YAML file.

    Usage Example:
        config = ConfigService("config.yaml")

        # Get configuration
        target = config.get("recommendations.target_upcoming", 12)

        # Set configuration
        config.set("playback.default_volume", 0.9)
        config.save()
    """

    def __init__(self, config_path: Optional[str] = None):
        self._user_config_path = Path(config_path) if config_path else self._get_user_config_path()
        self._config: Dict[str, Any] = {}
        self._lock = threading.Lock()

        self._load()

    @staticmethod
    def _get_user_config_path() -> Path:
        """Get user configuration file path (platform-specific)"""
        if sys.platform == "win32":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif sys.platform == "darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
        return base / "encore-player" / "config.yaml"

    @property
    def path(self) -> Path:
        return self._user_config_path

    def _load(self) -> None:
        """Load and merge from default and user configuration"""
        config = self._get_default_config()

        if self._user_config_path.exists():
            try:
                with open(self._user_config_path, 'r', encoding='utf-8') as f:
                    user_config = yaml.safe_load(f) or {}
                if isinstance(user_config, dict):
                    self._deep_merge(config, user_config)
                else:
                    logger.warning("Ignoring configuration that is not a mapping: %s", self._user_config_path)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load user configuration: %s", e)

        with self._lock:
            self._config = config

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Deep merge dictionaries, override overwrites base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            'queue': {
                'capacity': 1000,
                'keep_previous': 5,
            },
            'playback': {
                'default_volume': 1.0,
                'play_report_delay_seconds': 5.0,
                'near_end_seconds': 1.0,
                'restart_threshold_seconds': 3.0,
                'persist_queue': True,
            },
            'recommendations': {
                'enabled': True,
                'target_upcoming': 12,     # Upcoming recommendation entries to maintain
                'result_limit': 10,        # Candidates returned per seed
                'max_seeds': 3,
                'min_confirmed': 20,       # Stop searching once this many genre matches are found
                'min_fallback': 10,        # Keep falling back while below this
                'year_windows': [3, 5, 7, 10],
                'search_limit': 100,
                'artist_sample_limit': 50,
                'recent_history_size': 20,
                'failure_cooldown_seconds': 10.0,
                'success_cooldown_seconds': 5.0,
                'max_retries': 3,
                'backoff_base_seconds': 15.0,
                'safety_timeout_seconds': 30.0,
            },
            'catalog': {
                'resync_grace_seconds': 30.0,
            },
            'logging': {
                'level': 'INFO',
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Supports dot-separated nested keys, e.g., "queue.capacity".

        Args:
            key: Configuration key
            default: Default value

        Returns:
            Configuration value or the default value.
        """
        with self._lock:
            keys = key.split('.')
            value = self._config

            try:
                for k in keys:
                    value = value[k]
                return value
            except (KeyError, TypeError):
                return default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(self.get(key, default))
        except (TypeError, ValueError):
            logger.warning("Invalid integer for %s, using %s", key, default)
            return default

    def get_float(self, key: str, default: float) -> float:
        try:
            return float(self.get(key, default))
        except (TypeError, ValueError):
            logger.warning("Invalid number for %s, using %s", key, default)
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            key: Configuration key (dot-separated)
            value: Configuration value
        """
        with self._lock:
            keys = key.split('.')
            config = self._config

            # Navigate to the parent node
            for k in keys[:-1]:
                if not isinstance(config.get(k), dict):
                    config[k] = {}
                config = config[k]

            config[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Get all configurations."""
        with self._lock:
            return copy.deepcopy(self._config)

    def save(self) -> bool:
        """
        Save configuration to the user configuration file.

        Returns:
            bool: True if saving was successful.
        """
        try:
            self._user_config_path.parent.mkdir(parents=True, exist_ok=True)

            with self._lock:
                with open(self._user_config_path, 'w', encoding='utf-8') as f:
                    yaml.dump(self._config, f, allow_unicode=True, default_flow_style=False)
            logger.debug("Configuration saved to: %s", self._user_config_path)
            return True
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to save configuration: %s", e)
            return False

    def reload(self) -> bool:
        """
        Reload configuration

        Returns:
            bool: Whether loading was successful
        """
        try:
            self._load()
            return True
        except Exception as e:
            logger.error("Failed to reload configuration: %s", e)
            return False

    def reset(self) -> None:
        """Reset to default configuration."""
        with self._lock:
            self._config = self._get_default_config()
