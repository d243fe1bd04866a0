"""
Configuration manager for the message header cache.

Handles loading and managing application configuration from YAML files.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml
from utils.paths import CACHE_DIR, CONFIG_PATH, LOG_DIR


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager."""
        self.logger = logging.getLogger(__name__)

        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = CONFIG_PATH

        self._config = None

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            self.logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._config = self.get_default_config()
            return self._config

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.logger.error(f"Failed to parse configuration {self.config_path}: {e}")
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e
        except OSError as e:
            self.logger.error(f"Failed to read configuration {self.config_path}: {e}")
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigError(f"Top level of {self.config_path} must be a mapping")

        # Merge with defaults to ensure all required keys exist
        self._config = self._merge_configs(self.get_default_config(), config)
        self.logger.info(f"Configuration loaded from {self.config_path}")

        return self._config

    def get_config(self) -> Dict[str, Any]:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)."""
        config = self.get_config()

        keys = key.split('.')
        value = config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """Set configuration value by key (supports dot notation)."""
        config = self.get_config()

        keys = key.split('.')
        current = config

        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value

    def save_config(self, config: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None):
        """Save configuration to YAML file."""
        if config is not None:
            self._config = config

        if not self._config:
            self.logger.warning("No configuration to save")
            return

        save_path = Path(config_path) if config_path else self.config_path

        try:
            tmp_path = save_path.with_suffix(save_path.suffix + ".tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                yaml.dump(self._config, f, default_flow_style=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, save_path)

            self.logger.info(f"Configuration saved to {save_path}")

        except Exception as e:
            self.logger.error(f"Failed to save configuration: {e}")
            raise

    def get_default_config(self) -> Dict[str, Any]:
        """Return default configuration values."""
        return {
            'msgstore': {
                'host': "localhost",
                'port': 7754,
                'base_url': None,
                'timeout_seconds': 30
            },
            'cache': {
                'path': str(CACHE_DIR),
                'refresh_min_delay_seconds': 10,
                'background_refresh': False,
                'refresh_interval_seconds': 60
            },
            'logging': {
                'level': "INFO",
                'file': str(LOG_DIR / "app.log"),
                'max_size_mb': 2,
                'backup_count': 5
            }
        }

    def _merge_configs(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Merge user configuration with defaults."""
        result = default.copy()

        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get_msgstore_config(self) -> Dict[str, Any]:
        """Get message store connection settings."""
        return self.get('msgstore', {})

    def get_cache_config(self) -> Dict[str, Any]:
        """Get header cache settings."""
        return self.get('cache', {})

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []
        config = self.get_config()

        for section in ('msgstore', 'cache'):
            if section not in config:
                errors.append(f"Missing required section: {section}")

        remote = self.get_msgstore_config()
        if not remote.get('base_url'):
            if not remote.get('host'):
                errors.append("Message store host not configured")
            port = remote.get('port')
            if not isinstance(port, int) or not (0 < port < 65536):
                errors.append("Message store port must be between 1 and 65535")
        if not remote.get('timeout_seconds', 0) > 0:
            errors.append("Message store timeout must be positive")

        cache = self.get_cache_config()
        if not cache.get('path'):
            errors.append("Cache path not configured (in-memory caches are not supported)")
        if cache.get('refresh_min_delay_seconds', 0) < 0:
            errors.append("Refresh delay must not be negative")
        if cache.get('refresh_interval_seconds', 1) <= 0:
            errors.append("Background refresh interval must be positive")

        return errors
