"""
Configuration loading for subscriber-sync.

Layers defaults, an optional JSON config file, and environment variable
overrides into a validated ServiceConfig.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
import logging

from core.models.config import ServiceConfig, GlobalSettings
from .defaults import DEFAULT_SETTINGS, ENV_VAR_MAPPING, STRING_CONFIG_PATHS

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Configuration file or environment values are invalid"""
    pass


class ConfigurationLoader:
    """Load the service configuration from defaults, file, and environment"""

    def __init__(
        self,
        settings: Optional[GlobalSettings] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        self.global_settings = settings or GlobalSettings()
        self.environ = environ if environ is not None else os.environ

    def load(self, config_file: Optional[Union[str, Path]] = None) -> ServiceConfig:
        """
        Build the service configuration.

        Args:
            config_file: JSON file with overrides; falls back to
                ``GlobalSettings.config_file``

        Raises:
            ConfigurationError: if the file is unreadable or values are invalid
        """
        config_data = copy.deepcopy(DEFAULT_SETTINGS)

        if config_file is None:
            config_file = self.global_settings.config_file
        if config_file is not None:
            file_data = self._load_config_file(Path(config_file))
            config_data = self._deep_merge(config_data, file_data)

        config_data = self._apply_env_overrides(config_data)

        try:
            config = ServiceConfig.from_dict(config_data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        logger.debug(f"Loaded configuration: {config.to_dict()}")
        return config

    def _load_config_file(self, config_file: Path) -> Dict[str, Any]:
        """Load configuration file with validation"""
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {config_file}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config from {config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a JSON object")

        logger.info(f"Loaded configuration file {config_file}")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge ``override`` into ``base``"""
        merged = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = self.environ.get(env_var)
            if env_value is not None and env_value != '':
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        final_key = keys[-1]
        if path in STRING_CONFIG_PATHS:
            current[final_key] = value
        else:
            current[final_key] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # Return as string
        return value
