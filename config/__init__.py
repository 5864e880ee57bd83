"""
Configuration management for subscriber-sync

Handles defaults, file and environment loading, and logging setup.
"""

from .loader import ConfigurationLoader, ConfigurationError
from .defaults import DEFAULT_SETTINGS, ENV_VAR_MAPPING
from .log_setup import setup_logging

__all__ = [
    "ConfigurationLoader",
    "ConfigurationError",
    "DEFAULT_SETTINGS",
    "ENV_VAR_MAPPING",
    "setup_logging",
]
