"""Configuration management for vps-backup."""

from .manager import ConfigManager, merge_config
from .schemas import CONFIG_SCHEMA, DEFAULT_CONFIG
from .validator import ConfigValidationError, ConfigValidator

__all__ = [
    "CONFIG_SCHEMA",
    "DEFAULT_CONFIG",
    "ConfigManager",
    "ConfigValidationError",
    "ConfigValidator",
    "merge_config",
]
