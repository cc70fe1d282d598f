"""Configuration management for vps-backup."""

import copy
import os
from typing import Any, Dict, List, Optional

import yaml
from jinja2 import Environment, FileSystemLoader

from .schemas import DEFAULT_CONFIG
from .validator import ConfigValidationError, ConfigValidator

CONFIG_ENV_VAR = "VPS_BACKUP_CONFIG"
SYSTEM_CONFIG_PATH = "/etc/vps-backup/config.yml"
LOCAL_CONFIG_NAME = "vps-backup.yml"


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge ``override`` into a copy of ``base``.

    Mappings are merged key by key; every other value (lists included)
    replaces the base value.
    """
    merged = copy.deepcopy(base)

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)

    return merged


class ConfigManager:
    """Manages vps-backup configuration files."""

    def __init__(self, path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            path: Optional explicit configuration file path
        """
        self.path = path
        self.validator = ConfigValidator()
        self._config_cache = {}

        templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
        self.jinja_env = Environment(loader=FileSystemLoader(templates_dir), trim_blocks=True, lstrip_blocks=True)

    def get_config_path(self) -> Optional[str]:
        """
        Get path to the configuration file in effect.

        Lookup order: explicit path, ``VPS_BACKUP_CONFIG``, the system-wide
        file, then ``vps-backup.yml`` in the working directory.

        Returns:
            Optional[str]: Existing configuration path, or None to use defaults

        Raises:
            FileNotFoundError: If an explicitly requested file does not exist
        """
        explicit = self.path or os.environ.get(CONFIG_ENV_VAR)
        if explicit:
            if not os.path.exists(explicit):
                raise FileNotFoundError(f"Configuration file not found: {explicit}")
            return explicit

        for candidate in (SYSTEM_CONFIG_PATH, os.path.join(os.getcwd(), LOCAL_CONFIG_NAME)):
            if os.path.exists(candidate):
                return candidate

        return None

    def load_config(self, validate: bool = True) -> Dict[str, Any]:
        """
        Load the effective configuration (defaults merged with the file).

        Args:
            validate: Whether to validate the configuration

        Returns:
            Dict[str, Any]: Loaded configuration

        Raises:
            ConfigValidationError: If validation fails or the YAML is invalid
            FileNotFoundError: If an explicitly requested file doesn't exist
        """
        config_path = self.get_config_path()
        cache_key = config_path or "<defaults>"

        if cache_key in self._config_cache:
            return self._config_cache[cache_key]

        user_config = {}
        if config_path:
            try:
                with open(config_path, encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError([f"Invalid YAML in {config_path}: {e}"])

            if not isinstance(user_config, dict):
                raise ConfigValidationError([f"Configuration file must contain a mapping: {config_path}"])

        config = merge_config(DEFAULT_CONFIG, user_config)

        if validate:
            errors = self.validate_config(config)
            if errors:
                raise ConfigValidationError(errors)

        self._config_cache[cache_key] = config
        return config

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate configuration.

        Args:
            config: Configuration to validate

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        return self.validator.validate_config(config)

    def render_default_config(self, template_vars: Optional[Dict[str, Any]] = None) -> str:
        """
        Render the commented default configuration file.

        Args:
            template_vars: Values overriding the defaults shown in the file

        Returns:
            str: YAML document
        """
        context = merge_config(DEFAULT_CONFIG, template_vars or {})
        template = self.jinja_env.get_template("vps-backup.yml.j2")
        return template.render(**context)

    def initialize_config(
        self,
        config_path: str,
        backup_root: Optional[str] = None,
        force: bool = False,
    ) -> str:
        """
        Write a default configuration file.

        Args:
            config_path: Destination path
            backup_root: Optional backup root to write instead of the default
            force: Overwrite an existing file

        Returns:
            str: Path to created configuration file
        """
        if os.path.exists(config_path) and not force:
            raise FileExistsError(f"Configuration file already exists: {config_path}")

        template_vars = {}
        if backup_root:
            template_vars["backup_root"] = backup_root
            template_vars["schedule"] = {"log": os.path.join(backup_root, "logs", "cron.log")}

        content = self.render_default_config(template_vars)

        errors = self.validate_config(merge_config(DEFAULT_CONFIG, yaml.safe_load(content)))
        if errors:
            raise ConfigValidationError(errors)

        directory = os.path.dirname(config_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            f.write(content)

        return config_path

    def clear_cache(self) -> None:
        """Clear configuration cache."""
        self._config_cache.clear()
