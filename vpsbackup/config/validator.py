"""Configuration validation for vps-backup."""

from typing import Any, Dict, List

import jsonschema
import yaml

from .schemas import CONFIG_SCHEMA


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: List[str]):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class ConfigValidator:
    """Validates vps-backup configuration files."""

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate a merged vps-backup configuration.

        Args:
            config: Configuration dictionary to validate

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        errors = []

        validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
        for error in sorted(validator.iter_errors(config), key=lambda e: [str(part) for part in e.path]):
            location = ".".join(str(part) for part in error.path)
            if location:
                errors.append(f"{location}: {error.message}")
            else:
                errors.append(f"Schema validation failed: {error.message}")

        if errors:
            return errors

        errors.extend(self._validate_file_sources(config.get("files", [])))
        errors.extend(self._validate_schedule(config.get("schedule", {})))

        return errors

    def validate_config_file(self, file_path: str) -> List[str]:
        """
        Validate a configuration file on its own, without defaults.

        Args:
            file_path: Path to configuration file

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        try:
            with open(file_path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except FileNotFoundError:
            return [f"Configuration file not found: {file_path}"]
        except yaml.YAMLError as e:
            return [f"YAML parsing error: {e}"]

        if config is None:
            return ["Configuration file is empty"]

        if not isinstance(config, dict):
            return ["Configuration file must contain a mapping"]

        from .manager import merge_config
        from .schemas import DEFAULT_CONFIG

        return self.validate_config(merge_config(DEFAULT_CONFIG, config))

    def _validate_file_sources(self, sources: List[Dict[str, Any]]) -> List[str]:
        """Each file source must produce a distinct artifact name within its group."""
        errors = []
        seen = set()

        for source in sources:
            key = (source["group"], source["name"])
            if key in seen:
                errors.append(f"Duplicate file source '{source['name']}' in group '{source['group']}'")
            seen.add(key)

        return errors

    def _validate_schedule(self, schedule: Dict[str, Any]) -> List[str]:
        """The schedule marker must identify the line it installs."""
        errors = []

        if not schedule:
            return errors

        marker = schedule["marker"]
        line = f"{schedule['command']} {schedule.get('log') or ''}"
        if marker not in line:
            errors.append(f"Schedule marker '{marker}' must appear in the scheduled command or log path")

        return errors
