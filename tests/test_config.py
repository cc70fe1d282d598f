"""Tests for configuration management."""

import os

import pytest
import yaml

from vpsbackup.config import DEFAULT_CONFIG, ConfigManager, ConfigValidationError, ConfigValidator, merge_config


def _write_yaml(path, data):
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f)
    return path


class TestMergeConfig:
    """Test merging configuration files over the defaults."""

    def test_nested_mappings_merge(self):
        """Test a partial section keeps the other defaults."""
        merged = merge_config(DEFAULT_CONFIG, {"retention": {"daily_days": 14}})

        assert merged["retention"]["daily_days"] == 14
        assert merged["retention"]["log_days"] == 30

    def test_lists_replace(self):
        """Test lists from the file replace the default list."""
        merged = merge_config(DEFAULT_CONFIG, {"configs": {"paths": ["/etc/hosts"]}})

        assert merged["configs"]["paths"] == ["/etc/hosts"]
        assert merged["configs"]["crontab"] is True

    def test_defaults_unchanged(self):
        """Test merging never mutates the defaults."""
        merge_config(DEFAULT_CONFIG, {"retention": {"daily_days": 1}})

        assert DEFAULT_CONFIG["retention"]["daily_days"] == 7


class TestConfigManager:
    """Test configuration manager functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.config_manager = ConfigManager()

    def test_explicit_path_must_exist(self, temp_directory):
        """Test a missing explicit file is an error."""
        manager = ConfigManager(os.path.join(temp_directory, "missing.yml"))

        with pytest.raises(FileNotFoundError):
            manager.get_config_path()

    def test_env_var_path(self, temp_directory, monkeypatch):
        """Test VPS_BACKUP_CONFIG selects the file."""
        path = _write_yaml(os.path.join(temp_directory, "env.yml"), {"backup_root": "/srv/backups"})
        monkeypatch.setenv("VPS_BACKUP_CONFIG", path)

        assert self.config_manager.get_config_path() == path

    def test_local_file_found(self, temp_directory):
        """Test vps-backup.yml in the working directory is picked up."""
        path = _write_yaml(os.path.join(temp_directory, "vps-backup.yml"), {"backup_root": "/srv/backups"})

        if not os.path.exists("/etc/vps-backup/config.yml"):
            assert self.config_manager.get_config_path() == path

    def test_load_config_merges_defaults(self, temp_directory):
        """Test a partial file is merged over the defaults."""
        path = _write_yaml(os.path.join(temp_directory, "config.yml"), {"backup_root": "/srv/backups"})

        config = ConfigManager(path).load_config()

        assert config["backup_root"] == "/srv/backups"
        assert config["schedule"]["cron"] == "0 2 * * *"

    def test_load_config_invalid_yaml(self, temp_directory):
        """Test loading invalid YAML configuration."""
        path = os.path.join(temp_directory, "config.yml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigManager(path).load_config()

        assert "Invalid YAML" in exc_info.value.errors[0]

    def test_load_config_invalid_values(self, temp_directory):
        """Test schema violations are reported together."""
        path = _write_yaml(
            os.path.join(temp_directory, "config.yml"),
            {"backup_root": "relative/path", "retention": {"daily_days": -1}},
        )

        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigManager(path).load_config()

        errors = exc_info.value.errors
        assert any(error.startswith("backup_root:") for error in errors)
        assert any(error.startswith("retention.daily_days:") for error in errors)

    def test_load_config_caches(self, temp_directory):
        """Test the effective configuration is loaded once."""
        path = _write_yaml(os.path.join(temp_directory, "config.yml"), {"backup_root": "/srv/backups"})
        manager = ConfigManager(path)

        assert manager.load_config() is manager.load_config()
        manager.clear_cache()
        assert manager.load_config()["backup_root"] == "/srv/backups"

    def test_render_default_config_is_valid(self):
        """Test the commented default file parses back to the defaults."""
        rendered = yaml.safe_load(self.config_manager.render_default_config())

        assert rendered == DEFAULT_CONFIG

    def test_initialize_config(self, temp_directory):
        """Test writing the default file with a custom backup root."""
        path = os.path.join(temp_directory, "etc", "config.yml")

        written = self.config_manager.initialize_config(path, backup_root="/srv/backups")

        with open(written, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        assert data["backup_root"] == "/srv/backups"
        assert data["schedule"]["log"] == "/srv/backups/logs/cron.log"

    def test_initialize_config_refuses_overwrite(self, temp_directory):
        """Test an existing file is kept unless forced."""
        path = _write_yaml(os.path.join(temp_directory, "config.yml"), {"backup_root": "/srv/backups"})

        with pytest.raises(FileExistsError):
            self.config_manager.initialize_config(path)

        self.config_manager.initialize_config(path, force=True)


class TestConfigValidator:
    """Test configuration validation rules."""

    def setup_method(self):
        self.validator = ConfigValidator()

    def test_defaults_are_valid(self):
        """Test the built-in defaults pass validation."""
        assert self.validator.validate_config(DEFAULT_CONFIG) == []

    def test_unknown_key_rejected(self):
        """Test typos in section names are reported."""
        errors = self.validator.validate_config(merge_config(DEFAULT_CONFIG, {"retension": {}}))

        assert errors
        assert "retension" in errors[0]

    def test_duplicate_file_source(self):
        """Test two sources writing the same artifact are rejected."""
        source = {"name": "app", "path": "/srv/app", "group": "projects"}
        config = merge_config(DEFAULT_CONFIG, {"files": [source, dict(source, path="/srv/other")]})

        assert self.validator.validate_config(config) == ["Duplicate file source 'app' in group 'projects'"]

    def test_schedule_marker_must_appear(self):
        """Test a marker absent from the scheduled line is rejected."""
        config = merge_config(DEFAULT_CONFIG, {"schedule": {"command": "/opt/backup.sh", "log": None}})

        errors = self.validator.validate_config(config)

        assert len(errors) == 1
        assert "marker" in errors[0]

    def test_invalid_cron_expression(self):
        """Test cron expressions need five fields."""
        config = merge_config(DEFAULT_CONFIG, {"schedule": {"cron": "0 2 * *"}})

        errors = self.validator.validate_config(config)

        assert any(error.startswith("schedule.cron:") for error in errors)

    def test_validate_config_file(self, temp_directory):
        """Test validating a file on disk."""
        valid = _write_yaml(os.path.join(temp_directory, "valid.yml"), {"backup_root": "/srv/backups"})
        empty = os.path.join(temp_directory, "empty.yml")
        open(empty, "w").close()

        assert self.validator.validate_config_file(valid) == []
        assert self.validator.validate_config_file(empty) == ["Configuration file is empty"]
        assert self.validator.validate_config_file(os.path.join(temp_directory, "nope.yml"))[0].startswith(
            "Configuration file not found"
        )

    def test_validation_error_message(self):
        """Test the exception lists every problem."""
        error = ConfigValidationError(["first", "second"])

        assert str(error) == "Configuration validation failed: first; second"
        assert ConfigValidationError("single").errors == ["single"]
