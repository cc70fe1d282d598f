"""Tests for backup storage layout, manifests and retention."""

import gzip
import hashlib
import json
import os
import tarfile
from datetime import datetime, timedelta

import pytest

from vpsbackup.backup.storage import (
    BackupStorage,
    file_age_days,
    make_timestamp,
)

TIMESTAMP = "20240110_020000"
NOW = datetime(2024, 1, 10, 2, 0, 0)
RETENTION = {"daily_days": 7, "weekly_count": 4, "monthly_count": 3, "log_days": 30, "manifest_days": 30}


def _touch(path, content=b"data", age=None):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    if age is not None:
        mtime = (NOW - age).timestamp()
        os.utime(path, (mtime, mtime))
    return path


def _gzip(path, content=b"-- dump\n"):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with gzip.open(path, "wb") as f:
        f.write(content)
    return path


class TestNaming:
    """Test artifact naming and timestamps."""

    def setup_method(self):
        self.storage = BackupStorage("/var/backups/vps")

    def test_make_timestamp(self):
        """Test run timestamp format."""
        assert make_timestamp(datetime(2024, 3, 5, 7, 8, 9)) == "20240305_070809"

    def test_database_artifact_path(self):
        """Test database dumps land in their engine directory."""
        path = self.storage.artifact_path("postgresql", "all_databases", TIMESTAMP, "sql")

        assert path == "/var/backups/vps/databases/postgresql/all_databases_20240110_020000.sql.gz"

    def test_file_artifact_path_uses_group(self):
        """Test file archives land in their group directory."""
        path = self.storage.artifact_path("files", "nginx_config", TIMESTAMP, "tar", group="nginx")

        assert path == "/var/backups/vps/files/nginx/nginx_config_20240110_020000.tar.gz"

    def test_uncompressed_artifact_path(self):
        """Test the crontab listing is stored uncompressed."""
        path = self.storage.artifact_path("configs", "root_crontab", TIMESTAMP, "txt", compressed=False)

        assert path == "/var/backups/vps/configs/root_crontab_20240110_020000.txt"

    def test_unknown_category(self):
        """Test unknown categories are rejected."""
        with pytest.raises(ValueError):
            self.storage.category_dir("mongodb")

    def test_log_and_manifest_paths(self):
        """Test run log and manifest locations."""
        assert self.storage.log_path(TIMESTAMP) == "/var/backups/vps/logs/backup_20240110_020000.log"
        assert self.storage.manifest_path(TIMESTAMP) == "/var/backups/vps/backup_manifest_20240110_020000.txt"
        assert self.storage.manifest_path(TIMESTAMP, "json").endswith("backup_manifest_20240110_020000.json")

    def test_parse_artifact(self, temp_directory):
        """Test names are split into logical name and timestamp."""
        storage = BackupStorage(temp_directory)
        path = _touch(os.path.join(temp_directory, "all_databases_20240110_020000.sql.gz"))

        artifact = storage.parse_artifact(path, "mysql")

        assert artifact.name == "all_databases"
        assert artifact.timestamp == TIMESTAMP
        assert artifact.size == 4

    def test_parse_artifact_rejects_foreign_files(self, temp_directory):
        """Test files outside the naming scheme are ignored."""
        storage = BackupStorage(temp_directory)
        path = _touch(os.path.join(temp_directory, "notes.txt"))

        assert storage.parse_artifact(path, "configs") is None


class TestLayout:
    """Test backup root initialization and listing."""

    def test_initialize_creates_tree(self, temp_directory):
        """Test every category directory is created with a private root."""
        root = os.path.join(temp_directory, "backups")
        storage = BackupStorage(root, file_groups=["projects", "nginx"])

        created = storage.initialize()

        for sub in ("databases/postgresql", "databases/mysql", "databases/redis", "files/projects", "files/nginx", "configs", "logs"):
            assert os.path.isdir(os.path.join(root, sub))
        assert os.stat(root).st_mode & 0o777 == 0o700
        assert os.path.join(root, "logs") in created

    def test_initialize_is_idempotent(self, temp_directory):
        """Test a second initialization creates nothing."""
        storage = BackupStorage(os.path.join(temp_directory, "backups"))
        storage.initialize()

        assert storage.initialize() == []

    def test_run_artifacts_share_timestamp(self, temp_directory):
        """Test artifacts are selected by run timestamp across categories."""
        storage = BackupStorage(temp_directory)
        _gzip(storage.artifact_path("postgresql", "all_databases", TIMESTAMP, "sql"))
        _gzip(storage.artifact_path("redis", "dump", TIMESTAMP, "rdb"))
        _touch(storage.artifact_path("files", "root_projects", TIMESTAMP, "tar", group="projects"))
        _gzip(storage.artifact_path("postgresql", "all_databases", "20240109_020000", "sql"))

        artifacts = storage.run_artifacts(TIMESTAMP)

        assert {(a.category, a.name) for a in artifacts} == {
            ("postgresql", "all_databases"),
            ("redis", "dump"),
            ("files", "root_projects"),
        }

    def test_available_timestamps(self, temp_directory):
        """Test timestamps come from database artifacts and manifests."""
        storage = BackupStorage(temp_directory)
        _gzip(storage.artifact_path("mysql", "all_databases", "20240109_020000", "sql"))
        _touch(storage.manifest_path(TIMESTAMP, "txt"))

        assert storage.available_timestamps() == ["20240109_020000", TIMESTAMP]

    def test_latest_log(self, temp_directory):
        """Test the most recently modified run log is returned."""
        storage = BackupStorage(temp_directory)
        _touch(storage.log_path("20240109_020000"), age=timedelta(days=1))
        newest = _touch(storage.log_path(TIMESTAMP), age=timedelta(hours=1))

        assert storage.latest_log() == newest

    def test_latest_log_without_logs(self, temp_directory):
        """Test no log is reported for an empty root."""
        assert BackupStorage(temp_directory).latest_log() is None


class TestManifest:
    """Test run manifests."""

    def setup_method(self):
        self.created = datetime(2024, 1, 10, 2, 5, 0)

    def test_write_manifest(self, temp_directory):
        """Test text and JSON manifests describe every artifact."""
        storage = BackupStorage(temp_directory)
        dump = _gzip(storage.artifact_path("postgresql", "all_databases", TIMESTAMP, "sql"))
        artifacts = storage.run_artifacts(TIMESTAMP)

        paths = storage.write_manifest(
            TIMESTAMP,
            artifacts,
            hostname="testhost",
            timezone="UTC",
            skipped=["mysql"],
            now=self.created,
        )

        with open(paths["txt"], encoding="utf-8") as f:
            text = f.read()
        assert text.startswith("VPS Backup Manifest\n")
        assert "Hostname: testhost" in text
        assert "Timezone: UTC" in text
        assert "=== Backup Contents ===" in text
        assert dump in text
        assert "Total Backup Size:" in text

        manifest = storage.load_manifest(TIMESTAMP)
        assert manifest["timestamp"] == TIMESTAMP
        assert manifest["skipped"] == ["mysql"]
        assert manifest["artifacts"][0]["path"] == os.path.join("databases", "postgresql", os.path.basename(dump))
        with open(dump, "rb") as f:
            assert manifest["artifacts"][0]["sha256"] == hashlib.sha256(f.read()).hexdigest()

    def test_manifest_artifacts_roundtrip_paths(self, temp_directory):
        """Test recorded artifacts resolve back to absolute paths."""
        storage = BackupStorage(temp_directory)
        dump = _gzip(storage.artifact_path("redis", "dump", TIMESTAMP, "rdb"))
        storage.write_manifest(TIMESTAMP, storage.run_artifacts(TIMESTAMP), "testhost", "UTC", now=self.created)

        artifacts = storage.manifest_artifacts(TIMESTAMP)

        assert [a.path for a in artifacts] == [dump]
        assert storage.latest_manifest_timestamp() == TIMESTAMP

    def test_missing_manifest(self, temp_directory):
        """Test runs without a manifest are reported as None."""
        storage = BackupStorage(temp_directory)

        assert storage.load_manifest(TIMESTAMP) is None
        assert storage.manifest_artifacts(TIMESTAMP) is None
        assert storage.latest_manifest_timestamp() is None

    def test_json_manifest_is_valid_json(self, temp_directory):
        """Test the JSON manifest can be read by other tools."""
        storage = BackupStorage(temp_directory)
        paths = storage.write_manifest(TIMESTAMP, [], "testhost", "UTC", warnings=["Warning: x"], now=self.created)

        with open(paths["json"], encoding="utf-8") as f:
            record = json.load(f)
        assert record["warnings"] == ["Warning: x"]
        assert record["artifacts"] == []


class TestRetention:
    """Test pruning thresholds."""

    def test_file_age_days_rounds_down(self, temp_directory):
        """Test ages are counted in whole days."""
        path = _touch(os.path.join(temp_directory, "x"), age=timedelta(days=7, hours=23))

        assert file_age_days(path, NOW) == 7

    def test_daily_prune_threshold(self, temp_directory):
        """Test daily artifacts are deleted only once older than the threshold."""
        storage = BackupStorage(temp_directory)
        kept = _touch(storage.artifact_path("postgresql", "db", "20240103_020000", "sql"), age=timedelta(days=7, hours=23))
        old = _touch(storage.artifact_path("postgresql", "db", "20240102_020000", "sql"), age=timedelta(days=8))
        old_archive = _touch(
            storage.artifact_path("files", "root_projects", "20240102_020000", "tar", group="projects"),
            age=timedelta(days=9),
        )
        old_crontab = _touch(
            storage.artifact_path("configs", "root_crontab", "20240102_020000", "txt", compressed=False),
            age=timedelta(days=9),
        )

        deleted = storage.prune(RETENTION, NOW)

        assert deleted["databases"] == [old]
        assert deleted["files"] == [old_archive]
        assert deleted["configs"] == [old_crontab]
        assert os.path.exists(kept)

    def test_prune_ignores_other_patterns(self, temp_directory):
        """Test files that do not match a group's patterns survive."""
        storage = BackupStorage(temp_directory)
        foreign = _touch(os.path.join(temp_directory, "databases", "README"), age=timedelta(days=100))

        storage.prune(RETENTION, NOW)

        assert os.path.exists(foreign)

    def test_log_retention(self, temp_directory):
        """Test run logs have their own threshold."""
        storage = BackupStorage(temp_directory)
        kept = _touch(storage.log_path("20231211_020000"), age=timedelta(days=30))
        old = _touch(storage.log_path("20231210_020000"), age=timedelta(days=31))

        deleted = storage.prune(RETENTION, NOW)

        assert deleted["logs"] == [old]
        assert os.path.exists(kept)

    def test_manifest_retention(self, temp_directory):
        """Test old manifests are removed in both formats."""
        storage = BackupStorage(temp_directory)
        old_txt = _touch(storage.manifest_path("20231201_020000", "txt"), age=timedelta(days=40))
        old_json = _touch(storage.manifest_path("20231201_020000", "json"), age=timedelta(days=40))

        deleted = storage.prune(RETENTION, NOW)

        assert deleted["manifests"] == sorted([old_txt, old_json])

    def test_manifest_retention_disabled(self, temp_directory):
        """Test manifest_days 0 keeps manifests forever."""
        storage = BackupStorage(temp_directory)
        old = _touch(storage.manifest_path("20231201_020000", "txt"), age=timedelta(days=400))

        deleted = storage.prune(dict(RETENTION, manifest_days=0), NOW)

        assert deleted["manifests"] == []
        assert os.path.exists(old)


class TestRollup:
    """Test weekly and monthly archives."""

    def test_create_rollup(self, temp_directory):
        """Test the rollup archives the current daily trees."""
        storage = BackupStorage(temp_directory)
        storage.initialize()
        _gzip(storage.artifact_path("postgresql", "all_databases", TIMESTAMP, "sql"))

        result = storage.create_rollup("weekly", TIMESTAMP, 28, NOW)

        assert result["archive"] == os.path.join(temp_directory, "weekly", "weekly_backup_20240110_020000.tar.gz")
        with tarfile.open(result["archive"], "r:gz") as archive:
            names = archive.getnames()
        assert any(name.endswith("databases/postgresql/all_databases_20240110_020000.sql.gz") for name in names)

    def test_rollup_prunes_old_archives(self, temp_directory):
        """Test rollups older than their window are deleted."""
        storage = BackupStorage(temp_directory)
        storage.initialize()
        old = _touch(os.path.join(temp_directory, "monthly", "monthly_backup_20230901_020000.tar.gz"), age=timedelta(days=95))
        kept = _touch(os.path.join(temp_directory, "monthly", "monthly_backup_20231101_020000.tar.gz"), age=timedelta(days=70))

        result = storage.create_rollup("monthly", TIMESTAMP, 90, NOW)

        assert result["deleted"] == [old]
        assert os.path.exists(kept)
