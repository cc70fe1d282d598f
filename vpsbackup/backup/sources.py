"""Data sources backed up by a run: database engines, directories and system configs."""

import glob
import logging
import os
import shutil
import time
from typing import Any, Dict, List, Optional

from vpsbackup.utils.commands import CommandRunner
from vpsbackup.utils.errors import CommandError
from vpsbackup.utils.files import FileManager

from .storage import Artifact, BackupStorage

logger = logging.getLogger(__name__)


class DatabaseSource:
    """Base class for a database engine dumped with its native tools."""

    category = ""
    label = ""

    def __init__(
        self,
        storage: BackupStorage,
        runner: CommandRunner,
        file_manager: FileManager,
        settings: Dict[str, Any],
    ):
        self.storage = storage
        self.runner = runner
        self.files = file_manager
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.get("enabled", True)

    @property
    def service(self) -> str:
        return self.settings["service"]

    def is_active(self) -> bool:
        """Whether the engine's service unit is running."""
        return self.runner.is_service_active(self.service)

    def backup(self, timestamp: str) -> List[Artifact]:
        """
        Dump the engine and compress every file of this batch.

        Returns:
            List[Artifact]: Compressed artifacts of this run
        """
        raise NotImplementedError

    def _dump_path(self, name: str, timestamp: str, ext: str = "sql") -> str:
        return self.storage.artifact_path(self.category, name, timestamp, ext, compressed=False)

    def _compress_batch(self, dumps: List[str], timestamp: str) -> List[Artifact]:
        artifacts = []
        for dump_path in dumps:
            gz_path = self.files.compress_file(dump_path)
            artifact = self.storage.parse_artifact(gz_path, self.category)
            if artifact is not None:
                artifacts.append(artifact)
        return artifacts


class PostgreSQLSource(DatabaseSource):
    """PostgreSQL: pg_dumpall of the instance plus pg_dump per database."""

    category = "postgresql"
    label = "PostgreSQL"

    def _as_system_user(self, command: List[str]) -> List[str]:
        user = self.settings.get("system_user")
        if user:
            return ["sudo", "-u", user] + command
        return command

    def list_databases(self) -> List[str]:
        """Non-template databases from the catalog."""
        output = self.runner.output(
            self._as_system_user(
                ["psql", "-t", "-A", "-c", "SELECT datname FROM pg_database WHERE datistemplate = false;"]
            )
        )
        return [line.strip() for line in output.splitlines() if line.strip()]

    def backup(self, timestamp: str) -> List[Artifact]:
        os.makedirs(self.storage.category_dir(self.category), exist_ok=True)

        dumps = []
        all_path = self._dump_path("all_databases", timestamp)
        self.runner.run_to_file(self._as_system_user(["pg_dumpall"]), all_path)
        dumps.append(all_path)

        for database in self.list_databases():
            dump_path = self._dump_path(database, timestamp)
            self.runner.run_to_file(self._as_system_user(["pg_dump", database]), dump_path)
            dumps.append(dump_path)
            logger.info(f"Backed up PostgreSQL database: {database}")

        artifacts = self._compress_batch(dumps, timestamp)
        logger.info("PostgreSQL backup completed and compressed")
        return artifacts


class MySQLSource(DatabaseSource):
    """MySQL: mysqldump --all-databases plus one dump per user database."""

    category = "mysql"
    label = "MySQL"

    DUMP_OPTIONS = ["--single-transaction", "--quick", "--lock-tables=false"]

    def list_databases(self) -> List[str]:
        """User databases, without the server's own schemas."""
        excluded = set(self.settings.get("exclude", []))
        output = self.runner.output(["mysql", "-N", "-B", "-e", "SHOW DATABASES;"])
        return [
            name
            for name in (line.strip() for line in output.splitlines())
            if name and name != "Database" and name not in excluded
        ]

    def backup(self, timestamp: str) -> List[Artifact]:
        os.makedirs(self.storage.category_dir(self.category), exist_ok=True)

        dumps = []
        all_path = self._dump_path("all_databases", timestamp)
        self.runner.run_to_file(["mysqldump", "--all-databases"] + self.DUMP_OPTIONS, all_path)
        dumps.append(all_path)

        for database in self.list_databases():
            dump_path = self._dump_path(database, timestamp)
            self.runner.run_to_file(["mysqldump"] + self.DUMP_OPTIONS + [database], dump_path)
            dumps.append(dump_path)
            logger.info(f"Backed up MySQL database: {database}")

        artifacts = self._compress_batch(dumps, timestamp)
        logger.info("MySQL backup completed and compressed")
        return artifacts


class RedisSource(DatabaseSource):
    """Redis: BGSAVE, then copy of the RDB snapshot."""

    category = "redis"
    label = "Redis"

    POLL_INTERVAL = 0.5

    def _last_save(self) -> Optional[int]:
        result = self.runner.run(["redis-cli", "LASTSAVE"], check=False)
        try:
            return int(result.stdout.strip().split()[-1])
        except (IndexError, ValueError):
            return None

    def wait_for_save(self, previous: Optional[int]) -> bool:
        """
        Wait until LASTSAVE moves past ``previous`` or the save timeout elapses.

        Returns:
            bool: True if a completed save was observed
        """
        timeout = self.settings.get("save_timeout", 2)
        deadline = time.monotonic() + timeout

        while True:
            if previous is not None:
                current = self._last_save()
                if current is not None and current != previous:
                    return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.POLL_INTERVAL)

    def backup(self, timestamp: str) -> List[Artifact]:
        os.makedirs(self.storage.category_dir(self.category), exist_ok=True)

        previous = self._last_save()
        self.runner.run(["redis-cli", "BGSAVE"])
        if not self.wait_for_save(previous) and previous is not None:
            logger.warning("Warning: Redis BGSAVE did not finish within the save timeout, copying the last snapshot")

        rdb_path = self.settings["rdb_path"]
        if not os.path.isfile(rdb_path):
            logger.info("Redis dump file not found")
            return []

        dump_path = self._dump_path("dump", timestamp, ext="rdb")
        shutil.copyfile(rdb_path, dump_path)
        artifacts = self._compress_batch([dump_path], timestamp)
        logger.info("Redis backup completed")
        return artifacts


DATABASE_SOURCES = {
    "postgresql": PostgreSQLSource,
    "mysql": MySQLSource,
    "redis": RedisSource,
}


class FileSource:
    """A directory archived into ``files/<group>/<name>_<timestamp>.tar.gz``."""

    category = "files"

    def __init__(self, storage: BackupStorage, file_manager: FileManager, settings: Dict[str, Any]):
        self.storage = storage
        self.files = file_manager
        self.name = settings["name"]
        self.path = settings["path"]
        self.group = settings["group"]
        self.tolerate_errors = settings.get("tolerate_errors", True)

    def backup(self, timestamp: str) -> List[Artifact]:
        """
        Archive the directory if it exists.

        Unreadable members are skipped with one warning when errors are
        tolerated; otherwise the OSError propagates and aborts the run.
        """
        if not os.path.isdir(self.path):
            logger.debug(f"{self.path} does not exist, skipping")
            return []

        os.makedirs(self.storage.category_dir(self.category, self.group), exist_ok=True)
        archive_path = self.storage.artifact_path(self.category, self.name, timestamp, "tar", group=self.group)

        skipped = self.files.archive_paths(archive_path, [self.path], tolerate_errors=self.tolerate_errors)
        if skipped:
            logger.warning(f"Warning: Some files in {self.path} were inaccessible")
            for message in skipped:
                logger.debug(f"Skipped {message}")

        logger.info(f"Backed up {self.path}")
        return [self.storage.parse_artifact(archive_path, self.category)]


class ConfigSource:
    """System configuration files plus the root crontab listing."""

    category = "configs"

    def __init__(
        self,
        storage: BackupStorage,
        runner: CommandRunner,
        file_manager: FileManager,
        settings: Dict[str, Any],
    ):
        self.storage = storage
        self.runner = runner
        self.files = file_manager
        self.paths = settings.get("paths", [])
        self.include_crontab = settings.get("crontab", True)

    def expand_paths(self) -> List[str]:
        """Expand globs; patterns without a match are kept so they are reported as missing."""
        expanded = []
        for pattern in self.paths:
            matches = sorted(glob.glob(pattern))
            expanded.extend(matches or [pattern])
        return expanded

    def backup(self, timestamp: str) -> List[Artifact]:
        logger.info("Backing up system configurations...")
        os.makedirs(self.storage.category_dir(self.category), exist_ok=True)

        artifacts = []

        if self.paths:
            archive_path = self.storage.artifact_path(self.category, "system_configs", timestamp, "tar")
            skipped = self.files.archive_paths(archive_path, self.expand_paths(), tolerate_errors=True)
            if skipped:
                logger.warning("Warning: Some config files were inaccessible")
                for message in skipped:
                    logger.debug(f"Skipped {message}")
            logger.info("System configurations backed up")
            artifacts.append(self.storage.parse_artifact(archive_path, self.category))

        if self.include_crontab:
            crontab = self.backup_crontab(timestamp)
            if crontab is not None:
                artifacts.append(crontab)

        return artifacts

    def backup_crontab(self, timestamp: str) -> Optional[Artifact]:
        """Save ``crontab -l`` output, or log its absence."""
        try:
            result = self.runner.run(["crontab", "-l"], check=False)
        except CommandError as e:
            logger.debug(f"crontab unavailable: {e.message}")
            result = None
        if result is None or result.returncode != 0:
            logger.info("No root crontab found")
            return None

        path = self.storage.artifact_path(self.category, "root_crontab", timestamp, "txt", compressed=False)
        with open(path, "w", encoding="utf-8") as f:
            f.write(result.stdout)
        return self.storage.parse_artifact(path, self.category)
