"""Backup runner: dumps, archives, manifest, retention and rollups."""

import logging
import os
import socket
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from vpsbackup.utils.commands import CommandRunner
from vpsbackup.utils.errors import BackupError, VpsBackupError
from vpsbackup.utils.files import FileManager, human_size
from vpsbackup.utils.logging import attach_run_log, detach_run_log

from .lock import RunLock
from .sources import DATABASE_SOURCES, ConfigSource, DatabaseSource, FileSource
from .storage import MONTH_DAYS, WEEK_DAYS, BackupStorage, make_timestamp

logger = logging.getLogger(__name__)

BANNER = "======================================"
TIMESTAMP_ATTEMPTS = 3


def is_weekly_day(now: datetime) -> bool:
    """Weekly rollups run on Sundays."""
    return now.weekday() == 6


def is_monthly_day(now: datetime) -> bool:
    """Monthly rollups run on the first day of the month."""
    return now.day == 1


def system_timezone() -> str:
    """Zone name from /etc/localtime (e.g. ``Africa/Nairobi``), else the abbreviation."""
    localtime = os.path.realpath("/etc/localtime")
    if "zoneinfo/" in localtime:
        return localtime.split("zoneinfo/", 1)[1]
    return datetime.now().astimezone().tzname() or "UTC"


class _WarningCollector(logging.Handler):
    """Collects warning messages emitted during a run for the manifest."""

    def __init__(self):
        super().__init__(level=logging.WARNING)
        self.messages = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


class BackupManager:
    """Manages backup runs for the VPS."""

    def __init__(
        self,
        config: Dict[str, Any],
        runner: Optional[CommandRunner] = None,
        file_manager: Optional[FileManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        verbose: bool = False,
    ):
        """
        Initialize backup manager.

        Args:
            config: Effective vps-backup configuration
            runner: Command runner (defaults to one honoring ``commands.timeout``)
            file_manager: File helper for compression and archives
            clock: Callable returning the current time
            verbose: Enable verbose output
        """
        self.config = config
        self.verbose = verbose
        self.runner = runner or CommandRunner(timeout=config.get("commands", {}).get("timeout"), verbose=verbose)
        self.files = file_manager or FileManager(verbose=verbose)
        self.clock = clock or datetime.now

        file_groups = sorted({source["group"] for source in config.get("files", [])})
        self.storage = BackupStorage(
            config["backup_root"],
            file_groups=file_groups or None,
            file_manager=self.files,
            verbose=verbose,
        )

    def database_sources(self) -> List[DatabaseSource]:
        databases = self.config.get("databases", {})
        return [
            source_class(self.storage, self.runner, self.files, databases[category])
            for category, source_class in DATABASE_SOURCES.items()
            if category in databases
        ]

    def file_sources(self) -> List[FileSource]:
        return [FileSource(self.storage, self.files, settings) for settings in self.config.get("files", [])]

    def config_source(self) -> ConfigSource:
        return ConfigSource(self.storage, self.runner, self.files, self.config.get("configs", {}))

    def run_backup(self) -> Dict[str, Any]:
        """
        Run one complete backup.

        Returns:
            Dict[str, Any]: Run results (timestamp, artifacts, skipped sources,
            warnings, manifest paths, pruned files, rollups, log file)

        Raises:
            BackupInProgressError: If another run holds the lock
            VpsBackupError: If an unguarded step fails; the run stops there
        """
        self.storage.initialize()

        with RunLock.for_root(self.storage.root):
            now, timestamp = self._claim_timestamp()
            log_path = self.storage.log_path(timestamp)
            run_handler = attach_run_log(log_path)
            collector = _WarningCollector()
            logging.getLogger("vpsbackup").addHandler(collector)

            try:
                result = self._run(now, timestamp, collector)
            except VpsBackupError as e:
                logger.error(f"Backup failed: {e.message}")
                raise
            except OSError as e:
                logger.error(f"Backup failed: {e}")
                raise BackupError(f"Backup aborted: {e}", details=f"Run log: {log_path}") from e
            finally:
                logging.getLogger("vpsbackup").removeHandler(collector)
                detach_run_log(run_handler)

        result["log_file"] = log_path
        return result

    def _claim_timestamp(self):
        for _ in range(TIMESTAMP_ATTEMPTS):
            now = self.clock()
            timestamp = make_timestamp(now)
            if not self.storage.timestamp_in_use(timestamp):
                return now, timestamp
            time.sleep(1)

        raise BackupError(
            f"Run timestamp {timestamp} is already in use",
            details="A previous run finished within the same second",
        )

    def _run(self, now: datetime, timestamp: str, collector: _WarningCollector) -> Dict[str, Any]:
        result = {
            "timestamp": timestamp,
            "artifacts": [],
            "skipped": [],
            "warnings": collector.messages,
            "manifest": None,
            "pruned": {},
            "weekly": None,
            "monthly": None,
            "total_size": None,
        }

        logger.info(BANNER)
        logger.info(f"Starting VPS Backup - {timestamp}")
        logger.info(BANNER)

        for source in self.database_sources():
            if not source.enabled:
                logger.debug(f"{source.label} backups are disabled")
                continue

            logger.info(f"Backing up {source.label} databases...")
            if not source.is_active():
                logger.info(f"{source.label} is not running, skipping...")
                result["skipped"].append(source.category)
                continue

            result["artifacts"].extend(source.backup(timestamp))

        logger.info("Backing up important files and directories...")
        for file_source in self.file_sources():
            result["artifacts"].extend(file_source.backup(timestamp))

        result["artifacts"].extend(self.config_source().backup(timestamp))

        logger.info("Creating backup manifest...")
        run_artifacts = self.storage.run_artifacts(timestamp)
        result["manifest"] = self.storage.write_manifest(
            timestamp,
            run_artifacts,
            hostname=self.config.get("manifest", {}).get("hostname") or socket.gethostname(),
            timezone=system_timezone(),
            warnings=collector.messages,
            skipped=result["skipped"],
            now=now,
        )
        result["artifacts"] = run_artifacts
        logger.info("Backup manifest created")

        retention = self.config["retention"]
        logger.info("Cleaning up old backups...")
        result["pruned"] = self.storage.prune(retention, now)
        logger.info(f"Old backups cleaned up (kept last {retention['daily_days']} days)")

        if is_weekly_day(now):
            logger.info("Creating weekly backup archive...")
            result["weekly"] = self.storage.create_rollup(
                "weekly", timestamp, retention["weekly_count"] * WEEK_DAYS, now
            )
            logger.info("Weekly backup created")

        if is_monthly_day(now):
            logger.info("Creating monthly backup archive...")
            result["monthly"] = self.storage.create_rollup(
                "monthly", timestamp, retention["monthly_count"] * MONTH_DAYS, now
            )
            logger.info("Monthly backup created")

        result["total_size"] = human_size(self.files.directory_size(self.storage.root))

        logger.info(BANNER)
        logger.info("Backup completed successfully!")
        logger.info(f"Backup location: {self.storage.root}")
        logger.info(f"Total size: {result['total_size']}")
        logger.info(BANNER)

        return result
