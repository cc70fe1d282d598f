"""Read-only backup reporting and integrity checks."""

import logging
import os
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional

from vpsbackup.utils.errors import SchedulerError
from vpsbackup.utils.files import FileManager

from .manager import system_timezone
from .scheduler import BackupScheduler
from .storage import CATEGORIES, TIMESTAMP_PATTERN, BackupStorage

logger = logging.getLogger(__name__)


def tail_lines(path: str, count: int) -> List[str]:
    """Last ``count`` lines of a text file."""
    if count <= 0:
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]


class BackupVerifier:
    """Reports on recent backups without modifying anything."""

    def __init__(
        self,
        storage: BackupStorage,
        config: Dict[str, Any],
        file_manager: Optional[FileManager] = None,
        scheduler: Optional[BackupScheduler] = None,
        verbose: bool = False,
    ):
        self.storage = storage
        self.config = config
        self.files = file_manager or FileManager(verbose=verbose)
        self.scheduler = scheduler
        self.verbose = verbose

    def recent_backups(self, count: Optional[int] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Most recently modified artifacts per category."""
        count = count or self.config.get("verify", {}).get("recent_count", 5)
        recent = {}

        for category in CATEGORIES:
            recent[category] = [
                {
                    "path": artifact.path,
                    "size": artifact.size,
                    "timestamp": artifact.timestamp,
                    "modified": datetime.fromtimestamp(os.path.getmtime(artifact.path)),
                }
                for artifact in self.storage.list_artifacts(category)[:count]
            ]

        return recent

    def report(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Build the verification report.

        Returns:
            Dict[str, Any]: ``timezone``, ``now``, ``recent`` artifacts per category,
            directory ``usage`` and the ``last_log`` path with its ``log_tail``
        """
        last_log = self.storage.latest_log()
        tail_count = self.config.get("verify", {}).get("log_tail_lines", 20)

        return {
            "timezone": system_timezone(),
            "now": now or datetime.now(),
            "recent": self.recent_backups(),
            "usage": self.storage.usage_report(),
            "last_log": last_log,
            "log_tail": tail_lines(last_log, tail_count) if last_log else [],
        }

    def check_integrity(self, timestamp: Optional[str] = None) -> Dict[str, Any]:
        """
        Re-hash and test-read every artifact recorded in a run's manifest.

        Args:
            timestamp: Run to check (defaults to the latest run with a manifest)

        Returns:
            Dict[str, Any]: ``timestamp``, per-artifact ``results`` and ``ok`` flag;
            ``error`` is set when no manifest could be found
        """
        timestamp = timestamp or self.storage.latest_manifest_timestamp()
        result = {"timestamp": timestamp, "results": [], "ok": False, "error": None}

        if timestamp is None:
            result["error"] = "No backup manifests found"
            return result

        artifacts = self.storage.manifest_artifacts(timestamp)
        if artifacts is None:
            result["error"] = f"No manifest found for backup {timestamp}"
            return result

        for artifact in artifacts:
            status, detail = self._check_artifact(artifact)
            result["results"].append({"path": artifact.path, "category": artifact.category, "status": status, "detail": detail})
            if status != "ok":
                logger.warning(f"Integrity check failed for {artifact.path}: {status}")

        result["ok"] = all(entry["status"] == "ok" for entry in result["results"])
        return result

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summarize whether today's backup ran and what is scheduled.

        Returns:
            Dict[str, Any]: ``ran_today``, ``last_backup_date``, ``last_log``,
            ``log_tail`` (five lines), ``schedule`` lines and ``schedule_error``
        """
        now = now or datetime.now()
        last_log = self.storage.latest_log()
        status = {
            "now": now,
            "ran_today": False,
            "last_backup_date": None,
            "last_log": last_log,
            "log_tail": [],
            "schedule": [],
            "schedule_error": None,
        }

        if last_log:
            match = TIMESTAMP_PATTERN.search(os.path.basename(last_log))
            if match:
                status["last_backup_date"] = match.group(0).split("_")[0]
                status["ran_today"] = status["last_backup_date"] == now.strftime("%Y%m%d")
            status["log_tail"] = tail_lines(last_log, 5)

        if self.scheduler is not None:
            marker = self.config.get("schedule", {}).get("marker", "vps-backup")
            try:
                status["schedule"] = self.scheduler.current_schedule(marker)
            except SchedulerError as e:
                status["schedule_error"] = e.message

        return status

    def _check_artifact(self, artifact) -> tuple:
        if not os.path.isfile(artifact.path):
            return "missing", None

        if artifact.sha256 and self.files.sha256_file(artifact.path) != artifact.sha256:
            return "checksum_mismatch", None

        if artifact.path.endswith(".gz"):
            error = self.files.test_gzip(artifact.path)
            if error:
                return "corrupt", error

        return "ok", None
