"""Interactive restore of database backups."""

import gzip
import logging
import os
import shutil
from typing import Any, Callable, Dict, Optional

from vpsbackup.utils.commands import CommandRunner
from vpsbackup.utils.errors import RestoreError, VpsBackupError
from vpsbackup.utils.files import FileManager

from .storage import CATEGORY_LABELS, DATABASE_CATEGORIES, Artifact, BackupStorage

logger = logging.getLogger(__name__)

# Full-instance artifact restored per category: (logical name, extension)
RESTORE_ARTIFACTS = {
    "postgresql": ("all_databases", "sql"),
    "mysql": ("all_databases", "sql"),
    "redis": ("dump", "rdb"),
}


class RecoveryManager:
    """Restores the full-instance database dumps of one backup run.

    Every category is handled independently: a missing, corrupt or
    declined artifact is reported and the next category is attempted.
    Nothing is rolled back when a restore applies partially.
    """

    def __init__(
        self,
        storage: BackupStorage,
        config: Dict[str, Any],
        runner: Optional[CommandRunner] = None,
        file_manager: Optional[FileManager] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        echo: Callable[[str], None] = print,
        verbose: bool = False,
    ):
        """
        Initialize recovery manager.

        Args:
            storage: Backup storage to restore from
            config: Effective vps-backup configuration
            runner: Command runner for the restore tools
            file_manager: File helper for checksums and decompression
            confirm: Callable asked before each destructive step (defaults to refusing)
            echo: Callable receiving user-facing messages
            verbose: Enable verbose output
        """
        self.storage = storage
        self.config = config
        self.runner = runner or CommandRunner(verbose=verbose)
        self.files = file_manager or FileManager(verbose=verbose)
        self.confirm = confirm or (lambda prompt: False)
        self.echo = echo
        self.verbose = verbose

    def expected_path(self, category: str, timestamp: str) -> str:
        name, ext = RESTORE_ARTIFACTS[category]
        return self.storage.artifact_path(category, name, timestamp, ext)

    def locate(self, category: str, timestamp: str) -> Optional[Artifact]:
        """
        Find the full-instance artifact of a run.

        The run's JSON manifest is authoritative when it exists; older runs
        without one fall back to the naming scheme.
        """
        name, _ext = RESTORE_ARTIFACTS[category]

        recorded = self.storage.manifest_artifacts(timestamp)
        if recorded is not None:
            for artifact in recorded:
                if artifact.category == category and artifact.name == name and os.path.isfile(artifact.path):
                    return artifact
            return None

        path = self.expected_path(category, timestamp)
        if not os.path.isfile(path):
            return None
        return self.storage.parse_artifact(path, category)

    def plan(self, timestamp: str) -> Dict[str, Optional[str]]:
        """Artifact path that would be restored per category (None when missing)."""
        plan = {}
        for category in DATABASE_CATEGORIES:
            artifact = self.locate(category, timestamp)
            plan[category] = artifact.path if artifact else None
        return plan

    def restore(self, timestamp: str) -> Dict[str, str]:
        """
        Restore PostgreSQL, MySQL and Redis from one run.

        Args:
            timestamp: Run timestamp (``YYYYMMDD_HHMMSS``)

        Returns:
            Dict[str, str]: Outcome per category: ``restored``, ``declined``,
            ``missing``, ``corrupt`` or ``failed``
        """
        outcomes = {}

        self.echo(f"Restoring backups from: {timestamp}")
        self.echo("")

        for category in DATABASE_CATEGORIES:
            label = CATEGORY_LABELS[category]
            self.echo(f"=== {label} Restore ===")
            outcomes[category] = self._restore_category(category, label, timestamp)
            self.echo("")

        self.echo("Restore process completed!")
        return outcomes

    def _restore_category(self, category: str, label: str, timestamp: str) -> str:
        artifact = self.locate(category, timestamp)
        if artifact is None:
            self.echo(f"{label} backup not found: {self.expected_path(category, timestamp)}")
            return "missing"

        if artifact.sha256 and self.files.sha256_file(artifact.path) != artifact.sha256:
            self.echo(f"{label} backup failed checksum verification, skipping: {artifact.path}")
            logger.warning(f"Checksum mismatch for {artifact.path}")
            return "corrupt"

        if not self.confirm(f"Restore {label}?"):
            return "declined"

        restore = getattr(self, f"restore_{category}")
        try:
            restore(artifact)
        except (VpsBackupError, OSError) as e:
            message = e.message if isinstance(e, VpsBackupError) else str(e)
            self.echo(f"{label} restore failed: {message}")
            logger.error(f"{label} restore failed: {message}")
            return "failed"

        self.echo(f"{label} restored")
        logger.info(f"{label} restored from {artifact.path}")
        return "restored"

    def restore_postgresql(self, artifact: Artifact) -> None:
        """Stream the pg_dumpall output into psql."""
        settings = self.config["databases"]["postgresql"]
        command = ["psql"]
        if settings.get("system_user"):
            command = ["sudo", "-u", settings["system_user"]] + command

        with gzip.open(artifact.path, "rb") as stream:
            self.runner.run_with_input(command, stream)

    def restore_mysql(self, artifact: Artifact) -> None:
        """Stream the mysqldump output into mysql."""
        with gzip.open(artifact.path, "rb") as stream:
            self.runner.run_with_input(["mysql"], stream)

    def restore_redis(self, artifact: Artifact) -> None:
        """Replace the RDB file while the service is stopped."""
        settings = self.config["databases"]["redis"]
        service = settings["service"]
        rdb_path = settings["rdb_path"]

        self.runner.service("stop", service)
        try:
            self.files.decompress_to(artifact.path, rdb_path)
            owner = settings.get("owner")
            if owner:
                try:
                    shutil.chown(rdb_path, user=owner, group=owner)
                except LookupError as e:
                    raise RestoreError(f"Unknown owner '{owner}' for {rdb_path}") from e
        finally:
            self.runner.service("start", service)
