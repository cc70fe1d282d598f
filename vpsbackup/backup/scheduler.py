"""Backup scheduling through the system crontab."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from vpsbackup.utils.commands import CommandRunner
from vpsbackup.utils.errors import CommandError, SchedulerError, create_error_suggestions

logger = logging.getLogger(__name__)


@dataclass
class ScheduleEntry:
    """Desired state of the single backup crontab line."""

    cron: str = "0 2 * * *"
    command: str = "/usr/local/bin/vps-backup-run"
    log: Optional[str] = "/var/backups/vps/logs/cron.log"
    marker: str = "vps-backup"

    @property
    def line(self) -> str:
        line = f"{self.cron} {self.command}"
        if self.log:
            line += f" >> {self.log} 2>&1"
        return line

    @classmethod
    def from_config(cls, schedule: Dict[str, Any]) -> "ScheduleEntry":
        return cls(
            cron=schedule["cron"],
            command=schedule["command"],
            log=schedule.get("log"),
            marker=schedule["marker"],
        )


class BackupScheduler:
    """Reconciles the crontab against a desired schedule entry."""

    def __init__(self, runner: Optional[CommandRunner] = None, verbose: bool = False):
        """
        Initialize backup scheduler.

        Args:
            runner: Command runner used for ``crontab``
            verbose: Enable verbose output
        """
        self.runner = runner or CommandRunner(verbose=verbose)
        self.verbose = verbose

    def read_crontab(self) -> List[str]:
        """
        Current crontab lines; a user without a crontab has none.

        Raises:
            SchedulerError: If the crontab command is unavailable
        """
        try:
            result = self.runner.run(["crontab", "-l"], check=False)
        except CommandError as e:
            raise SchedulerError(
                "Unable to read the crontab",
                details=e.details or e.message,
                suggestions=create_error_suggestions("crontab_unavailable"),
            ) from e

        if result.returncode != 0:
            return []

        return [line for line in result.stdout.splitlines() if line.strip()]

    def write_crontab(self, lines: List[str]) -> None:
        """Install ``lines`` as the complete crontab."""
        content = "\n".join(lines) + "\n" if lines else ""
        try:
            self.runner.run(["crontab", "-"], input_text=content)
        except CommandError as e:
            raise SchedulerError(
                "Failed to install crontab",
                details=e.details or e.message,
                suggestions=create_error_suggestions("crontab_unavailable"),
            ) from e

    def current_schedule(self, marker: str = "vps-backup") -> List[str]:
        """Crontab lines containing the marker."""
        return [line for line in self.read_crontab() if marker in line]

    def ensure_schedule(self, entry: ScheduleEntry) -> Dict[str, Any]:
        """
        Make the crontab hold exactly one line for ``entry``.

        Lines containing the entry's marker are replaced by the desired
        line; the crontab is only rewritten when its content changes.

        Args:
            entry: Desired schedule

        Returns:
            Dict[str, Any]: ``changed`` flag, installed ``entry`` line and ``removed`` lines
        """
        if entry.marker not in entry.line:
            raise SchedulerError(
                f"Schedule marker '{entry.marker}' does not appear in the scheduled line",
                details=entry.line,
            )

        current = self.read_crontab()
        kept = [line for line in current if entry.marker not in line]
        removed = [line for line in current if entry.marker in line]
        desired = kept + [entry.line]

        result = {"changed": desired != current, "entry": entry.line, "removed": removed}

        if result["changed"]:
            self.write_crontab(desired)
            logger.info(f"Cron job scheduled: {entry.line}")
        elif self.verbose:
            logger.info("Backup schedule already up to date")

        return result

    def remove_schedule(self, marker: str = "vps-backup") -> List[str]:
        """
        Remove every crontab line containing the marker.

        Returns:
            List[str]: Removed lines
        """
        current = self.read_crontab()
        removed = [line for line in current if marker in line]

        if removed:
            self.write_crontab([line for line in current if marker not in line])
            logger.info(f"Removed {len(removed)} scheduled backup entr{'y' if len(removed) == 1 else 'ies'}")

        return removed
