"""Backup, retention and restore for VPS databases and files."""

from .lock import RunLock
from .manager import BackupManager
from .recovery import RecoveryManager
from .scheduler import BackupScheduler, ScheduleEntry
from .storage import Artifact, BackupStorage
from .verification import BackupVerifier

__all__ = [
    "Artifact",
    "BackupManager",
    "BackupScheduler",
    "BackupStorage",
    "BackupVerifier",
    "RecoveryManager",
    "RunLock",
    "ScheduleEntry",
]
