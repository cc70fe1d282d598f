"""Exclusive run lock preventing overlapping backup runs."""

import fcntl
import os
from typing import Optional

from vpsbackup.utils.errors import BackupInProgressError, create_error_suggestions

LOCK_FILENAME = ".vps-backup.lock"


class RunLock:
    """Non-blocking ``flock`` on a lock file holding the owner's PID."""

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._handle = None

    @classmethod
    def for_root(cls, backup_root: str) -> "RunLock":
        return cls(os.path.join(backup_root, LOCK_FILENAME))

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """
        Take the lock or fail immediately.

        Raises:
            BackupInProgressError: If another process holds the lock
        """
        directory = os.path.dirname(self.lock_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        handle = open(self.lock_path, "a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (BlockingIOError, PermissionError):
            owner = self._read_owner(handle)
            handle.close()
            raise BackupInProgressError(
                "Another backup run is in progress",
                details=f"Lock {self.lock_path} is held" + (f" by PID {owner}" if owner else ""),
                suggestions=create_error_suggestions("backup_in_progress", path=os.path.dirname(self.lock_path)),
            )

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.seek(0)
            self._handle.truncate()
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    @staticmethod
    def _read_owner(handle) -> Optional[str]:
        handle.seek(0)
        content = handle.read().strip()
        return content or None
