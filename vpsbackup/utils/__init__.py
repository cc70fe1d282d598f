"""Utilities for the vps-backup CLI."""

from .commands import CommandRunner
from .files import FileManager
from .logging import attach_run_log, detach_run_log, setup_logging

__all__ = [
    "CommandRunner",
    "FileManager",
    "attach_run_log",
    "detach_run_log",
    "setup_logging",
]
