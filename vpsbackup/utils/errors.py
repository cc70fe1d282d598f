"""Error handling utilities for the vps-backup CLI."""

import sys
import traceback
from typing import List, Optional

import click


class VpsBackupError(Exception):
    """Base exception for vps-backup errors."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        suggestions: Optional[list] = None,
    ):
        self.message = message
        self.details = details
        self.suggestions = suggestions or []
        super().__init__(message)


class ConfigurationError(VpsBackupError):
    """Raised when configuration is invalid or missing."""

    pass


class CommandError(VpsBackupError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(
        self,
        command: List[str],
        returncode: int,
        stderr: Optional[str] = None,
        suggestions: Optional[list] = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed with exit code {returncode}: {' '.join(self.command)}"
        details = stderr.strip() if stderr and stderr.strip() else None
        super().__init__(message, details=details, suggestions=suggestions)


class BackupError(VpsBackupError):
    """Raised when a backup run cannot complete."""

    pass


class BackupInProgressError(BackupError):
    """Raised when another backup run holds the run lock."""

    pass


class RestoreError(VpsBackupError):
    """Raised when a restore step fails."""

    pass


class SchedulerError(VpsBackupError):
    """Raised when the crontab cannot be read or written."""

    pass


class ErrorHandler:
    """Handles and formats errors for user-friendly display."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def handle_error(self, error: Exception, context: Optional[str] = None) -> None:
        """
        Handle and display error with appropriate formatting.

        Args:
            error: Exception to handle
            context: Optional context about when/where error occurred
        """
        if isinstance(error, VpsBackupError):
            self._handle_backup_error(error, context)
        else:
            self._handle_generic_error(error, context)

    def _handle_backup_error(self, error: VpsBackupError, context: Optional[str]) -> None:
        """Handle vps-backup specific errors."""
        click.echo(f"✗ {error.message}", err=True)

        if context:
            click.echo(f"Context: {context}", err=True)

        if error.details:
            click.echo(f"Details: {error.details}", err=True)

        if error.suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in error.suggestions:
                click.echo(f"  • {suggestion}", err=True)

        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def _handle_generic_error(self, error: Exception, context: Optional[str]) -> None:
        """Handle generic Python exceptions."""
        error_type = type(error).__name__

        if isinstance(error, FileNotFoundError):
            message = f"File not found: {error}"
            suggestions = [
                "Check that the file path is correct",
                "Ensure the file exists and is readable",
            ]
        elif isinstance(error, PermissionError):
            message = f"Permission denied: {error}"
            suggestions = create_error_suggestions("permission_denied")
        else:
            message = f"{error_type}: {error}"
            suggestions = []

        click.echo(f"✗ {message}", err=True)

        if context:
            click.echo(f"Context: {context}", err=True)

        if suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in suggestions:
                click.echo(f"  • {suggestion}", err=True)

        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def exit_with_error(self, error: Exception, context: Optional[str] = None, exit_code: int = 1) -> None:
        """Handle error and exit with specified code."""
        self.handle_error(error, context)
        sys.exit(exit_code)


def create_error_suggestions(error_type: str, **kwargs) -> list:
    """
    Create contextual error suggestions based on error type and context.

    Args:
        error_type: Type of error
        **kwargs: Additional context information (e.g. ``service``, ``path``)

    Returns:
        list: List of suggestion strings
    """
    service = kwargs.get("service", "the service")
    path = kwargs.get("path", "the backup root")

    suggestions = {
        "permission_denied": [
            "Check file/directory permissions",
            "Run vps-backup as root or with sudo",
        ],
        "backup_in_progress": [
            "Wait for the running backup to finish",
            f"Check the lock file under {path} if no backup is running",
        ],
        "command_failed": [
            f"Check that {service} is installed and on PATH",
            "Inspect the run log for the command output",
            "Verify there is enough free disk space",
        ],
        "configuration_invalid": [
            "Check YAML syntax in configuration file",
            "Run 'vps-backup config validate' to list every problem",
            "Compare against 'vps-backup config init' output",
        ],
        "crontab_unavailable": [
            "Ensure the cron package is installed",
            "Check that the current user is allowed to use crontab",
        ],
    }

    return suggestions.get(error_type, [])


def format_validation_errors(errors: list) -> str:
    """
    Format validation errors for display.

    Args:
        errors: List of validation error messages

    Returns:
        str: Formatted error message
    """
    if not errors:
        return "No validation errors"

    if len(errors) == 1:
        return f"Validation error: {errors[0]}"

    formatted = "Validation errors:\n"
    for i, error in enumerate(errors, 1):
        formatted += f"  {i}. {error}\n"

    return formatted.strip()
