"""Logging configuration for the vps-backup CLI."""

import logging
import sys
from typing import Optional

RUN_LOGGER_NAME = "vpsbackup"
RUN_LOG_FORMAT = "[%(asctime)s] %(message)s"
RUN_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_installed_handlers = []


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """
    Setup logging configuration for the CLI.

    Args:
        verbose: Enable verbose/debug logging
        log_file: Optional log file path
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Repeated setup (one per CLI invocation) replaces the previous handlers
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(console_handler)
    _installed_handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        _installed_handlers.append(file_handler)


def attach_run_log(log_path: str) -> logging.Handler:
    """
    Attach a per-run log file to the package logger.

    Every record emitted under ``vpsbackup`` is written as one
    ``[YYYY-MM-DD HH:MM:SS] message`` line until the handler is detached.

    Args:
        log_path: Path of the run log file

    Returns:
        logging.Handler: The attached handler, to pass to ``detach_run_log``
    """
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(RUN_LOG_FORMAT, datefmt=RUN_LOG_DATEFMT))

    package_logger = logging.getLogger(RUN_LOGGER_NAME)
    handler.previous_level = package_logger.level
    # Only raise verbosity; a DEBUG level from --verbose stays in effect
    if package_logger.getEffectiveLevel() > logging.INFO:
        package_logger.setLevel(logging.INFO)
    package_logger.addHandler(handler)
    return handler


def detach_run_log(handler: logging.Handler) -> None:
    """Remove and close a handler created by ``attach_run_log``."""
    package_logger = logging.getLogger(RUN_LOGGER_NAME)
    package_logger.removeHandler(handler)
    package_logger.setLevel(getattr(handler, "previous_level", package_logger.level))
    handler.close()
