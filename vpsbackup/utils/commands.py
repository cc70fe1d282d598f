"""External command execution for vps-backup."""

import logging
import shutil
import subprocess
import threading
from typing import BinaryIO, List, Optional

from .errors import CommandError, create_error_suggestions

logger = logging.getLogger(__name__)


class CommandRunner:
    """Runs external commands (service manager, dump tools, crontab)."""

    def __init__(self, timeout: Optional[float] = None, verbose: bool = False):
        """
        Initialize command runner.

        Args:
            timeout: Optional timeout in seconds applied to every command
            verbose: Enable verbose output
        """
        self.timeout = timeout
        self.verbose = verbose

    def run(
        self,
        command: List[str],
        check: bool = True,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command and capture its output as text.

        Args:
            command: Command and arguments
            check: Raise CommandError on non-zero exit
            input_text: Optional text passed on stdin

        Returns:
            subprocess.CompletedProcess: Finished process

        Raises:
            CommandError: If check is set and the command fails
        """
        if self.verbose:
            logger.debug(f"Running: {' '.join(command)}")

        result = self._execute(
            command,
            input=input_text,
            capture_output=True,
            text=True,
        )

        if check and result.returncode != 0:
            raise self._command_error(command, result.returncode, result.stderr)

        return result

    def output(self, command: List[str]) -> str:
        """Run a command and return its stdout."""
        return self.run(command).stdout

    def run_to_file(self, command: List[str], output_path: str) -> None:
        """
        Run a command with stdout redirected to a file.

        Args:
            command: Command and arguments
            output_path: File receiving the command's stdout

        Raises:
            CommandError: If the command fails
        """
        with open(output_path, "wb") as output_file:
            result = self._execute(command, stdout=output_file, stderr=subprocess.PIPE)

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else None
            raise self._command_error(command, result.returncode, stderr)

    def run_with_input(self, command: List[str], stream: BinaryIO) -> None:
        """
        Run a command feeding a binary stream to its stdin.

        Args:
            command: Command and arguments
            stream: Readable binary stream piped to stdin

        Raises:
            CommandError: If the command fails
        """
        if self.verbose:
            logger.debug(f"Running: <stream> | {' '.join(command)}")

        try:
            process = subprocess.Popen(command, stdin=subprocess.PIPE, stderr=subprocess.PIPE, bufsize=0)
        except FileNotFoundError as e:
            raise self._command_error(command, 127, str(e)) from e

        # stderr is drained while stdin is written; a full stderr pipe would stall the child
        stderr_chunks = []
        reader = threading.Thread(target=lambda: stderr_chunks.append(process.stderr.read()), daemon=True)
        reader.start()

        try:
            shutil.copyfileobj(stream, process.stdin)
        except BrokenPipeError:
            # The child exited early; its exit status reports why
            logger.debug(f"{command[0]} closed its input before the stream ended")
        finally:
            process.stdin.close()

        try:
            process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise self._command_error(command, -1, f"Timed out after {self.timeout} seconds")
        finally:
            reader.join()

        if process.returncode != 0:
            stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
            raise self._command_error(command, process.returncode, stderr)

    def is_service_active(self, unit: str) -> bool:
        """Check whether a systemd unit is active."""
        try:
            result = self._execute(
                ["systemctl", "is-active", "--quiet", unit],
                capture_output=True,
            )
        except CommandError:
            return False
        return result.returncode == 0

    def service(self, action: str, unit: str) -> None:
        """Start, stop or restart a systemd unit."""
        self.run(["systemctl", action, unit])

    def _execute(self, command: List[str], **kwargs) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(command, timeout=self.timeout, **kwargs)
        except FileNotFoundError as e:
            raise CommandError(
                command,
                127,
                str(e),
                suggestions=create_error_suggestions("command_failed", service=command[0]),
            ) from e
        except subprocess.TimeoutExpired as e:
            raise self._command_error(command, -1, f"Timed out after {self.timeout} seconds") from e

    def _command_error(self, command: List[str], returncode: int, stderr: Optional[str]) -> CommandError:
        return CommandError(
            command,
            returncode,
            stderr,
            suggestions=create_error_suggestions("command_failed", service=command[0]),
        )
