"""Subprocess wrapper for all external tool invocations."""

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from apkdisguise.exceptions import ProcessError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Result of a subprocess execution."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if the command succeeded."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Get stdout, stripping trailing whitespace."""
        return self.stdout.strip()

    @property
    def combined_output(self) -> str:
        """Get stdout and stderr joined, for error reporting."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)

    @property
    def lines(self) -> list[str]:
        """Get stdout as a list of non-empty lines."""
        return [line.rstrip("\r") for line in self.stdout.strip().split("\n") if line]


class ToolRunner(Protocol):
    """Callable signature shared by run_tool and test doubles."""

    def __call__(
        self,
        command: list[str],
        *,
        check: bool = True,
        capture_output: bool = True,
        timeout: float | None = None,
        cwd: str | None = None,
        on_start: Callable[[subprocess.Popen], None] | None = None,
    ) -> ProcessResult: ...


def run_tool(
    command: list[str],
    *,
    check: bool = True,
    capture_output: bool = True,
    timeout: float | None = None,
    cwd: str | None = None,
    on_start: Callable[[subprocess.Popen], None] | None = None,
) -> ProcessResult:
    """Run an external tool command and wait for it to exit.

    Args:
        command: Command and arguments to run.
        check: If True, raise ProcessError on non-zero exit.
        capture_output: If True, capture stdout and stderr.
        timeout: Optional timeout in seconds.
        cwd: Working directory for the command.
        on_start: Called with the Popen handle once the process is spawned,
            so a caller can terminate it from another thread.

    Returns:
        ProcessResult with command output.

    Raises:
        ProcessError: If the command cannot be spawned, times out, or
            check=True and it returns non-zero.
    """
    logger.debug("exec: %s", " ".join(command))
    pipe = subprocess.PIPE if capture_output else None

    try:
        proc = subprocess.Popen(
            command,
            stdout=pipe,
            stderr=pipe,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=cwd,
        )
    except FileNotFoundError as e:
        raise ProcessError(command, -1, f"Command not found: {command[0]}") from e
    except PermissionError as e:
        raise ProcessError(command, -1, f"Permission denied: {command[0]}") from e

    if on_start is not None:
        on_start(proc)

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        proc.communicate()
        raise ProcessError(command, -1, f"Command timed out after {timeout}s") from e

    proc_result = ProcessResult(
        command=command,
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
    )

    if check and not proc_result.success:
        raise ProcessError(command, proc.returncode, proc_result.stderr)

    return proc_result
