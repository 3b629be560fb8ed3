"""Bounded execution of external commands.

Every container and device operation goes through :class:`CommandRunner`,
which guarantees the child process group is killed and reaped when a
command exceeds its timeout.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess  # nosec B404 - subprocess needed to drive container engine and modprobe
import time
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# Return code used when the executable cannot be found, matching the shell.
COMMAND_NOT_FOUND = 127


class CommandStatus(str, Enum):
    """How a command finished."""

    SUCCESS = "success"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMED_OUT = "timed_out"


@dataclass
class CommandResult:
    """Captured result of a single command invocation."""

    command: list[str]
    status: CommandStatus
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is CommandStatus.SUCCESS

    @property
    def timed_out(self) -> bool:
        return self.status is CommandStatus.TIMED_OUT

    def describe(self) -> str:
        """Short human-readable description of a failure."""
        if self.timed_out:
            return f"timed out after {self.duration:.1f}s"
        if self.ok:
            return "ok"
        message = (self.stderr or self.stdout).strip()
        if message:
            return f"exit {self.returncode}: {message.splitlines()[-1]}"
        return f"exit {self.returncode}"


class CommandRunner:
    """Runs external commands with a hard timeout.

    No retries happen here; callers own their retry policy.
    """

    def run(
        self,
        command: list[str],
        timeout: float,
        input: str | None = None,
    ) -> CommandResult:
        """
        Execute a command and wait at most ``timeout`` seconds.

        Args:
            command: Argument vector, executed without a shell
            timeout: Seconds before the process group is killed
            input: Optional text written to the child's stdin

        Returns:
            CommandResult with SUCCESS, NON_ZERO_EXIT or TIMED_OUT status
        """
        logger.debug(f"Running {command} (timeout={timeout:g}s)")
        started = time.monotonic()

        try:
            process = subprocess.Popen(  # nosec B603 - argv list, no shell
                command,
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            return CommandResult(
                command=command,
                status=CommandStatus.NON_ZERO_EXIT,
                returncode=COMMAND_NOT_FOUND,
                stderr=str(e),
                duration=time.monotonic() - started,
            )

        try:
            stdout, stderr = process.communicate(input=input, timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill_group(process)
            # Reap the child so no zombie outlives the call
            stdout, stderr = process.communicate()
            duration = time.monotonic() - started
            logger.debug(f"Command {command} timed out after {duration:.1f}s")
            return CommandResult(
                command=command,
                status=CommandStatus.TIMED_OUT,
                returncode=process.returncode,
                stdout=stdout or "",
                stderr=stderr or "",
                duration=duration,
            )

        duration = time.monotonic() - started
        status = CommandStatus.SUCCESS if process.returncode == 0 else CommandStatus.NON_ZERO_EXIT
        return CommandResult(
            command=command,
            status=status,
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=duration,
        )

    @staticmethod
    def _kill_group(process: subprocess.Popen[str]) -> None:
        """Kill the process and everything it spawned."""
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            process.kill()
