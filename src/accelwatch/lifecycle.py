"""Start, stop, restart and status for the watchdog process.

All control actions go through the workspace PID file; nothing here
signals the supervisor's internals other than SIGTERM/SIGKILL to the
recorded PID.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess  # nosec B404 - subprocess needed to spawn the watchdog
import sys
import time
from collections import deque
from pathlib import Path

from accelwatch.commands import CommandRunner
from accelwatch.config.app import AppConfig
from accelwatch.container import ContainerLifecycleManager
from accelwatch.errors import (
    ContainerAbsent,
    ContainerEngineError,
    DuplicateInstance,
    WatchdogStartError,
    WatchdogStopError,
)
from accelwatch.models import StatusReport, Target
from accelwatch.pidfile import PidFile, is_process_alive
from accelwatch.probe import HealthProbe
from accelwatch.utils.status import format_uptime

logger = logging.getLogger(__name__)


def tail_lines(path: Path, count: int) -> list[str]:
    """Return the last ``count`` lines of a text file (empty if missing)."""
    try:
        with open(path, errors="replace") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=count)]
    except FileNotFoundError:
        return []


class WatchdogLifecycle:
    """Process-level control of the watchdog for one workspace."""

    def __init__(
        self,
        config: AppConfig,
        config_file: str | Path | None = None,
        runner: CommandRunner | None = None,
        containers: ContainerLifecycleManager | None = None,
        probe: HealthProbe | None = None,
    ) -> None:
        self.config = config
        self.config_file = config_file
        self.target = Target.from_config(config.watchdog)
        self.pid_file = PidFile(config.pid_file)

        runner = runner or CommandRunner()
        self.containers = containers or ContainerLifecycleManager(
            runner,
            engine=config.watchdog.container_engine,
            command_timeout=config.watchdog.command_timeout,
        )
        self.probe = probe or HealthProbe(
            self.containers,
            config.watchdog.diagnostic_command,
            timeout=config.watchdog.probe_timeout,
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def _watchdog_command(self, verbose: bool) -> list[str]:
        cmd = [sys.executable, "-m", "accelwatch.watchdog"]
        if self.config_file is not None:
            cmd += ["--config", str(self.config_file)]
        if verbose:
            cmd.append("--verbose")
        return cmd

    def start(self, verbose: bool = False) -> int:
        """
        Spawn a detached watchdog process.

        Returns:
            PID of the new watchdog

        Raises:
            DuplicateInstance: If a live watchdog already owns the workspace
            ContainerAbsent: If there is no container to supervise
            WatchdogStartError: If the process exits or never claims the PID file
        """
        live_pid = self.pid_file.live_pid()
        if live_pid is not None:
            raise DuplicateInstance(live_pid, str(self.pid_file.path))
        self.pid_file.remove_stale()

        if not self.containers.exists(self.target.container_name):
            raise ContainerAbsent(self.target.container_name)

        log_file = self.config.log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_f = open(log_file, "a")

        try:
            process = subprocess.Popen(  # nosec B603 - cmd built from sys.executable and module path
                self._watchdog_command(verbose),
                stdout=log_f,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
                env=os.environ.copy(),
            )
        except OSError as e:
            raise WatchdogStartError(f"failed to spawn watchdog: {e}") from e
        finally:
            log_f.close()

        # Wait for the child to claim the PID file
        for _ in range(max(1, int(self.config.watchdog.start_timeout * 10))):
            if self.pid_file.read_pid() == process.pid:
                logger.info(f"Watchdog started (PID: {process.pid})")
                return process.pid
            if process.poll() is not None:
                raise WatchdogStartError(
                    f"watchdog exited immediately with code {process.returncode}; check {log_file}"
                )
            time.sleep(0.1)

        raise WatchdogStartError(
            f"watchdog (PID {process.pid}) did not record its PID within "
            f"{self.config.watchdog.start_timeout:g}s; check {log_file}"
        )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def stop(self) -> bool:
        """
        Stop the recorded watchdog.

        Returns:
            True if a running watchdog was stopped, False if none was running

        Raises:
            WatchdogStopError: If the process cannot be signalled or killed
        """
        pid = self.pid_file.read_pid()
        if pid is None:
            if self.pid_file.exists():
                logger.debug("Removing unreadable watchdog PID file")
                self.pid_file.path.unlink(missing_ok=True)
            return False

        if not is_process_alive(pid):
            logger.debug(f"Watchdog not running (stale PID file with PID {pid})")
            self.pid_file.path.unlink(missing_ok=True)
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self.pid_file.path.unlink(missing_ok=True)
            return True
        except PermissionError as e:
            raise WatchdogStopError(pid, "permission denied") from e

        # The loop only checks for stop requests between cycles, so give an
        # in-flight recovery sequence time to finish.
        for _ in range(max(1, int(self.config.watchdog.stop_timeout * 10))):
            time.sleep(0.1)
            if not is_process_alive(pid):
                self.pid_file.release(pid)
                return True

        logger.warning(
            f"Watchdog (PID {pid}) did not stop after {self.config.watchdog.stop_timeout:g}s, "
            "force killing"
        )
        try:
            os.kill(pid, signal.SIGKILL)
            time.sleep(0.5)
        except ProcessLookupError:
            pass

        if is_process_alive(pid):
            raise WatchdogStopError(pid, "process survived SIGKILL")

        self.pid_file.release(pid)
        return True

    # ------------------------------------------------------------------
    # Restart / status
    # ------------------------------------------------------------------

    def restart(self, verbose: bool = False) -> int:
        """Stop the watchdog, bounce the container, start the watchdog again."""
        name = self.target.container_name
        self.stop()
        self.containers.stop(name)
        self.containers.start(name)
        return self.start(verbose=verbose)

    def recent_events(self, count: int | None = None) -> list[str]:
        count = count if count is not None else self.config.logging.status_lines
        return tail_lines(self.config.log_file, count)

    def status(self, probe: bool = True) -> StatusReport:
        """
        Read-only snapshot of the container, the watchdog and the accelerator.

        Nothing is modified; a stale PID file is reported, not removed.
        """
        name = self.target.container_name

        try:
            container_exists = self.containers.exists(name)
            container_running = container_exists and self.containers.is_running(name)
        except (ContainerEngineError, ContainerAbsent) as e:
            logger.debug(f"Container query failed: {e}")
            container_exists = False
            container_running = False

        instance = self.pid_file.read()
        watchdog_alive = instance is not None and instance.alive
        uptime = None
        if watchdog_alive and instance is not None and instance.started_at is not None:
            uptime = format_uptime(time.time() - instance.started_at)

        responsive = None
        if probe:
            responsive = False
            if container_running:
                try:
                    responsive = self.probe.check_responsive(
                        self.target, timeout=self.config.watchdog.status_probe_timeout
                    )
                except ContainerEngineError as e:
                    logger.debug(f"Responsiveness probe failed: {e}")

        return StatusReport(
            container_name=name,
            container_exists=container_exists,
            container_running=container_running,
            watchdog_pid=instance.pid if instance is not None else None,
            watchdog_alive=watchdog_alive,
            stale_pid=self.pid_file.is_stale(),
            uptime=uptime,
            device_path=self.target.device_path,
            device_present=Path(self.target.device_path).exists(),
            responsive=responsive,
            pid_file=str(self.pid_file.path),
            log_file=str(self.config.log_file),
            recent_events=self.recent_events(),
        )

