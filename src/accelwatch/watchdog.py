"""
Accelerator watchdog process.

Polls the accelerator container, restarts it if it stopped, probes the
accelerator inside it, and hands hangs to the recovery escalator. Exits
cleanly when the container is removed.

Usage:
    python -m accelwatch.watchdog [--config PATH] [--verbose]
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import time
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path

from accelwatch.commands import CommandRunner
from accelwatch.config.app import AppConfig, load_config
from accelwatch.config.watchdog import WatchdogConfig
from accelwatch.container import ContainerLifecycleManager
from accelwatch.device import DeviceController
from accelwatch.errors import (
    ContainerAbsent,
    ContainerCommandError,
    ContainerEngineError,
    ContainerStopped,
    DuplicateInstance,
)
from accelwatch.models import ExitCode, Target
from accelwatch.pidfile import PidFile
from accelwatch.probe import HealthProbe
from accelwatch.recovery import RecoveryEscalator

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


class SupervisorExit(str, Enum):
    """Why the supervisor loop ended."""

    STOPPED = "stopped"
    TARGET_ABSENT = "target_absent"


class CycleOutcome(str, Enum):
    """Result of a single poll cycle."""

    HEALTHY = "healthy"
    HUNG = "hung"
    CONTAINER_STARTED = "container_started"
    RECOVERED = "recovered"
    RECOVERY_FAILED = "recovery_failed"
    ENGINE_ERROR = "engine_error"
    ABSENT = "absent"


class Supervisor:
    """
    Watchdog loop that keeps the accelerator workload alive.

    Features:
    - Existence check: a removed container ends the loop
    - Stopped containers are started again without counting as a hang
    - Bounded-time health probe each cycle
    - Escalating recovery (container restart, module reload, cooldown)
    - Stop requests sampled between cycles for bounded shutdown latency
    """

    def __init__(
        self,
        target: Target,
        config: WatchdogConfig | None = None,
        pid_file: PidFile | None = None,
        runner: CommandRunner | None = None,
        containers: ContainerLifecycleManager | None = None,
        probe: HealthProbe | None = None,
        escalator: RecoveryEscalator | None = None,
    ):
        self.target = target
        self.config = config or WatchdogConfig()
        self.pid_file = pid_file

        runner = runner or CommandRunner()
        self.containers = containers or ContainerLifecycleManager(
            runner,
            engine=self.config.container_engine,
            command_timeout=self.config.command_timeout,
        )
        self.probe = probe or HealthProbe(
            self.containers,
            self.config.diagnostic_command,
            timeout=self.config.probe_timeout,
        )
        self.escalator = escalator or RecoveryEscalator(
            target,
            self.containers,
            DeviceController(
                runner,
                use_sudo=self.config.use_sudo,
                command_timeout=self.config.command_timeout,
            ),
            self.probe,
            config=self.config,
        )

        self.running = True
        self.cycles = 0

    def _handle_shutdown(self, signum: int, frame: object) -> None:
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, shutting down watchdog")
        self.request_stop()

    def request_stop(self) -> None:
        self.running = False

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _check_device(self) -> None:
        if not Path(self.target.device_path).exists():
            logger.warning(
                f"Device {self.target.device_path} not found; "
                f"accelerator may be unavailable or {self.target.kernel_module} not loaded"
            )

    def run_once(self) -> CycleOutcome:
        """Perform one poll cycle without sleeping afterwards."""
        name = self.target.container_name

        try:
            if not self.containers.exists(name):
                return CycleOutcome.ABSENT

            if not self.containers.is_running(name):
                raise ContainerStopped(name)

            result = self.probe.check(self.target)
            attempt = self.escalator.handle(result)

        except ContainerAbsent:
            return CycleOutcome.ABSENT
        except ContainerStopped:
            return self._start_stopped(name)
        except ContainerEngineError as e:
            logger.error(f"Container engine query failed: {e}")
            return CycleOutcome.ENGINE_ERROR
        except ContainerCommandError as e:
            logger.error(str(e))
            return CycleOutcome.ENGINE_ERROR

        if attempt is not None:
            return CycleOutcome.RECOVERED if attempt.succeeded else CycleOutcome.RECOVERY_FAILED
        return CycleOutcome.HEALTHY if result.healthy else CycleOutcome.HUNG

    def _start_stopped(self, name: str) -> CycleOutcome:
        logger.warning(f"Container {name} stopped, restarting")
        try:
            self.containers.start(name)
        except ContainerAbsent:
            return CycleOutcome.ABSENT
        except (ContainerEngineError, ContainerCommandError) as e:
            logger.error(f"Failed to start container {name}: {e}")
            return CycleOutcome.ENGINE_ERROR
        return CycleOutcome.CONTAINER_STARTED

    def next_delay(self, outcome: CycleOutcome) -> float:
        """Seconds to wait before the next cycle."""
        if outcome is CycleOutcome.CONTAINER_STARTED:
            return self.config.stopped_restart_settle
        if outcome in (CycleOutcome.RECOVERED, CycleOutcome.RECOVERY_FAILED):
            return self.config.recovery_interval
        return self.config.check_interval

    def _sleep(self, seconds: float) -> None:
        # Use short intervals for responsive shutdown
        sleep_remaining = seconds
        while sleep_remaining > 0 and self.running:
            sleep_time = min(1.0, sleep_remaining)
            time.sleep(sleep_time)
            sleep_remaining -= sleep_time

    def run(self, max_cycles: int | None = None, handle_signals: bool = True) -> SupervisorExit:
        """
        Main watchdog loop.

        Args:
            max_cycles: Stop after this many cycles (None runs until stopped)
            handle_signals: Install SIGTERM/SIGINT handlers

        Returns:
            SupervisorExit.TARGET_ABSENT if the container disappeared,
            SupervisorExit.STOPPED otherwise

        Raises:
            DuplicateInstance: If another watchdog owns the PID file
        """
        if handle_signals:
            self._install_signal_handlers()

        pid = os.getpid()
        if self.pid_file is not None:
            self.pid_file.acquire(pid)

        logger.info(
            f"Watchdog started (PID: {pid}): container={self.target.container_name}, "
            f"interval={self.config.check_interval:g}s, "
            f"probe_timeout={self.config.probe_timeout:g}s"
        )
        self._check_device()

        try:
            while self.running:
                outcome = self.run_once()
                self.cycles += 1

                if outcome is CycleOutcome.ABSENT:
                    logger.info("Container does not exist, watchdog exiting")
                    return SupervisorExit.TARGET_ABSENT

                if max_cycles is not None and self.cycles >= max_cycles:
                    break

                self._sleep(self.next_delay(outcome))

            return SupervisorExit.STOPPED

        finally:
            if self.pid_file is not None:
                self.pid_file.release(pid)
            logger.info("Watchdog stopped")


def setup_daemon_logging(
    log_file: Path,
    level: int,
    verbose: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure logging to the append-only watchdog log file."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[
            RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count),
            logging.StreamHandler() if verbose else logging.NullHandler(),
        ],
        force=True,
    )


def run_watchdog(
    config: AppConfig,
    verbose: bool = False,
    foreground: bool = False,
    max_cycles: int | None = None,
) -> ExitCode:
    """
    Configure logging, claim the PID file and run the supervisor loop.

    Args:
        config: Loaded application config
        verbose: Log at debug level
        foreground: Also log to the console
        max_cycles: Stop after this many cycles (None runs until stopped)

    Returns:
        Exit code for the process
    """
    level_name = "debug" if verbose else config.logging.level
    setup_daemon_logging(
        config.log_file,
        level=getattr(logging, level_name.upper()),
        verbose=verbose or foreground,
        max_bytes=config.logging.max_size_mb * 1024 * 1024,
        backup_count=config.logging.backup_count,
    )

    supervisor = Supervisor(
        Target.from_config(config.watchdog),
        config=config.watchdog,
        pid_file=PidFile(config.pid_file),
    )

    try:
        reason = supervisor.run(max_cycles=max_cycles)
    except DuplicateInstance as e:
        logger.error(f"Refusing to start: {e}")
        return ExitCode.ALREADY

    if reason is SupervisorExit.TARGET_ABSENT:
        return ExitCode.TARGET_ABSENT
    return ExitCode.OK


def main(argv: list[str] | None = None) -> int:
    """Entry point for the watchdog process."""
    parser = argparse.ArgumentParser(description="Accelerator watchdog")
    parser.add_argument(
        "--config",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--container",
        help="Override the supervised container name",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, cli_overrides={"watchdog.container_name": args.container})
    except ValueError as e:
        print(e, file=sys.stderr)
        return int(ExitCode.FAILURE)

    return int(run_watchdog(config, verbose=args.verbose))


if __name__ == "__main__":
    sys.exit(main())
