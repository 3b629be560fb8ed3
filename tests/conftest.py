"""Pytest configuration and shared fixtures for accelwatch tests."""

import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from accelwatch.commands import CommandResult, CommandRunner, CommandStatus
from accelwatch.config.app import AppConfig
from accelwatch.config.watchdog import WatchdogConfig
from accelwatch.container import ContainerLifecycleManager
from accelwatch.models import HealthCheckResult, HealthStatus, Target


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def watchdog_config() -> WatchdogConfig:
    """Watchdog config with short, test-friendly timings."""
    return WatchdogConfig(
        check_interval=10,
        probe_timeout=3,
        restart_grace=0,
        module_reload_pause=0,
        post_reload_settle=0,
        recovery_interval=1,
        stopped_restart_settle=1,
        cooldown=60,
        stop_timeout=1,
        start_timeout=1,
    )


@pytest.fixture
def app_config(temp_dir: Path, watchdog_config: WatchdogConfig) -> AppConfig:
    """App config whose workspace lives in a temp directory."""
    return AppConfig(workspace=str(temp_dir), watchdog=watchdog_config)


@pytest.fixture
def target() -> Target:
    return Target(
        container_name="claude-npu-dev",
        device_path="/dev/accel/accel0",
        kernel_module="amdxdna",
    )


@pytest.fixture
def make_result() -> Callable[..., CommandResult]:
    """Factory for CommandResult objects."""

    def _make(
        returncode: int | None = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        command: list[str] | None = None,
    ) -> CommandResult:
        if timed_out:
            status = CommandStatus.TIMED_OUT
        elif returncode == 0:
            status = CommandStatus.SUCCESS
        else:
            status = CommandStatus.NON_ZERO_EXIT
        return CommandResult(
            command=command or [],
            status=status,
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
        )

    return _make


@pytest.fixture
def mock_runner() -> MagicMock:
    return MagicMock(spec=CommandRunner)


@pytest.fixture
def mock_containers() -> MagicMock:
    """Container manager mock: container exists and is running."""
    containers = MagicMock(spec=ContainerLifecycleManager)
    containers.exists.return_value = True
    containers.is_running.return_value = True
    return containers


@pytest.fixture
def healthy() -> HealthCheckResult:
    return HealthCheckResult(HealthStatus.HEALTHY)


@pytest.fixture
def hung() -> HealthCheckResult:
    return HealthCheckResult(HealthStatus.HUNG, detail="timed out")


@pytest.fixture
def absent() -> HealthCheckResult:
    return HealthCheckResult(HealthStatus.ABSENT)
