"""Shared data types for the watchdog."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from accelwatch.config.watchdog import WatchdogConfig


@dataclass(frozen=True)
class Target:
    """The accelerator workload under supervision."""

    container_name: str
    device_path: str
    kernel_module: str
    pci_address: str | None = None

    @classmethod
    def from_config(cls, config: WatchdogConfig) -> Target:
        return cls(
            container_name=config.container_name,
            device_path=config.device_path,
            kernel_module=config.kernel_module,
            pci_address=config.pci_address,
        )


class HealthStatus(str, Enum):
    """Classification of a single health check."""

    HEALTHY = "healthy"
    HUNG = "hung"
    ABSENT = "absent"


@dataclass
class HealthCheckResult:
    """Outcome of one probe of the accelerator."""

    status: HealthStatus
    timestamp: float = field(default_factory=time.time)
    detail: str | None = None

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY


class ExitCode(IntEnum):
    """Process exit codes for the control surface and the daemon."""

    OK = 0
    FAILURE = 1
    NOT_RUNNING = 3
    ALREADY = 4
    TARGET_ABSENT = 5


@dataclass
class StatusReport:
    """Read-only snapshot of the watchdog and its target."""

    container_name: str
    container_exists: bool
    container_running: bool
    watchdog_pid: int | None = None
    watchdog_alive: bool = False
    stale_pid: bool = False
    uptime: str | None = None
    device_path: str | None = None
    device_present: bool = False
    responsive: bool | None = None
    pid_file: str | None = None
    log_file: str | None = None
    recent_events: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "container_name": self.container_name,
            "container_exists": self.container_exists,
            "container_running": self.container_running,
            "watchdog_pid": self.watchdog_pid,
            "watchdog_alive": self.watchdog_alive,
            "stale_pid": self.stale_pid,
            "uptime": self.uptime,
            "device_path": self.device_path,
            "device_present": self.device_present,
            "responsive": self.responsive,
            "pid_file": self.pid_file,
            "log_file": self.log_file,
            "recent_events": list(self.recent_events),
        }
