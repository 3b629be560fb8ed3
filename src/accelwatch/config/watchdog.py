"""
Watchdog configuration module.

Contains configuration for the accelerator watchdog: which container and
device to supervise, probe timing, and recovery pacing.
"""

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = ["HOST_TIMEOUT_MARGIN", "WatchdogConfig"]

# Extra host-side time allowed on top of the in-container diagnostic timeout.
HOST_TIMEOUT_MARGIN = 2.0


class WatchdogConfig(BaseModel):
    """Configuration for the accelerator watchdog process."""

    # Target
    container_name: str = Field(
        default="claude-npu-dev",
        description="Name of the container running the accelerator workload",
    )
    container_engine: str = Field(
        default="podman",
        description="Container engine CLI (podman or docker)",
    )
    device_path: str = Field(
        default="/dev/accel/accel0",
        description="Accelerator device node passed into the container",
    )
    kernel_module: str = Field(
        default="amdxdna",
        description="Kernel module driving the accelerator",
    )
    pci_address: str | None = Field(
        default=None,
        description="PCI address of the device; enables driver unbind during module reload",
    )
    diagnostic_command: list[str] = Field(
        default_factory=lambda: ["xrt-smi", "examine"],
        description="Command run inside the container to prove the accelerator responds",
    )

    # Timing
    check_interval: float = Field(
        default=30.0,
        ge=1.0,
        le=3600.0,
        description="Seconds between health checks",
    )
    probe_timeout: float = Field(
        default=15.0,
        gt=0.0,
        description="Seconds before a diagnostic is considered hung",
    )
    status_probe_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Diagnostic timeout used by the status command",
    )
    command_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Timeout for container engine and privileged commands",
    )
    restart_grace: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds to wait after a soft restart before re-probing",
    )
    module_reload_pause: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between unloading and reloading the kernel module",
    )
    post_reload_settle: float = Field(
        default=2.0,
        ge=0.0,
        description="Pause after reloading the module before restarting the container",
    )
    recovery_interval: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds until the next check after a recovery action",
    )
    stopped_restart_settle: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds to wait after starting a stopped container",
    )
    cooldown: float = Field(
        default=120.0,
        ge=0.0,
        le=3600.0,
        description="Quiet period after a module reload before escalation can restart",
    )

    stop_timeout: float = Field(
        default=90.0,
        gt=0.0,
        description="Seconds to wait for a graceful watchdog exit before SIGKILL",
    )
    start_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds to wait for a spawned watchdog to claim its PID file",
    )

    # Misc
    history_size: int = Field(
        default=50,
        ge=1,
        description="Number of recovery attempts kept in memory",
    )
    use_sudo: bool = Field(
        default=True,
        description="Prefix privileged commands with 'sudo -n'",
    )

    @field_validator("container_engine")
    @classmethod
    def validate_engine(cls, v: str) -> str:
        """Validate engine is a process-style container CLI."""
        if v not in ("podman", "docker"):
            raise ValueError("container_engine must be 'podman' or 'docker'")
        return v

    @field_validator("diagnostic_command")
    @classmethod
    def validate_diagnostic(cls, v: list[str]) -> list[str]:
        """Validate diagnostic command is not empty."""
        if not v:
            raise ValueError("diagnostic_command must not be empty")
        return v

    @model_validator(mode="after")
    def validate_probe_bound(self) -> "WatchdogConfig":
        """A probe, host margin included, must finish before the next poll is due."""
        if self.probe_timeout + HOST_TIMEOUT_MARGIN >= self.check_interval:
            raise ValueError(
                f"probe_timeout ({self.probe_timeout}) plus the {HOST_TIMEOUT_MARGIN:g}s host "
                f"margin must be less than check_interval ({self.check_interval})"
            )
        return self
