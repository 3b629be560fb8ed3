"""Custom exceptions for the accelwatch daemon."""

from __future__ import annotations


class AccelWatchError(RuntimeError):
    """Base class for all accelwatch errors."""


class ProbeTimeout(AccelWatchError):
    """Raised when the accelerator diagnostic exceeds its time bound."""

    def __init__(self, container: str, timeout: float) -> None:
        super().__init__(f"diagnostic in '{container}' timed out after {timeout:g}s")
        self.container = container
        self.timeout = timeout


class ContainerAbsent(AccelWatchError):
    """Raised when the supervised container no longer exists."""

    def __init__(self, container: str) -> None:
        super().__init__(f"container '{container}' does not exist")
        self.container = container


class ContainerStopped(AccelWatchError):
    """Raised when the supervised container exists but is not running."""

    def __init__(self, container: str) -> None:
        super().__init__(f"container '{container}' is not running")
        self.container = container


class ContainerEngineError(AccelWatchError):
    """Raised when the container engine itself cannot be queried."""


class ContainerCommandError(AccelWatchError):
    """Raised when a container start/stop/restart command fails."""

    def __init__(self, action: str, container: str, detail: str = "") -> None:
        message = f"{action} of container '{container}' failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.action = action
        self.container = container
        self.detail = detail


class PrivilegedActionFailed(AccelWatchError):
    """Raised when a module reload or device rebind command fails."""

    def __init__(self, action: str, detail: str = "") -> None:
        message = f"privileged action '{action}' failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.action = action
        self.detail = detail


class DuplicateInstance(AccelWatchError):
    """Raised when a watchdog is already running for the workspace."""

    def __init__(self, pid: int, pid_file: str | None = None) -> None:
        location = f" ({pid_file})" if pid_file else ""
        super().__init__(f"watchdog already running with PID {pid}{location}")
        self.pid = pid
        self.pid_file = pid_file


class WatchdogStartError(AccelWatchError):
    """Raised when a spawned watchdog process fails to come up."""


class WatchdogStopError(AccelWatchError):
    """Raised when a running watchdog cannot be stopped."""

    def __init__(self, pid: int, detail: str) -> None:
        super().__init__(f"failed to stop watchdog (PID {pid}): {detail}")
        self.pid = pid
        self.detail = detail
