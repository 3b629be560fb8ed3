"""Container lifecycle management through the engine CLI.

Queries and drives a single named container with ``podman`` (or a
docker-compatible CLI). Start, stop and restart are idempotent; every
operation other than :meth:`ContainerLifecycleManager.exists` raises
:class:`ContainerAbsent` when the container is gone.
"""

from __future__ import annotations

import logging

from accelwatch.commands import CommandResult, CommandRunner
from accelwatch.errors import (
    ContainerAbsent,
    ContainerCommandError,
    ContainerEngineError,
    ContainerStopped,
)

logger = logging.getLogger(__name__)


class ContainerLifecycleManager:
    """Manages one container through a process-style container engine."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        engine: str = "podman",
        command_timeout: float = 60.0,
    ) -> None:
        self._runner = runner or CommandRunner()
        self.engine = engine
        self.command_timeout = command_timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _engine(self, *args: str, timeout: float | None = None) -> CommandResult:
        return self._runner.run(
            [self.engine, *args],
            timeout=timeout if timeout is not None else self.command_timeout,
        )

    def _list_names(self, include_stopped: bool) -> set[str]:
        args = ["ps", "--format", "{{.Names}}"]
        if include_stopped:
            args.insert(1, "-a")
        result = self._engine(*args)
        if not result.ok:
            raise ContainerEngineError(
                f"'{self.engine} {' '.join(args)}' failed: {result.describe()}"
            )
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def _require(self, name: str) -> None:
        if not self.exists(name):
            raise ContainerAbsent(name)

    def _action(self, action: str, name: str) -> None:
        result = self._engine(action, name)
        if not result.ok:
            raise ContainerCommandError(action, name, result.describe())
        logger.debug(f"{self.engine} {action} {name}: ok")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        """Check whether a container with exactly this name exists."""
        return name in self._list_names(include_stopped=True)

    def is_running(self, name: str) -> bool:
        """Check whether the container is running.

        Raises:
            ContainerAbsent: If the container does not exist
        """
        if name in self._list_names(include_stopped=False):
            return True
        self._require(name)
        return False

    def start(self, name: str) -> bool:
        """Start the container. Returns False if it was already running."""
        if self.is_running(name):
            logger.debug(f"Container {name} already running")
            return False
        self._action("start", name)
        return True

    def stop(self, name: str) -> bool:
        """Stop the container. Returns False if it was already stopped."""
        if not self.is_running(name):
            logger.debug(f"Container {name} already stopped")
            return False
        self._action("stop", name)
        return True

    def restart(self, name: str) -> None:
        """Restart the container (starts it if it was stopped)."""
        self._require(name)
        self._action("restart", name)

    def exec(self, name: str, command: list[str], timeout: float) -> CommandResult:
        """Run a command inside the container's namespaces.

        The container state is only queried when the exec fails, so a
        successful exec costs a single engine call.

        Raises:
            ContainerAbsent: If the container does not exist
            ContainerStopped: If the container exists but is not running
        """
        result = self._engine("exec", name, *command, timeout=timeout)
        if not result.ok and not self.is_running(name):
            raise ContainerStopped(name)
        return result
