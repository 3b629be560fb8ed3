"""Accelerator health probing.

Runs the diagnostic command inside the target container and classifies
the result as healthy, hung or absent.
"""

from __future__ import annotations

import logging

from accelwatch.config.watchdog import HOST_TIMEOUT_MARGIN
from accelwatch.container import ContainerLifecycleManager
from accelwatch.errors import ContainerAbsent, ContainerStopped, ProbeTimeout
from accelwatch.models import HealthCheckResult, HealthStatus, Target

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class HealthProbe:
    """Bounded-time diagnostic of the accelerator inside its container."""

    def __init__(
        self,
        containers: ContainerLifecycleManager,
        diagnostic_command: list[str],
        timeout: float,
    ) -> None:
        self.containers = containers
        self.diagnostic_command = list(diagnostic_command)
        self.timeout = timeout

    def _diagnostic(self, timeout: float) -> list[str]:
        # The in-container `timeout` reaps the diagnostic even if the exec
        # client is killed on the host side.
        return ["timeout", f"{timeout:g}", *self.diagnostic_command]

    def check(self, target: Target, timeout: float | None = None) -> HealthCheckResult:
        """
        Probe the accelerator.

        Args:
            target: Workload to probe
            timeout: Override of the configured diagnostic timeout

        Returns:
            HealthCheckResult classified HEALTHY, HUNG or ABSENT
        """
        timeout = timeout if timeout is not None else self.timeout
        name = target.container_name

        try:
            result = self.containers.exec(
                name,
                self._diagnostic(timeout),
                timeout=timeout + HOST_TIMEOUT_MARGIN,
            )
        except ContainerAbsent:
            return HealthCheckResult(HealthStatus.ABSENT, detail="container does not exist")
        except ContainerStopped:
            return HealthCheckResult(HealthStatus.HUNG, detail="container not running")

        # coreutils timeout exits 124 when the diagnostic overran inside the container
        if result.timed_out or result.returncode == TIMEOUT_EXIT_CODE:
            error = ProbeTimeout(name, timeout)
            logger.warning(f"Health check failed: {error}")
            return HealthCheckResult(HealthStatus.HUNG, detail=str(error))
        if not result.ok:
            logger.warning(f"Health check failed: {result.describe()}")
            return HealthCheckResult(HealthStatus.HUNG, detail=result.describe())

        logger.debug("Health check passed")
        return HealthCheckResult(HealthStatus.HEALTHY)

    def check_responsive(self, target: Target, timeout: float) -> bool:
        """Quick yes/no responsiveness check used by status queries."""
        return self.check(target, timeout=timeout).healthy
