"""Escalating recovery for a hung accelerator.

Implements a two-tier recovery strategy driven once per poll cycle:
1. Soft restart: restart the container, wait, re-probe
2. Module reload: optional PCI unbind, rmmod, modprobe, restart the container

A module reload is always followed by a cooldown during which no further
recovery is attempted, whatever the probes report.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

from accelwatch.config.watchdog import WatchdogConfig
from accelwatch.container import ContainerLifecycleManager
from accelwatch.device import SYSFS_PCI_DRIVERS, DeviceController
from accelwatch.errors import (
    ContainerAbsent,
    ContainerCommandError,
    ContainerEngineError,
    PrivilegedActionFailed,
)
from accelwatch.models import HealthCheckResult, HealthStatus, Target
from accelwatch.probe import HealthProbe

logger = logging.getLogger(__name__)


class RecoveryTier(IntEnum):
    """Severity of the recovery action, from least to most invasive."""

    NONE = 0
    SOFT_RESTART = 1
    MODULE_RELOAD = 2


class RecoveryOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EscalationState(str, Enum):
    """States of the recovery state machine."""

    IDLE = "idle"
    TIER_SOFT_RESTART = "tier_soft_restart"
    TIER_MODULE_RELOAD = "tier_module_reload"
    COOLDOWN = "cooldown"


class EscalationEvent(str, Enum):
    """Inputs that move the state machine."""

    HEALTHY = "healthy"
    HUNG = "hung"
    RESOLVED = "resolved"
    RELOADED = "reloaded"
    COOLDOWN_EXPIRED = "cooldown_expired"


TRANSITIONS: dict[tuple[EscalationState, EscalationEvent], EscalationState] = {
    (EscalationState.IDLE, EscalationEvent.HEALTHY): EscalationState.IDLE,
    (EscalationState.IDLE, EscalationEvent.HUNG): EscalationState.TIER_SOFT_RESTART,
    (EscalationState.TIER_SOFT_RESTART, EscalationEvent.RESOLVED): EscalationState.IDLE,
    (EscalationState.TIER_SOFT_RESTART, EscalationEvent.HEALTHY): EscalationState.IDLE,
    (EscalationState.TIER_SOFT_RESTART, EscalationEvent.HUNG): EscalationState.TIER_MODULE_RELOAD,
    (EscalationState.TIER_MODULE_RELOAD, EscalationEvent.RELOADED): EscalationState.COOLDOWN,
    (EscalationState.COOLDOWN, EscalationEvent.HEALTHY): EscalationState.COOLDOWN,
    (EscalationState.COOLDOWN, EscalationEvent.HUNG): EscalationState.COOLDOWN,
    (EscalationState.COOLDOWN, EscalationEvent.COOLDOWN_EXPIRED): EscalationState.IDLE,
}


class InvalidTransition(RuntimeError):
    """Raised when an event is not valid in the current state."""

    def __init__(self, state: EscalationState, event: EscalationEvent) -> None:
        super().__init__(f"no transition from {state.value} on {event.value}")
        self.state = state
        self.event = event


@dataclass(frozen=True)
class RecoveryAttempt:
    """Record of one recovery action. Never mutated after creation."""

    tier: RecoveryTier
    outcome: RecoveryOutcome
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.outcome is RecoveryOutcome.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tier": self.tier.name,
            "outcome": self.outcome.value,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


class RecoveryEscalator:
    """
    Decides and performs recovery actions for a hung accelerator.

    Features:
    - Explicit state machine (see TRANSITIONS)
    - At most one recovery attempt per handled probe result
    - Privileged and container engine failures are recorded, never raised
    - Cooldown after a module reload to prevent recovery storms

    Only ContainerAbsent escapes; the caller treats it as terminal.
    """

    def __init__(
        self,
        target: Target,
        containers: ContainerLifecycleManager,
        device: DeviceController,
        probe: HealthProbe,
        config: WatchdogConfig | None = None,
        on_attempt: Callable[[RecoveryAttempt], None] | None = None,
    ):
        self.target = target
        self.containers = containers
        self.device = device
        self.probe = probe
        self.config = config or WatchdogConfig()
        self.on_attempt = on_attempt

        self._state = EscalationState.IDLE
        self._tier = RecoveryTier.NONE
        self.cooldown_until: float = 0
        self.history: deque[RecoveryAttempt] = deque(maxlen=self.config.history_size)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> EscalationState:
        return self._state

    @property
    def tier(self) -> RecoveryTier:
        """Escalation tier reached in the current hang episode."""
        return self._tier

    @property
    def cooldown_remaining(self) -> float:
        if self._state is not EscalationState.COOLDOWN:
            return 0.0
        return max(0.0, self.cooldown_until - time.monotonic())

    def _transition(self, event: EscalationEvent) -> EscalationState:
        try:
            new_state = TRANSITIONS[(self._state, event)]
        except KeyError:
            raise InvalidTransition(self._state, event) from None
        if new_state is not self._state:
            logger.debug(f"Escalation {self._state.value} -> {new_state.value} on {event.value}")
        self._state = new_state
        return new_state

    def _expire_cooldown(self) -> None:
        if self._state is EscalationState.COOLDOWN and time.monotonic() >= self.cooldown_until:
            self._transition(EscalationEvent.COOLDOWN_EXPIRED)
            self._tier = RecoveryTier.NONE
            logger.info("Recovery cooldown expired, escalation reset")

    def _record(self, tier: RecoveryTier, outcome: RecoveryOutcome, detail: str) -> RecoveryAttempt:
        attempt = RecoveryAttempt(tier=tier, outcome=outcome, detail=detail)
        self.history.append(attempt)
        message = f"Recovery attempt {tier.name}: {outcome.value} ({detail})"
        if attempt.succeeded:
            logger.info(message)
        else:
            logger.error(message)
        if self.on_attempt is not None:
            self.on_attempt(attempt)
        return attempt

    # ------------------------------------------------------------------
    # Driving the machine
    # ------------------------------------------------------------------

    def handle(self, result: HealthCheckResult) -> RecoveryAttempt | None:
        """
        Feed one probe result into the state machine.

        Args:
            result: The current cycle's health check

        Returns:
            The RecoveryAttempt performed this cycle, or None

        Raises:
            ContainerAbsent: If the target disappeared
        """
        if result.status is HealthStatus.ABSENT:
            raise ContainerAbsent(self.target.container_name)

        self._expire_cooldown()
        event = EscalationEvent.HEALTHY if result.healthy else EscalationEvent.HUNG

        if self._state is EscalationState.COOLDOWN:
            if result.healthy and self._tier is not RecoveryTier.NONE:
                logger.info("Accelerator healthy after module reload")
                self._tier = RecoveryTier.NONE
            elif not result.healthy:
                logger.warning(
                    f"Accelerator still hung, cooldown active "
                    f"({self.cooldown_remaining:.0f}s remaining), not escalating"
                )
            self._transition(event)
            return None

        if result.healthy:
            if self._state is EscalationState.TIER_SOFT_RESTART:
                logger.info("Accelerator recovered, escalation reset")
            self._transition(event)
            self._tier = RecoveryTier.NONE
            return None

        if self._state is EscalationState.IDLE:
            self._transition(event)
            self._tier = RecoveryTier.SOFT_RESTART
            return self._soft_restart()

        self._transition(event)
        self._tier = RecoveryTier.MODULE_RELOAD
        return self._module_reload()

    # ------------------------------------------------------------------
    # Recovery actions
    # ------------------------------------------------------------------

    def _soft_restart(self) -> RecoveryAttempt:
        name = self.target.container_name
        logger.warning(f"Accelerator appears hung, restarting container {name}")

        try:
            self.containers.restart(name)
        except (ContainerCommandError, ContainerEngineError) as e:
            return self._record(RecoveryTier.SOFT_RESTART, RecoveryOutcome.FAILED, str(e))

        time.sleep(self.config.restart_grace)

        try:
            recheck = self.probe.check(self.target)
        except ContainerEngineError as e:
            return self._record(
                RecoveryTier.SOFT_RESTART, RecoveryOutcome.FAILED, f"re-check after restart failed: {e}"
            )
        if recheck.status is HealthStatus.ABSENT:
            raise ContainerAbsent(name)
        if recheck.healthy:
            self._transition(EscalationEvent.RESOLVED)
            self._tier = RecoveryTier.NONE
            return self._record(
                RecoveryTier.SOFT_RESTART, RecoveryOutcome.SUCCEEDED, "container restart resolved hang"
            )

        return self._record(
            RecoveryTier.SOFT_RESTART,
            RecoveryOutcome.FAILED,
            f"still hung after restart: {recheck.detail or 'no detail'}",
        )

    def _privileged_step(self, errors: list[str], action: Callable[..., None], *args: str) -> None:
        try:
            action(*args)
        except PrivilegedActionFailed as e:
            logger.error(str(e))
            errors.append(str(e))

    def _is_bound(self, driver: str, pci_address: str) -> bool:
        return Path(SYSFS_PCI_DRIVERS, driver, pci_address).exists()

    def _module_reload(self) -> RecoveryAttempt:
        name = self.target.container_name
        module = self.target.kernel_module
        pci_address = self.target.pci_address
        logger.warning(f"Container restart insufficient, reloading kernel module {module}")

        errors: list[str] = []
        completed = False
        try:
            if pci_address:
                self._privileged_step(errors, self.device.unbind, module, pci_address)
            self._privileged_step(errors, self.device.unload_module, module)
            time.sleep(self.config.module_reload_pause)
            self._privileged_step(errors, self.device.load_module, module)
            if pci_address and not self._is_bound(module, pci_address):
                self._privileged_step(errors, self.device.bind, module, pci_address)
            time.sleep(self.config.post_reload_settle)
            try:
                self.containers.restart(name)
            except (ContainerCommandError, ContainerEngineError) as e:
                errors.append(str(e))
            completed = True
        except ContainerAbsent:
            errors.append(f"container {name} vanished")
            raise
        finally:
            # A module reload always ends in cooldown with exactly one record
            self._enter_cooldown()
            if not completed and not errors:
                errors.append("module reload interrupted")
            if errors:
                attempt = self._record(
                    RecoveryTier.MODULE_RELOAD, RecoveryOutcome.FAILED, "; ".join(errors)
                )
            else:
                attempt = self._record(
                    RecoveryTier.MODULE_RELOAD, RecoveryOutcome.SUCCEEDED, f"{module} reloaded"
                )

        return attempt

    def _enter_cooldown(self) -> None:
        self._transition(EscalationEvent.RELOADED)
        self.cooldown_until = time.monotonic() + self.config.cooldown
        logger.info(f"Entering recovery cooldown for {self.config.cooldown:g}s")
