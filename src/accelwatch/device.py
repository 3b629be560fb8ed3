"""Privileged accelerator reset operations.

Only four operations are performed, matching a least-privilege sudoers
rule set::

    rmmod <module>
    modprobe <module>
    tee /sys/bus/pci/drivers/<module>/unbind
    tee /sys/bus/pci/drivers/<module>/bind

``sudo -n`` is used so a missing rule fails immediately instead of
blocking on a password prompt.
"""

from __future__ import annotations

import logging

from accelwatch.commands import CommandRunner
from accelwatch.errors import PrivilegedActionFailed

logger = logging.getLogger(__name__)

SYSFS_PCI_DRIVERS = "/sys/bus/pci/drivers"


class DeviceController:
    """Issues kernel-module and PCI driver binding commands."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        use_sudo: bool = True,
        command_timeout: float = 60.0,
    ) -> None:
        self._runner = runner or CommandRunner()
        self.use_sudo = use_sudo
        self.command_timeout = command_timeout

    def _privileged(self, action: str, command: list[str], input: str | None = None) -> None:
        if self.use_sudo:
            command = ["sudo", "-n", *command]
        result = self._runner.run(command, timeout=self.command_timeout, input=input)
        if not result.ok:
            raise PrivilegedActionFailed(action, result.describe())
        logger.debug(f"{action}: ok")

    def unload_module(self, module: str) -> None:
        self._privileged(f"rmmod {module}", ["rmmod", module])

    def load_module(self, module: str) -> None:
        self._privileged(f"modprobe {module}", ["modprobe", module])

    def unbind(self, driver: str, pci_address: str) -> None:
        """Detach the device from its PCI driver."""
        path = f"{SYSFS_PCI_DRIVERS}/{driver}/unbind"
        self._privileged(f"unbind {pci_address}", ["tee", path], input=pci_address)

    def bind(self, driver: str, pci_address: str) -> None:
        """Attach the device to its PCI driver."""
        path = f"{SYSFS_PCI_DRIVERS}/{driver}/bind"
        self._privileged(f"bind {pci_address}", ["tee", path], input=pci_address)
