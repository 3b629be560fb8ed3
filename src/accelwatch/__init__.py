"""accelwatch - watchdog and auto-recovery for containerized accelerators.

Probes a hardware accelerator from inside its container, escalates through
container restart and kernel-module reload when it hangs, and keeps a single
watchdog instance per workspace.
"""

__version__ = "0.1.0"
