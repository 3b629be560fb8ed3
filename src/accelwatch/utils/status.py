"""
Status message formatting for the accelwatch CLI.
"""

from accelwatch.models import StatusReport


def format_uptime(seconds: float) -> str:
    """
    Format uptime in human-readable format.

    Args:
        seconds: Uptime in seconds

    Returns:
        Formatted string like "1h 23m 45s"
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def format_status_message(report: StatusReport) -> str:
    """
    Format the watchdog status report with consistent styling.

    Args:
        report: Snapshot produced by WatchdogLifecycle.status()

    Returns:
        Formatted status message string
    """
    lines = []

    # Header
    lines.append("=" * 70)
    lines.append("ACCELERATOR WATCHDOG STATUS")
    lines.append("=" * 70)
    lines.append("")

    # Container section
    lines.append(f"Container ({report.container_name}):")
    if report.container_running:
        lines.append("  ✓ Running")
    elif report.container_exists:
        lines.append("  ✗ Not running (stopped)")
    else:
        lines.append("  ✗ Not running (does not exist)")
    lines.append("")

    # Watchdog section
    lines.append("Watchdog:")
    if report.watchdog_alive:
        status_line = f"  ✓ Running (PID: {report.watchdog_pid})"
        if report.uptime:
            status_line += f" | Uptime: {report.uptime}"
        lines.append(status_line)
    elif report.stale_pid:
        lines.append(f"  ✗ Not running (stale PID file, PID {report.watchdog_pid})")
    else:
        lines.append("  ✗ Not running")
    lines.append("")

    # Accelerator section
    lines.append("Accelerator:")
    if report.device_path:
        present = "present" if report.device_present else "missing"
        lines.append(f"  Device: {report.device_path} ({present})")
    if report.responsive is True:
        lines.append("  ✓ Responsive")
    elif report.responsive is False:
        lines.append("  ✗ Not responsive or not accessible")
    else:
        lines.append("  - Not probed")
    lines.append("")

    # Recent events
    lines.append("Recent watchdog events:")
    if report.recent_events:
        for event in report.recent_events:
            lines.append(f"  {event}")
    else:
        lines.append("  No log file yet")
    lines.append("")

    # Paths section
    if report.pid_file or report.log_file:
        lines.append("Paths:")
        if report.pid_file:
            lines.append(f"  PID file: {report.pid_file}")
        if report.log_file:
            lines.append(f"  Log: {report.log_file}")
        lines.append("")

    # Footer
    lines.append("=" * 70)

    return "\n".join(lines)
