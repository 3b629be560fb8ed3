"""Single-instance PID record for the watchdog.

The PID file holds a single integer. A PID whose process is gone (or is a
zombie) is stale and may be removed by anyone.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import psutil

from accelwatch.errors import DuplicateInstance

logger = logging.getLogger(__name__)


def is_process_alive(pid: int) -> bool:
    """Check if a process is truly alive (not zombie, not dead).

    os.kill(pid, 0) succeeds on zombie processes, but they're effectively dead,
    so psutil is used to inspect the process status.

    Args:
        pid: Process ID to check

    Returns:
        True only if process exists and is not a zombie
    """
    if pid <= 0:
        return False
    try:
        proc = psutil.Process(pid)
        return bool(proc.status() != psutil.STATUS_ZOMBIE)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


@dataclass
class WatchdogInstanceState:
    """A recorded watchdog instance."""

    pid: int
    started_at: float | None = None

    @property
    def alive(self) -> bool:
        return is_process_alive(self.pid)


class PidFile:
    """PID file with atomic create-if-absent semantics."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read_pid(self) -> int | None:
        """Return the recorded PID, or None if missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except FileNotFoundError:
            return None
        except (ValueError, OSError) as e:
            logger.debug(f"Unreadable PID file {self.path}: {e}")
            return None

    def read(self) -> WatchdogInstanceState | None:
        """Return the recorded instance, or None if there is no record."""
        pid = self.read_pid()
        if pid is None:
            return None
        return WatchdogInstanceState(pid=pid, started_at=self._create_time(pid))

    def exists(self) -> bool:
        return self.path.exists()

    def is_stale(self) -> bool:
        """True when a record exists but does not name a live process."""
        if not self.path.exists():
            return False
        pid = self.read_pid()
        return pid is None or not is_process_alive(pid)

    def live_pid(self) -> int | None:
        """PID of the live recorded instance, or None."""
        pid = self.read_pid()
        if pid is not None and is_process_alive(pid):
            return pid
        return None

    def remove_stale(self) -> bool:
        """Remove the record if it is stale. Returns True if removed."""
        if self.is_stale():
            logger.info(f"Removing stale PID file {self.path} (PID {self.read_pid()})")
            self.path.unlink(missing_ok=True)
            return True
        return False

    def acquire(self, pid: int | None = None) -> WatchdogInstanceState:
        """
        Claim the record for ``pid`` (default: this process).

        Raises:
            DuplicateInstance: If a live instance already holds the record
        """
        pid = pid if pid is not None else os.getpid()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Two rounds: the first may find and clear a stale record
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                existing = self.read_pid()
                if existing is not None and existing != pid and is_process_alive(existing):
                    raise DuplicateInstance(existing, str(self.path)) from None
                if existing == pid:
                    return WatchdogInstanceState(pid=pid, started_at=self._create_time(pid))
                logger.info(f"Removing stale PID file {self.path} (PID {existing})")
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(pid))
            return WatchdogInstanceState(pid=pid, started_at=self._create_time(pid))

        # Lost a race against another starter that recreated the file
        existing = self.read_pid()
        raise DuplicateInstance(existing if existing is not None else -1, str(self.path))

    def release(self, pid: int | None = None) -> bool:
        """Remove the record if it still names ``pid``. Returns True if removed."""
        pid = pid if pid is not None else os.getpid()
        if self.read_pid() == pid:
            self.path.unlink(missing_ok=True)
            return True
        return False

    @staticmethod
    def _create_time(pid: int) -> float | None:
        try:
            return psutil.Process(pid).create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None
