"""PID marker used to detect a second running engine.

Best effort only: a stale file from a crashed process is taken over, and
two processes racing at the same instant can both win.
"""

import os
from pathlib import Path

from .observability import get_logger

log = get_logger(__name__)


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to someone else
        return True
    return True


class InstanceMarker:
    """Claims a PID file for this process."""

    def __init__(self, path: Path, pid: int | None = None) -> None:
        self.path = Path(path)
        self.pid = os.getpid() if pid is None else pid
        self.held = False

    def other_pid(self) -> int | None:
        """PID of another live engine holding the marker, if any."""
        if not self.path.exists():
            return None
        try:
            pid = int(self.path.read_text().strip())
        except ValueError:
            log.warning("instance.unreadable_marker", path=str(self.path))
            return None
        if pid == self.pid or not _pid_alive(pid):
            return None
        return pid

    def acquire(self) -> bool:
        """Write our PID unless another live engine holds the marker."""
        other = self.other_pid()
        if other is not None:
            log.warning("instance.duplicate", path=str(self.path), other_pid=other)
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{self.pid}\n")
        self.held = True
        return True

    def release(self) -> None:
        if not self.held:
            return
        try:
            if self.path.read_text().strip() == str(self.pid):
                self.path.unlink()
        except FileNotFoundError:
            pass
        self.held = False
