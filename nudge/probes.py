"""Idle-seconds probes and the policy that picks one.

Preference order: an X/compositor query (xprintidle), then the in-process
activity probe if explicitly opted in, else no probe (monitor disabled).
"""

import shutil
import subprocess
import threading

from .observability import get_logger
from .timeutil import now_ts

log = get_logger(__name__)


class XprintidleProbe:
    """Ask the X server for idle time via the xprintidle utility."""

    def __init__(self, executable: str = "xprintidle", timeout: float = 5) -> None:
        self.executable = executable
        self.timeout = timeout

    @classmethod
    def available(cls, executable: str = "xprintidle") -> bool:
        return shutil.which(executable) is not None

    def __call__(self) -> float:
        result = subprocess.run(
            [self.executable],
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=True,
        )
        # xprintidle reports milliseconds
        return int(result.stdout.strip()) / 1000.0


class ActivityProbe:
    """Idle time measured from the host application's own activity marks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_activity = now_ts()

    def touch(self, now: float | None = None) -> None:
        """Record user activity (keypress, command, prompt answer)."""
        with self._lock:
            self._last_activity = now_ts() if now is None else now

    def __call__(self) -> float:
        with self._lock:
            return max(0.0, now_ts() - self._last_activity)


def select_probe(internal_idle: bool = False, activity: ActivityProbe | None = None):
    """Pick the best available probe, or None when idle tracking is off."""
    if XprintidleProbe.available():
        log.info("probes.selected", probe="xprintidle")
        return XprintidleProbe()
    if internal_idle:
        log.info("probes.selected", probe="activity")
        return activity or ActivityProbe()
    log.warning("probes.none_available")
    return None
