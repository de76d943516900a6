"""IdleMonitor - present/idle state machine driven by an idle-seconds probe.

States:
- PRESENT: polled every present_poll_interval. Each tick refreshes
  last_online and idle_beginning and runs the present hooks.
- IDLE: polled every idle_poll_interval until the probe reports less than
  short_idle_threshold idle seconds, then the return-from-idle hooks run
  once with the episode and the monitor goes back to PRESENT.

A PRESENT tick that arrives more than short_idle_threshold after the
previous one means the process itself was suspended (machine slept); the
monitor goes IDLE at once without asking the probe, so the sleep is
counted from the last time the user was seen.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import Settings
from .hooks import HookList
from .observability import get_logger
from .timeutil import now_ts

log = get_logger(__name__)

IdleProbe = Callable[[], float]


class IdleState(str, Enum):
    PRESENT = "present"
    IDLE = "idle"


@dataclass(frozen=True)
class IdleEpisode:
    """One completed idle period, passed to return-from-idle hooks."""

    began_at: float
    ended_at: float
    length: float
    long: bool


class IdleMonitor:
    """Tracks present/idle transitions for a single user session.

    ``tick`` is synchronous and takes an explicit time, so tests can drive
    the state machine directly; ``start`` runs the same ticks on a daemon
    thread.
    """

    def __init__(
        self,
        probe: IdleProbe,
        settings: Settings,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        self.probe = probe
        self.settings = settings
        self.clock = clock

        self.state = IdleState.PRESENT
        self.last_online: float | None = None
        self.idle_beginning: float | None = None
        self.length_of_last_idle: float | None = None
        self._last_tick: float | None = None

        self.present_hooks: HookList[float] = HookList("present")
        self.return_hooks: HookList[IdleEpisode] = HookList("return_from_idle")

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def restore(self, last_online: float | None, now: float | None = None) -> None:
        """Seed state from the last-known-online time recovered at startup.

        If the process was down for longer than the short threshold, the
        downtime is treated as an idle episode that ends on the first
        return to the keyboard.
        """
        if last_online is None:
            return
        if now is None:
            now = self.clock()
        with self._lock:
            self.last_online = last_online
            if now - last_online > self.settings.short_idle_threshold:
                self.idle_beginning = last_online
                self.state = IdleState.IDLE
                log.info("idle.restored_as_idle", away_seconds=round(now - last_online))

    def _probe_idle_seconds(self) -> float | None:
        try:
            return max(0.0, float(self.probe()))
        except Exception as e:
            log.warning("idle.probe_failed", error=str(e))
            return None

    def tick(self, now: float | None = None) -> IdleState:
        """Advance the state machine by one poll. Returns the new state."""
        if now is None:
            now = self.clock()
        present_at: float | None = None
        episode: IdleEpisode | None = None

        with self._lock:
            previous_tick = self._last_tick
            self._last_tick = now
            if self.state is IdleState.PRESENT:
                present_at = self._tick_present(now, previous_tick)
            else:
                episode = self._tick_idle(now)

        # Hooks run outside the lock; they may be slow or call back in.
        if present_at is not None:
            self.present_hooks.run(present_at)
        if episode is not None:
            self.return_hooks.run(episode)
        return self.state

    def _tick_present(self, now: float, previous_tick: float | None) -> float | None:
        short = self.settings.short_idle_threshold
        if previous_tick is not None and now - previous_tick > short:
            self.state = IdleState.IDLE
            if self.idle_beginning is None:
                self.idle_beginning = previous_tick
            log.info("idle.suspend_detected", gap_seconds=round(now - previous_tick))
            return None

        idle_seconds = self._probe_idle_seconds()
        if idle_seconds is None:
            return None
        if idle_seconds > short:
            self.state = IdleState.IDLE
            if self.idle_beginning is None:
                self.idle_beginning = now
            log.info("idle.went_idle", idle_seconds=round(idle_seconds))
            return None

        self.last_online = now
        self.idle_beginning = now
        return now

    def _tick_idle(self, now: float) -> IdleEpisode | None:
        idle_seconds = self._probe_idle_seconds()
        if idle_seconds is None or idle_seconds >= self.settings.short_idle_threshold:
            return None

        began_at = self.idle_beginning if self.idle_beginning is not None else now
        length = now - began_at
        if self.settings.subtract_detection_lag:
            length -= self.settings.short_idle_threshold
        length = max(0.0, length)

        episode = IdleEpisode(
            began_at=began_at,
            ended_at=now,
            length=length,
            long=length >= self.settings.long_idle_threshold,
        )
        self.length_of_last_idle = length
        self.idle_beginning = now
        self.last_online = now
        self.state = IdleState.PRESENT
        log.info("idle.returned", length_seconds=round(length), long=episode.long)
        return episode

    # ------------------------------------------------------------------
    # Thread management
    # ------------------------------------------------------------------

    def current_interval(self) -> float:
        if self.state is IdleState.IDLE:
            return self.settings.idle_poll_interval
        return self.settings.present_poll_interval

    def start(self) -> None:
        """Start the background polling thread."""
        if self._thread is not None and self._thread.is_alive():
            log.debug("idle.already_running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="nudge-idle")
        self._thread.start()
        log.info("idle.started", interval=self.current_interval())

    def stop(self) -> None:
        """Stop the polling thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None
        log.info("idle.stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                log.error("idle.tick_failed", error=str(e), exc_info=True)
            self._stop.wait(self.current_interval())
