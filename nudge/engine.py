"""Engine - wires the idle monitor, scheduler and memory store together.

Startup order matters: persisted state is recovered before anything can
ask whether an item is pending, otherwise a restart would re-prompt items
that were just answered.
"""

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .audit import AuditLogger
from .config import Settings
from .errors import CorruptLogError
from .hooks import HookList
from .idle import IdleEpisode, IdleMonitor, IdleProbe
from .instance import InstanceMarker
from .memory import MemoryStore
from .models.queue import RunSummary
from .observability import get_logger
from .pending import pending_reasons
from .registry import ItemRegistry
from .scheduler import ConfirmFn, Scheduler
from .timeutil import now_ts

log = get_logger(__name__)


def _never(question: str) -> bool:
    return False


def _seconds(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected seconds, got {type(value).__name__}")
    return float(value)


class Engine:
    """One scheduling engine per user session."""

    def __init__(
        self,
        settings: Settings,
        registry: ItemRegistry,
        probe: IdleProbe | None = None,
        confirm: ConfirmFn | None = None,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.clock = clock
        self.audit = AuditLogger(settings.audit_log_path)
        self.memory = MemoryStore(settings.variable_log_path, self.audit)
        self.scheduler = Scheduler(registry, settings, confirm or _never, self.audit, clock)
        self.marker = InstanceMarker(settings.pid_file_path)
        self.monitor = IdleMonitor(probe, settings, clock) if probe is not None else None
        self.startup_hooks: HookList["Engine"] = HookList("startup")

        self._session_lock = threading.Lock()
        self._session_thread: threading.Thread | None = None
        self._recovered_last_online: float | None = None
        self._recovered_idle_length: float | None = None
        self.started = False

        self._register_variables()
        if self.monitor is not None:
            self.monitor.present_hooks.add(self._on_present)
            self.monitor.return_hooks.add(self._on_return_from_idle)

    # ------------------------------------------------------------------
    # Persisted variables
    # ------------------------------------------------------------------

    def _register_variables(self) -> None:
        self.memory.register("item_state", self.registry.export_state, self.registry.load_state)
        self.memory.register(
            "disabled_items", self.registry.export_disabled, self.registry.load_disabled
        )
        self.memory.register(
            "last_online", self._get_last_online, self._set_last_online, timestamp=True
        )
        self.memory.register(
            "length_of_last_idle", self._get_idle_length, self._set_idle_length
        )

    def _get_last_online(self) -> datetime | None:
        value = self._recovered_last_online
        if self.monitor is not None and self.monitor.last_online is not None:
            value = self.monitor.last_online
        return datetime.fromtimestamp(value) if value is not None else None

    def _set_last_online(self, value: Any) -> None:
        if isinstance(value, datetime):
            value = value.timestamp()
        self._recovered_last_online = _seconds(value)

    def _get_idle_length(self) -> float | None:
        if self.monitor is not None and self.monitor.length_of_last_idle is not None:
            return self.monitor.length_of_last_idle
        return self._recovered_idle_length

    def _set_idle_length(self, value: Any) -> None:
        value = _seconds(value)
        self._recovered_idle_length = value
        if self.monitor is not None:
            self.monitor.length_of_last_idle = value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def recover(self, now: float | None = None) -> dict[str, Any]:
        """Restore item state and the last-online time from the variable log."""
        values = self.memory.recover()
        self.scheduler.mark_recovered()
        if self.monitor is not None:
            self.monitor.restore(self._recovered_last_online, now)
        return values

    def start(self, now: float | None = None, monitor: bool = True) -> bool:
        """Claim the instance marker, recover state and start idle polling.

        Returns False (and does nothing else) when another engine is running.
        """
        if not self.marker.acquire():
            log.warning("engine.duplicate_instance", pid_file=str(self.marker.path))
            return False
        self.recover(now)
        if monitor and self.monitor is not None:
            self.monitor.start()
        elif self.monitor is None:
            log.warning("engine.idle_tracking_disabled")
        self.started = True
        self.startup_hooks.run(self)
        log.info("engine.started", items=self.registry.ids())
        return True

    def shutdown(self) -> None:
        """Stop polling, save state and release the instance marker."""
        if self.monitor is not None:
            self.monitor.stop()
        if self._session_thread is not None:
            self._session_thread.join(timeout=1)
        try:
            if self.memory.recovered:
                self.snapshot()
        except CorruptLogError as e:
            log.error("engine.snapshot_failed", error=str(e))
        finally:
            self.marker.release()
            self.started = False
        log.info("engine.stopped")

    def snapshot(self, now: float | None = None) -> list[str]:
        return self.memory.snapshot(now=now)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _on_present(self, now: float) -> None:
        self.snapshot(now)

    def _on_return_from_idle(self, episode: IdleEpisode) -> None:
        self.audit.log(
            "IDLE_RETURN",
            length=round(episode.length),
            long=episode.long,
        )
        self.memory.snapshot(["length_of_last_idle", "last_online"], now=episode.ended_at)
        if episode.long:
            self.start_session_async()

    # ------------------------------------------------------------------
    # Session triggers
    # ------------------------------------------------------------------

    def _session(self, force_all: bool, rebuild: bool, now: float | None) -> RunSummary | None:
        if not self._session_lock.acquire(blocking=False):
            log.info("engine.session_refused", reason="session in progress")
            return None
        try:
            if rebuild:
                self.scheduler.build_queue(force_all=force_all, now=now)
            summary = self.scheduler.run_queue(now=now)
            self.snapshot(now)
            return summary
        finally:
            self._session_lock.release()

    def new_session(self, now: float | None = None) -> RunSummary | None:
        """Queue the pending items and run them."""
        return self._session(force_all=False, rebuild=True, now=now)

    def force_session(self, now: float | None = None) -> RunSummary | None:
        """Queue every enabled item, pending or not, and run them."""
        return self._session(force_all=True, rebuild=True, now=now)

    def resume(self, now: float | None = None) -> RunSummary | None:
        """Continue the existing queue."""
        return self._session(force_all=False, rebuild=False, now=now)

    def start_session_async(self, force_all: bool = False) -> threading.Thread | None:
        """Run a session on its own thread so idle polling keeps going."""
        if self._session_thread is not None and self._session_thread.is_alive():
            log.info("engine.session_refused", reason="session thread busy")
            return None

        def worker() -> None:
            try:
                summary = self._session(force_all=force_all, rebuild=True, now=None)
                if summary is not None:
                    log.info(
                        "engine.session_finished",
                        ran=len(summary.runs),
                        remaining=summary.remaining,
                    )
            except Exception as e:
                log.error("engine.session_failed", error=str(e), exc_info=True)

        self._session_thread = threading.Thread(target=worker, daemon=True, name="nudge-session")
        self._session_thread.start()
        return self._session_thread

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def status(self, now: float | None = None) -> list[dict[str, Any]]:
        """Per-item view: pending flag, blocking rules and runtime state."""
        if now is None:
            now = self.clock()
        rows = []
        for fn in self.registry.ids():
            item = self.registry.require(fn)
            state = self.registry.state(fn)
            disabled = self.registry.is_disabled(fn)
            if disabled:
                reasons = ["disabled"]
            else:
                try:
                    reasons = pending_reasons(item, self.registry, now)
                except (OSError, UnicodeDecodeError) as e:
                    log.warning("engine.status_check_failed", fn=fn, error=str(e))
                    reasons = ["unreadable"]
            rows.append(
                {
                    "fn": fn,
                    "pending": not reasons,
                    "reasons": reasons,
                    "dismissals": state.dismissals,
                    "last_called": state.last_called,
                    "disabled": disabled,
                }
            )
        return rows
