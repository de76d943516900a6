"""Scheduler - builds the due queue and runs items one at a time.

Run states: IDLE_NO_QUEUE -> QUEUED -> RUNNING_ITEM -> ... -> IDLE_NO_QUEUE

Each item body reports an Outcome:
- SUCCESS:   item leaves the queue, dismissals reset, success recorded
- CANCELLED: dismissals + 1, item goes back to the front and is retried
             at once; the dismissal check ends the retries
- SKIPPED:   item leaves the queue and the run continues; as the only
             queued item it counts as CANCELLED and the run stops
- TIMED_OUT: excursion watchdog fired; item leaves the queue with no
             success bookkeeping and is eligible again next pass

Only one run may be active per process.
"""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from .audit import AuditLogger
from .config import Settings
from .errors import ConfigurationError, QueueBusyError, StateNotRecoveredError
from .models.item import ExecutionKind, Item
from .models.queue import ItemRun, Outcome, RunPhase, RunSummary
from .observability import get_logger
from .pending import is_pending
from .registry import ItemBody, ItemRegistry
from .timeutil import now_ts

log = get_logger(__name__)

ConfirmFn = Callable[[str], bool]


class Excursion:
    """Completion tracker for an item that works through auxiliary resources.

    The body opens named resources (helper windows, processes, files being
    edited) and returns; whoever owns a resource closes it later, from any
    thread. The excursion succeeds once every opened resource is closed,
    unless it is cancelled or the watchdog fires first. The first outcome
    wins.
    """

    def __init__(self, fn: str, timeout: float) -> None:
        self.fn = fn
        self.timeout = timeout
        self._lock = threading.Lock()
        self._open: set[str] = set()
        self._done = threading.Event()
        self._outcome: Outcome | None = None
        self._watchdog: threading.Timer | None = None

    @property
    def open_resources(self) -> set[str]:
        with self._lock:
            return set(self._open)

    @property
    def outcome(self) -> Outcome | None:
        return self._outcome

    def open(self, name: str) -> None:
        with self._lock:
            self._open.add(name)

    def close(self, name: str) -> None:
        with self._lock:
            self._open.discard(name)
            finished = not self._open
        if finished:
            self._resolve(Outcome.SUCCESS)

    def cancel(self) -> None:
        self._resolve(Outcome.CANCELLED)

    def skip(self) -> None:
        self._resolve(Outcome.SKIPPED)

    def _resolve(self, outcome: Outcome) -> None:
        with self._lock:
            if self._outcome is not None:
                return
            self._outcome = outcome
        self._done.set()

    def _arm(self) -> None:
        self._watchdog = threading.Timer(self.timeout, self._resolve, args=(Outcome.TIMED_OUT,))
        self._watchdog.daemon = True
        self._watchdog.start()

    def _disarm(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def wait(self) -> Outcome:
        """Block until every resource is closed, a cancel, or the watchdog."""
        self._arm()
        try:
            with self._lock:
                nothing_open = not self._open
            if nothing_open:
                self._resolve(Outcome.SUCCESS)
            self._done.wait()
            return self._outcome
        finally:
            self._disarm()


@dataclass
class SchedulerState:
    """Session-local scheduling state; nothing here is persisted directly."""

    queue: deque = field(default_factory=deque)
    current_fn: str | None = None
    as_of: float | None = None
    phase: RunPhase = RunPhase.IDLE_NO_QUEUE
    recovered: bool = False


class Scheduler:
    """Owns the due queue and sequences item executions."""

    def __init__(
        self,
        registry: ItemRegistry,
        settings: Settings,
        confirm: ConfirmFn,
        audit: AuditLogger | None = None,
        clock: Callable[[], float] = now_ts,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.confirm = confirm
        self.audit = audit
        self.clock = clock
        self.state = SchedulerState()
        self._run_lock = threading.Lock()
        self._abort = threading.Event()
        self._halt = False
        self._excursion: Excursion | None = None

    # ------------------------------------------------------------------
    # Queue building
    # ------------------------------------------------------------------

    def mark_recovered(self) -> None:
        self.state.recovered = True

    def _require_recovered(self) -> None:
        if not self.state.recovered:
            raise StateNotRecoveredError(
                "Persisted item state has not been recovered; refusing to schedule"
            )

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @property
    def queue(self) -> list[str]:
        return list(self.state.queue)

    def pending_ids(self, now: float | None = None) -> list[str]:
        """Enabled items that are due at ``now``."""
        self._require_recovered()
        if now is None:
            now = self.clock()
        return [
            fn
            for fn in self.registry.enabled_ids()
            if is_pending(self.registry.require(fn), self.registry, now)
        ]

    def build_queue(self, force_all: bool = False, now: float | None = None) -> list[str]:
        """Replace the queue with the pending items (or every enabled item)."""
        self._require_recovered()
        if self.running:
            raise QueueBusyError("Cannot build a queue while a run is in progress")
        if now is None:
            now = self.clock()

        self.state.as_of = now
        ids = self.registry.enabled_ids() if force_all else self.pending_ids(now)
        self.state.queue = deque(ids)
        self.state.phase = RunPhase.QUEUED if ids else RunPhase.IDLE_NO_QUEUE

        log.info("scheduler.queue_built", items=ids, force_all=force_all)
        if self.audit:
            self.audit.log("QUEUE", items=",".join(ids) or "-", force_all=force_all)
        return ids

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def run_queue(self, now: float | None = None) -> RunSummary:
        """Run queued items in order until the queue empties or the run is stopped.

        A cancelled item is retried straight away. The run stops, leaving the
        item at the front, when an item the user chose to keep during this run
        reaches the dismissal threshold again, when the only queued item is
        skipped, or on a keyboard interrupt.
        """
        self._require_recovered()
        if not self._run_lock.acquire(blocking=False):
            raise QueueBusyError("A queue run is already in progress")
        summary = RunSummary()
        try:
            self._abort.clear()
            self._halt = False
            while self.state.queue:
                if self._abort.is_set():
                    self.state.queue.clear()
                    break
                fn = self.state.queue[0]
                if (
                    fn in summary.kept
                    and self.registry.state(fn).dismissals >= self.settings.dismissal_threshold
                ):
                    # Asked once already this run
                    summary.stopped_by_cancel = True
                    break
                self.call_with_dismissal_check(fn, summary, now)
                if self._halt:
                    summary.stopped_by_cancel = True
                    break
            summary.remaining = list(self.state.queue)
            return summary
        finally:
            self.state.current_fn = None
            self.state.phase = (
                RunPhase.QUEUED if self.state.queue else RunPhase.IDLE_NO_QUEUE
            )
            self._run_lock.release()

    def call_with_dismissal_check(
        self, fn: str, summary: RunSummary | None = None, now: float | None = None
    ) -> Outcome | None:
        """Run an item unless repeated dismissals lead the user to disable it.

        Returns the run outcome, or None if the item was not run.
        """
        self.registry.require(fn)
        state = self.registry.state(fn)

        if state.dismissals >= self.settings.dismissal_threshold:
            question = f"{fn} was dismissed {state.dismissals} times in a row. Disable it?"
            if self.confirm(question):
                self.registry.disable(fn)
                self._remove(fn)
                if summary is not None:
                    summary.disabled.append(fn)
                if self.audit:
                    self.audit.log("DISABLE", fn=fn, dismissals=state.dismissals)
                return None
            self.registry.reset_dismissals(fn)
            if summary is not None:
                summary.kept.append(fn)
            if self.audit:
                self.audit.log("KEEP", fn=fn)

        if self.registry.is_disabled(fn):
            self._remove(fn)
            return None

        run = self.run_item(fn, now)
        if summary is not None:
            summary.runs.append(run)
        return run.outcome

    def run_item(self, fn: str, now: float | None = None) -> ItemRun:
        """Execute one item body and settle its queue and state bookkeeping."""
        item = self.registry.require(fn)
        body = self.registry.body(fn)
        if body is None:
            raise ConfigurationError(f"Item {fn} has no body to run")

        started = self.clock() if now is None else now
        self.state.current_fn = fn
        self.state.phase = RunPhase.RUNNING_ITEM
        self.registry.record_call(fn, started)
        log.info("scheduler.item.started", fn=fn, kind=item.kind.value)
        if self.audit:
            self.audit.log("RUN", fn=fn, kind=item.kind.value)

        outcome = Outcome.CANCELLED
        error: str | None = None
        try:
            outcome = self._invoke(item, body)
        except KeyboardInterrupt:
            outcome = Outcome.CANCELLED
            self._halt = True
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            log.error("scheduler.item.failed", fn=fn, error=error, exc_info=True)
            outcome = Outcome.CANCELLED
        finally:
            outcome = self._settle(fn, outcome, now)
            self.state.current_fn = None

        return ItemRun(fn=fn, outcome=outcome, started_at=started, error=error)

    def _invoke(self, item: Item, body: ItemBody) -> Outcome:
        if item.kind is ExecutionKind.QUERY:
            result = body()
            return Outcome.SUCCESS if result is None else Outcome(result)

        excursion = Excursion(item.fn, self.settings.excursion_timeout)
        self._excursion = excursion
        try:
            result = body(excursion)
            if result is not None:
                return Outcome(result)
            return excursion.wait()
        finally:
            self._excursion = None

    def _settle(self, fn: str, outcome: Outcome, now: float | None) -> Outcome:
        finished = self.clock() if now is None else now

        if outcome is Outcome.SKIPPED:
            if len(self.state.queue) > 1:
                self._remove(fn)
                log.info("scheduler.item.skipped", fn=fn)
                if self.audit:
                    self.audit.log("SKIP", fn=fn)
                return outcome
            outcome = Outcome.CANCELLED
            self._halt = True

        if outcome is Outcome.SUCCESS:
            self._remove(fn)
            self.registry.record_success(fn, finished)
            log.info("scheduler.item.succeeded", fn=fn)
            if self.audit:
                self.audit.log("SUCCESS", fn=fn)
        elif outcome is Outcome.CANCELLED:
            dismissals = self.registry.record_dismissal(fn)
            self._remove(fn)
            self.state.queue.appendleft(fn)
            log.info("scheduler.item.cancelled", fn=fn, dismissals=dismissals)
            if self.audit:
                self.audit.log("CANCEL", fn=fn, dismissals=dismissals)
        elif outcome is Outcome.TIMED_OUT:
            self._remove(fn)
            log.warning("scheduler.item.timed_out", fn=fn, timeout=self.settings.excursion_timeout)
            if self.audit:
                self.audit.log("TIMEOUT", fn=fn)
        return outcome

    def _remove(self, fn: str) -> None:
        if fn in self.state.queue:
            self.state.queue.remove(fn)

    # ------------------------------------------------------------------
    # Interruption
    # ------------------------------------------------------------------

    def cancel_current(self) -> None:
        """Cancel the running excursion, if any."""
        excursion = self._excursion
        if excursion is not None:
            excursion.cancel()

    def skip_current(self) -> None:
        excursion = self._excursion
        if excursion is not None:
            excursion.skip()

    def abort(self) -> None:
        """Drop the queue; a running pass stops after the current item."""
        self._abort.set()
        if not self.running:
            self.state.queue.clear()
            self.state.phase = RunPhase.IDLE_NO_QUEUE
        log.info("scheduler.aborted")
