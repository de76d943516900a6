"""PendingPolicy - decide whether an item is due now.

An item is pending when none of these rules block it:

1. recently_logged   - its log was written less than min_hours_wait ago
2. satisfied_today   - called today and today's dataset rows reached the cap
3. dismissal_backoff - each dismissal adds an hour of cooldown after a call
4. success_cap       - successes today reached the daily cap
5. call_cap          - calls today reached max_calls_per_day

Missing files never block: no data means "not yet logged".
"""

from pathlib import Path

from . import event_log
from .models.item import Item
from .observability import get_logger
from .registry import ItemRegistry
from .timeutil import now_ts, parse_embedded_datetime, same_logical_day

log = get_logger(__name__)

SECONDS_PER_HOUR = 3600


def last_logged_at(item: Item, registry: ItemRegistry) -> float | None:
    """When the item's log was last written, or None if it never was.

    Items with a dataset use its last row: field 0 when lookup_posted_time,
    else the datestamp embedded in the row. Items without one fall back to
    their internal success log.
    """
    if item.dataset is None:
        path = registry.settings.successes_log_path(item.fn)
        return event_log.last_posted(path) if path.exists() else None

    dataset = Path(item.dataset)
    if not dataset.exists():
        return None
    if item.lookup_posted_time:
        return event_log.last_posted(dataset)

    row = event_log.last_row(dataset)
    if not row:
        return None
    stamp = parse_embedded_datetime("\t".join(row[1:]))
    if stamp is None:
        log.debug("pending.no_datestamp", fn=item.fn, dataset=str(dataset))
        return event_log.last_posted(dataset)
    return stamp.timestamp()


def pending_reasons(item: Item, registry: ItemRegistry, now: float | None = None) -> list[str]:
    """Names of the rules currently blocking the item ([] means pending)."""
    if now is None:
        now = now_ts()
    fn = item.fn
    state = registry.state(fn)
    boundary = registry.settings.day_boundary_hour
    dataset_exists = item.dataset is not None and Path(item.dataset).exists()
    cap = item.daily_cap
    reasons: list[str] = []

    logged_at = last_logged_at(item, registry)
    if logged_at is not None and now - logged_at < item.min_hours_wait * SECONDS_PER_HOUR:
        reasons.append("recently_logged")

    called_today = state.last_called is not None and same_logical_day(
        state.last_called, now, boundary
    )
    if (
        called_today
        and dataset_exists
        and cap is not None
        and registry.count_dataset_entries_today(fn, now) >= cap
    ):
        reasons.append("satisfied_today")

    if (
        state.last_called is not None
        and now - state.last_called < state.dismissals * SECONDS_PER_HOUR
    ):
        reasons.append("dismissal_backoff")

    if cap is not None and registry.count_successes_today(fn, now) >= cap:
        reasons.append("success_cap")

    if (
        item.max_calls_per_day is not None
        and registry.count_calls_today(fn, now) >= item.max_calls_per_day
    ):
        reasons.append("call_cap")

    return reasons


def is_pending(item: Item, registry: ItemRegistry, now: float | None = None) -> bool:
    """True if the item is due. A failed read makes only this item not pending."""
    registry.require(item.fn)
    try:
        reasons = pending_reasons(item, registry, now)
    except (OSError, UnicodeDecodeError) as e:
        log.warning("pending.check_failed", fn=item.fn, error=str(e))
        return False
    if reasons:
        log.debug("pending.blocked", fn=item.fn, reasons=reasons)
    return not reasons
