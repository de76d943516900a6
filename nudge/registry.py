"""ItemRegistry - static item table plus the mutable per-item state."""

import json
import warnings
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from . import event_log
from .config import Settings
from .errors import ConfigurationError, DuplicateItemError, UnknownItemError
from .models.item import Item, ItemState
from .models.queue import Outcome
from .observability import get_logger
from .timeutil import logical_date, logical_today, now_ts
from .validators.items import validate_items

log = get_logger(__name__)

# Query bodies take no arguments; excursion bodies receive the Excursion handle.
ItemBody = Callable[..., Outcome | None]


class ItemRegistry:
    """Holds registered items, their runtime state and the disabled set."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._items: dict[str, Item] = {}
        self._bodies: dict[str, ItemBody | None] = {}
        self._states: dict[str, ItemState] = {}
        self._disabled: set[str] = set()

    def register(self, item: Item, body: ItemBody | None = None) -> Item:
        """Register an item at startup. Ids must be unique."""
        if item.fn in self._items:
            raise DuplicateItemError(item.fn)
        self._items[item.fn] = item
        self._bodies[item.fn] = body
        self._states[item.fn] = ItemState()
        return item

    def by_id(self, fn: str) -> Item | None:
        return self._items.get(fn)

    def require(self, fn: str) -> Item:
        """Get an item, failing fast if it was never registered."""
        item = self._items.get(fn)
        if item is None:
            raise UnknownItemError(fn)
        return item

    def body(self, fn: str) -> ItemBody | None:
        self.require(fn)
        return self._bodies[fn]

    def ids(self) -> list[str]:
        return list(self._items)

    def enabled_ids(self) -> list[str]:
        """All registered ids, in registration order, minus the disabled set."""
        return [fn for fn in self._items if fn not in self._disabled]

    # Disabled set

    def disable(self, fn: str) -> None:
        self.require(fn)
        self._disabled.add(fn)
        log.info("registry.item.disabled", fn=fn)

    def enable(self, fn: str) -> None:
        self.require(fn)
        self._disabled.discard(fn)

    def is_disabled(self, fn: str) -> bool:
        return fn in self._disabled

    def disabled_ids(self) -> list[str]:
        return sorted(self._disabled)

    # Runtime state

    def state(self, fn: str) -> ItemState:
        self.require(fn)
        return self._states[fn]

    def record_call(self, fn: str, now: float | None = None) -> None:
        """Stamp last_called and keep a call record for the daily call cap."""
        if now is None:
            now = now_ts()
        self.state(fn).last_called = now
        event_log.append(self.settings.calls_log_path(fn), now=now)

    def record_success(self, fn: str, now: float | None = None) -> None:
        """Reset dismissals; items without a dataset get a bare success record."""
        item = self.require(fn)
        self.state(fn).dismissals = 0
        if item.dataset is None:
            event_log.append(self.settings.successes_log_path(fn), now=now)

    def record_dismissal(self, fn: str) -> int:
        state = self.state(fn)
        state.dismissals += 1
        return state.dismissals

    def reset_dismissals(self, fn: str) -> None:
        self.state(fn).dismissals = 0

    # Daily counts

    def _count_posted_today(self, path: Path, now: float | None) -> int:
        # Internal logs only hold the posted time, so match on its logical date
        if not path.exists():
            return 0
        today = logical_today(now, self.settings.day_boundary_hour)
        count = 0
        for row in event_log.read_all(path):
            try:
                posted = float(row[0])
            except ValueError:
                continue
            if logical_date(posted, self.settings.day_boundary_hour) == today:
                count += 1
        return count

    def count_dataset_entries_today(self, fn: str, now: float | None = None) -> int:
        """Dataset rows logged on the logical today (0 without a dataset file).

        Datasets read by posted time are counted by that time; the others by
        the datestamp embedded in each row.
        """
        item = self.require(fn)
        if item.dataset is None:
            return 0
        if item.lookup_posted_time:
            return self._count_posted_today(item.dataset, now)
        return len(
            event_log.entries_matching_date(
                item.dataset, now=now, boundary_hour=self.settings.day_boundary_hour
            )
        )

    def count_successes_today(self, fn: str, now: float | None = None) -> int:
        """Successes on the logical today, from the dataset or the success log."""
        item = self.require(fn)
        if item.dataset is not None:
            return self.count_dataset_entries_today(fn, now)
        return self._count_posted_today(self.settings.successes_log_path(fn), now)

    def count_calls_today(self, fn: str, now: float | None = None) -> int:
        self.require(fn)
        return self._count_posted_today(self.settings.calls_log_path(fn), now)

    # Persistence helpers for MemoryStore

    def export_state(self) -> dict[str, dict[str, Any]]:
        return {fn: state.model_dump() for fn, state in list(self._states.items())}

    def load_state(self, data: dict[str, dict[str, Any]] | None) -> None:
        """Restore per-item state; entries that fail validation keep the default."""
        if data is None:
            return
        if not isinstance(data, dict):
            warnings.warn(f"Ignoring stored item state of type {type(data).__name__}", stacklevel=2)
            return
        for fn, values in data.items():
            if fn not in self._items:
                log.debug("registry.state.unknown_item", fn=fn)
                continue
            try:
                self._states[fn] = ItemState.model_validate(values)
            except ValidationError as e:
                warnings.warn(f"Ignoring stored state for {fn}: {e}", stacklevel=2)
                log.warning("registry.state.invalid", fn=fn, error=str(e))

    def export_disabled(self) -> list[str]:
        return self.disabled_ids()

    def load_disabled(self, fns: list[str] | None) -> None:
        if fns is None:
            fns = []
        if not isinstance(fns, list):
            warnings.warn(f"Ignoring stored disabled set of type {type(fns).__name__}", stacklevel=2)
            return
        self._disabled = {fn for fn in fns if isinstance(fn, str) and fn in self._items}


def load_item_file(path: Path) -> list[tuple[Item, str | None]]:
    """Load item definitions from a JSON items file.

    Args:
        path: Path to the items JSON file.

    Returns:
        (item, command) pairs in file order; command is None when absent.

    Raises:
        ConfigurationError: If the file is unreadable or fails validation.
    """
    try:
        with open(path) as f:
            document = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Items file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Items file {path} is not valid JSON: {e}") from e

    valid, errors = validate_items(document)
    if not valid:
        raise ConfigurationError(f"Invalid items file {path}: " + "; ".join(errors))

    definitions: list[tuple[Item, str | None]] = []
    for entry in document["items"]:
        entry = dict(entry)
        command = entry.pop("command", None)
        try:
            definitions.append((Item.model_validate(entry), command))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid item {entry.get('fn')}: {e}") from e
    return definitions
